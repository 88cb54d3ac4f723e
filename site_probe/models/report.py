"""Models for per-page and per-run reports."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import Field

from site_probe.models.base import Model
from site_probe.models.discovery import DiscoveredPage
from site_probe.models.monitor import ConsoleEntry, NetworkRequest
from site_probe.models.result import (
    AccessibilityEvidence,
    AccessibilityViolation,
    PerformanceEvidence,
    TestResult,
    TestType,
)


class RunState(StrEnum):
    """States of the orchestrator state machine."""

    CONFIGURE = "configure"
    DISCOVER = "discover"
    TEST = "test"
    AGGREGATE = "aggregate"
    REPORT = "report"
    DONE = "done"
    FAILED = "failed"


class AccessibilityResult(Model):
    """Accessibility audit of one page."""

    url: str
    violations: Sequence[AccessibilityViolation] = ()
    passes: int = 0
    elements_checked: int = 0

    @classmethod
    def from_results(
        cls, url: str, results: Sequence[TestResult]
    ) -> "AccessibilityResult | None":
        """Assemble the audit from the accessibility checks run on ``url``."""
        evidence = [
            result.evidence
            for result in results
            if result.type == TestType.ACCESSIBILITY
            and isinstance(result.evidence, AccessibilityEvidence)
        ]
        if not evidence:
            return None
        return cls(
            url=url,
            violations=[v for item in evidence for v in item.violations],
            passes=sum(1 for item in evidence if not item.violations),
            elements_checked=sum(item.elements_checked for item in evidence),
        )


class PerformanceResult(Model):
    """Timing metrics of one page and the thresholds they were held to."""

    url: str
    metrics: Mapping[str, float | None] = Field(default_factory=dict)
    thresholds: Mapping[str, float] = Field(default_factory=dict)

    @classmethod
    def from_results(
        cls, url: str, results: Sequence[TestResult]
    ) -> "PerformanceResult | None":
        """Assemble the metrics from the performance checks run on ``url``."""
        evidence = [
            result.evidence
            for result in results
            if result.type == TestType.PERFORMANCE
            and isinstance(result.evidence, PerformanceEvidence)
        ]
        if not evidence:
            return None
        return cls(
            url=url,
            metrics={item.metric: item.value for item in evidence},
            thresholds={item.metric: item.threshold for item in evidence},
        )


class PageTestReport(Model):
    """All checks and captured signals for one discovered page."""

    page: DiscoveredPage
    results: Sequence[TestResult] = ()
    console_entries: Sequence[ConsoleEntry] = ()
    network_requests: Sequence[NetworkRequest] = ()
    accessibility: AccessibilityResult | None = None
    performance: PerformanceResult | None = None
    warnings: Sequence[str] = ()

    @property
    def url(self) -> str:
        """Canonical URL of the page."""
        return self.page.url


class Recommendation(Model):
    """Suggested follow-up derived from the results of a run."""

    priority: Literal["critical", "high", "medium", "low"]
    category: Literal[
        "functionality", "performance", "accessibility", "security", "reliability"
    ]
    title: str
    description: str
    affected_pages: Sequence[str] = ()


class ReportSummary(Model):
    """Aggregate counts over all checks of a run."""

    total_pages: int = 0
    unreachable_pages: int = 0
    total_checks: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    pass_rate: float = 0.0
    mean_duration_ms: float = 0.0
    avg_page_load_ms: float = 0.0
    accessibility_violations: int = 0
    by_classification: Mapping[str, int] = Field(default_factory=dict)
    by_type: Mapping[str, int] = Field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        """Whether any check failed or errored."""
        return self.failed > 0 or self.errors > 0


class RunMetadata(Model):
    """Context of a run: when, where and with which configuration."""

    run_id: str
    environment: str
    started_at: datetime
    finished_at: datetime
    workers: int = 1
    state: RunState = RunState.DONE
    cancel_reason: str | None = Field(
        default=None, description="Why the run stopped before testing every page"
    )
    config: Mapping[str, Any] = Field(default_factory=dict)


class TestReport(Model):
    """Complete result of a run, pages sorted by canonical URL."""

    __test__ = False

    metadata: RunMetadata
    summary: ReportSummary
    pages: Sequence[PageTestReport] = ()
    run_results: Sequence[TestResult] = Field(
        default=(), description="Checks not bound to a page (edge functions, API)"
    )
    unreachable: Sequence[DiscoveredPage] = ()
    recommendations: Sequence[Recommendation] = ()

    def iter_results(self) -> Sequence[TestResult]:
        """Return every check result of the run."""
        return [
            *(result for page in self.pages for result in page.results),
            *self.run_results,
        ]

    def status_map(self) -> Mapping[str, str]:
        """Map each check identifier to its status."""
        return {result.check_id: result.status for result in self.iter_results()}
