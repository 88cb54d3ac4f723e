"""Performance tester: page timings against configured thresholds."""

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.result import (
    CategorizedError,
    PerformanceEvidence,
    TestResult,
    TestType,
    make_check_id,
)
from site_probe.testers.base import Tester, show_page

METRICS_SCRIPT = """
() => new Promise((resolve) => {
  const result = { lcp: null, cls: null };
  const observe = (type, callback) => {
    try {
      new PerformanceObserver((list) => callback(list.getEntries()))
        .observe({ type, buffered: true });
      return true;
    } catch (e) {
      return false;
    }
  };
  observe("largest-contentful-paint", (entries) => {
    result.lcp = entries[entries.length - 1].startTime;
  });
  if (observe("layout-shift", (entries) => {
    for (const entry of entries) {
      if (!entry.hadRecentInput) result.cls += entry.value;
    }
  })) {
    result.cls = result.cls || 0;
  }
  setTimeout(() => {
    const nav = performance.getEntriesByType("navigation")[0];
    const fcp = performance.getEntriesByName("first-contentful-paint")[0];
    resolve({
      ...result,
      ttfb: nav ? nav.responseStart - nav.requestStart : null,
      fcp: fcp ? fcp.startTime : null,
      tti: nav ? nav.domInteractive : null,
    });
  }, 100);
})
"""

METRIC_NAMES: Mapping[str, str] = {
    "lcp": "Largest Contentful Paint",
    "tti": "Time to Interactive",
    "cls": "Cumulative Layout Shift",
    "fcp": "First Contentful Paint",
    "ttfb": "Time to First Byte",
}


@dataclass(frozen=True, kw_only=True)
class PerformanceTester(Tester[str]):
    """Reads navigation and paint timings, one check per metric."""

    test_type = TestType.PERFORMANCE

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        return config.performance

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[str]:
        return ["timings"] if isinstance(target, DiscoveredPage) else []

    def artifact_id(self, artifact: str) -> str:
        return artifact

    def check_ids(
        self, page: DiscoveredPage | None, artifact: str
    ) -> Sequence[str]:
        page_url = page.url if page is not None else None
        return [
            make_check_id(self.test_type, page_url, metric) for metric in METRIC_NAMES
        ]

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: str,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        if page is None:
            raise TesterError("Performance checks need a page")
        started = time.monotonic()
        await show_page(session, page, config)
        measured = await session.evaluate(METRICS_SCRIPT)
        if not isinstance(measured, Mapping):
            raise TesterError(
                f"Timing script returned {type(measured).__name__}",
                classification="performance",
            )
        duration = (time.monotonic() - started) * 1000 / len(METRIC_NAMES)
        thresholds = config.performance_thresholds.model_dump()
        return [
            self.judge(page, metric, measured.get(metric), thresholds[metric], duration)
            for metric in METRIC_NAMES
        ]

    def judge(
        self,
        page: DiscoveredPage,
        metric: str,
        value: float | None,
        threshold: float,
        duration_ms: float,
    ) -> TestResult:
        """Compare one measured metric against its threshold."""
        unit, precision = ("", 3) if metric == "cls" else ("ms", 0)
        error = None
        if value is None:
            status = "skip"
        elif value > threshold:
            status = "fail"
            error = CategorizedError(
                classification="performance",
                message=(
                    f"{METRIC_NAMES[metric]} {value:.{precision}f}{unit} "
                    f"exceeds {threshold:g}{unit}"
                ),
            )
        else:
            status = "pass"
        return TestResult(
            check_id=make_check_id(self.test_type, page.url, metric),
            type=self.test_type,
            status=status,
            name=METRIC_NAMES[metric],
            page_url=page.url,
            duration_ms=duration_ms,
            error=error,
            evidence=PerformanceEvidence(
                metric=metric,
                value=float(value) if value is not None else None,
                threshold=threshold,
            ),
        )
