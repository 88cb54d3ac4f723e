"""Models for check results and the evidence attached to them."""

from collections.abc import Sequence
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import Field

from site_probe.models.base import Model
from site_probe.urls import page_key


class TestType(StrEnum):
    """Kind of check, one per tester capability."""

    __test__ = False

    PAGE_LOAD = "page-load"
    FORM = "form"
    ELEMENT = "element"
    EDGE_FUNCTION = "edge-function"
    ACCESSIBILITY = "accessibility"
    PERFORMANCE = "performance"
    AUTH = "auth"
    VISUAL = "visual"
    API = "api"
    CONSOLE = "console"
    NETWORK = "network"


type TestStatus = Literal["pass", "fail", "skip", "error"]

type ErrorClassification = Literal[
    "critical",
    "functional",
    "visual",
    "performance",
    "accessibility",
    "network",
    "server",
    "validation",
    "console",
    "timeout",
    "unknown",
]

type Severity = Literal["critical", "serious", "moderate", "minor"]


class CategorizedError(Model):
    """Error attached to a failed check, classified where it was caught."""

    classification: ErrorClassification
    message: str
    stack: str | None = None


class AccessibilityViolation(Model):
    """A single element failing an accessibility rule."""

    rule: str = Field(..., description="Rule identifier, e.g. 'image-alt'")
    severity: Severity
    selector: str = Field(..., description="Selector of the offending element")
    message: str = ""


class AccessibilityEvidence(Model):
    """Outcome of one accessibility rule on one page."""

    kind: Literal["accessibility"] = "accessibility"
    rule: str
    violations: Sequence[AccessibilityViolation] = ()
    elements_checked: int = 0


class PerformanceEvidence(Model):
    """Measured value of one performance metric against its threshold."""

    kind: Literal["performance"] = "performance"
    metric: str
    value: float | None
    threshold: float


class HttpEvidence(Model):
    """Request and response details of an HTTP check."""

    kind: Literal["http"] = "http"
    method: str
    url: str
    status: int | None = None
    response_excerpt: str | None = None
    response_time_ms: float | None = None


class ScreenshotEvidence(Model):
    """Screenshot fingerprint compared against the stored baseline."""

    kind: Literal["screenshot"] = "screenshot"
    viewport: str
    hash: str
    baseline_hash: str | None = None
    path: str | None = None


class InteractionEvidence(Model):
    """What happened in the page after interacting with an element."""

    kind: Literal["interaction"] = "interaction"
    selector: str
    final_url: str | None = None
    status: int | None = None
    console_errors: Sequence[str] = ()


Evidence = Annotated[
    AccessibilityEvidence
    | PerformanceEvidence
    | HttpEvidence
    | ScreenshotEvidence
    | InteractionEvidence,
    Field(discriminator="kind"),
]


class TestResult(Model):
    """Result of a single check."""

    __test__ = False

    check_id: str = Field(..., description="Stable identifier of the check")
    type: TestType
    status: TestStatus
    duration_ms: float = 0.0
    name: str = ""
    page_url: str | None = None
    error: CategorizedError | None = None
    evidence: Evidence | None = None
    retries: int = 0


def make_check_id(
    test_type: TestType,
    page_url: str | None,
    artifact_id: str,
    sub_check: str | None = None,
) -> str:
    """Build the deterministic identifier of a check.

    The identifier is ``type:page:artifact[:sub_check]`` where ``page`` is
    the path and query of the canonical page URL, so the same logical check
    gets the same identifier on every run and in every environment.
    """
    parts = [str(test_type), page_key(page_url) if page_url else "-", artifact_id]
    if sub_check:
        parts.append(sub_check)
    return ":".join(parts)


def error_result(
    check_id: str,
    test_type: TestType,
    exc: BaseException,
    classification: ErrorClassification,
    *,
    page_url: str | None = None,
    name: str = "",
    duration_ms: float = 0.0,
) -> TestResult:
    """Build an ``error`` result for a check that raised ``exc``."""
    return TestResult(
        check_id=check_id,
        type=test_type,
        status="error",
        duration_ms=duration_ms,
        name=name,
        page_url=page_url,
        error=CategorizedError(
            classification=classification,
            message=str(exc) or type(exc).__name__,
        ),
    )
