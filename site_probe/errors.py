"""Error taxonomy for a test run.

Only configuration, driver and aggregation errors are fatal. Discovery, tester and
monitor errors are isolated at the page or check that raised them.
"""

from site_probe.models.result import ErrorClassification


class SiteProbeError(Exception):
    """Base class for all errors raised by site-probe."""


class ConfigError(SiteProbeError):
    """Raised when the run configuration is missing, malformed or conflicting."""


class DiscoveryError(SiteProbeError):
    """Raised when a page cannot be visited during discovery."""

    def __init__(self, url: str, reason: str, *, status: int | None = None) -> None:
        super().__init__(f"Cannot visit {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class TesterError(SiteProbeError):
    """Raised by a tester when a check cannot be carried out."""

    def __init__(
        self, message: str, classification: ErrorClassification = "functional"
    ) -> None:
        super().__init__(message)
        self.classification: ErrorClassification = classification


class DriverError(SiteProbeError):
    """Raised when the browser cannot be started."""


class MonitorError(SiteProbeError):
    """Raised when a passive monitor fails to attach or record an event."""


class AggregationError(SiteProbeError):
    """Raised when the collected results violate a report invariant."""


class RunFailedError(SiteProbeError):
    """Raised when a run reaches the FAILED state.

    Carries the state the orchestrator was in when the fatal error occurred.
    """

    def __init__(self, state: str, cause: BaseException) -> None:
        super().__init__(f"Run failed during {state}: {cause}")
        self.state = state
        self.cause = cause
