"""Models for signals captured by the passive page monitors."""

from datetime import datetime
from typing import Literal

from site_probe.models.base import Model

type ConsoleLevel = Literal["log", "debug", "info", "warn", "error"]


class SourceLocation(Model):
    """Script location a console message originated from."""

    url: str
    line: int = 0
    column: int = 0


class ConsoleEntry(Model):
    """Console message emitted while a page was open."""

    level: ConsoleLevel
    text: str
    page_url: str
    timestamp: datetime
    location: SourceLocation | None = None
    is_critical: bool = False


class NetworkRequest(Model):
    """Request issued by a page and its outcome."""

    url: str
    method: str
    resource_type: str
    page_url: str
    timestamp: datetime
    status: int | None = None
    failed: bool = False
    failure_reason: str | None = None
    duration_ms: float | None = None

    @property
    def is_error(self) -> bool:
        """Whether the request failed outright or returned a server error."""
        return self.failed or (self.status is not None and self.status >= 500)
