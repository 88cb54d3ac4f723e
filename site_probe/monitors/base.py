"""Common behaviour of passive page monitors."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from site_probe.driver.base import PageSession, Unsubscribe
from site_probe.errors import MonitorError
from site_probe.models.result import TestResult

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class Monitor[EntryT](ABC):
    """Observer accumulating records from a session until detached.

    A monitor never fails the run: any error while attaching or recording
    drops everything captured so far and leaves the monitor degraded, with
    a warning explaining why.
    """

    page_url: str = ""
    entries: list[EntryT] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    degraded: bool = False
    attached: bool = False
    unsubscribe: Unsubscribe | None = field(default=None, repr=False)

    @abstractmethod
    def subscribe(self, session: PageSession) -> Unsubscribe:
        """Register the monitor's handlers on ``session``."""

    @abstractmethod
    def check_results(self, page_url: str) -> Sequence[TestResult]:
        """Turn the capture for ``page_url`` into checks."""

    def attach(self, session: PageSession) -> None:
        """Start observing ``session``. Must be called before navigation."""
        try:
            self.unsubscribe = self.subscribe(session)
        except Exception as exc:
            self.degrade(exc)
            return
        self.attached = True

    def detach(self) -> None:
        """Stop recording. Captured entries stay available."""
        self.attached = False
        if self.unsubscribe is not None:
            self.unsubscribe()
            self.unsubscribe = None

    def set_page(self, url: str) -> None:
        """Attribute subsequent records to ``url``."""
        self.page_url = url

    def entries_for(self, url: str) -> Sequence[EntryT]:
        """Return the records captured while ``url`` was the current page."""
        return [entry for entry in self.entries if self._entry_page(entry) == url]

    def reset(self) -> None:
        """Forget everything captured so far."""
        self.entries.clear()

    def guarded[EventT](
        self, record: Callable[[EventT], EntryT | None]
    ) -> Callable[[EventT], None]:
        """Wrap an event handler so failures degrade the monitor."""

        def handler(event: EventT) -> None:
            if not self.attached or self.degraded:
                return
            try:
                entry = record(event)
            except Exception as exc:
                self.degrade(exc)
                return
            if entry is not None:
                self.entries.append(entry)

        return handler

    def degrade(self, exc: BaseException) -> None:
        """Drop the capture and remember why."""
        error = MonitorError(f"{type(self).__name__} failed: {exc}")
        log.warning("%s, continuing with an empty capture", error)
        self.entries.clear()
        self.warnings.append(str(error))
        self.degraded = True

    @staticmethod
    @abstractmethod
    def _entry_page(entry: EntryT) -> str:
        """Page URL a record belongs to."""
