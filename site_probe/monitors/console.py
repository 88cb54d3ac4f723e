"""Console monitor: records console output and uncaught page errors."""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import cast

from site_probe.driver.base import ConsoleMessage, PageSession, Unsubscribe
from site_probe.models.monitor import ConsoleEntry, ConsoleLevel, SourceLocation
from site_probe.models.result import (
    CategorizedError,
    TestResult,
    TestType,
    make_check_id,
)
from site_probe.monitors.base import Monitor

# Noise browsers and dev tooling print that says nothing about the app.
IGNORED_MESSAGES: Sequence[str] = (
    r"ResizeObserver loop",
    r"Download the React DevTools",
    r"favicon\.ico",
    r"\[vite\]",
    r"\[HMR\]",
)

KNOWN_LEVELS: frozenset[str] = frozenset(["log", "debug", "info", "warn", "error"])


@dataclass(kw_only=True)
class ConsoleMonitor(Monitor[ConsoleEntry]):
    """Accumulates `ConsoleEntry` records for the pages of a session."""

    ignored: Sequence[str] = field(default_factory=lambda: IGNORED_MESSAGES)

    def subscribe(self, session: PageSession) -> Unsubscribe:
        return session.on_console(self.guarded(self._record))

    def _record(self, message: ConsoleMessage) -> ConsoleEntry:
        level = cast(
            ConsoleLevel, message.level if message.level in KNOWN_LEVELS else "log"
        )
        location = (
            SourceLocation(url=message.url, line=message.line, column=message.column)
            if message.url
            else None
        )
        return ConsoleEntry(
            level=level,
            text=message.text,
            page_url=self.page_url,
            timestamp=datetime.now(timezone.utc),
            location=location,
            is_critical=self.is_critical(message),
        )

    def is_critical(self, message: ConsoleMessage) -> bool:
        """Whether the message is an error that points at a defect in the app."""
        if message.level != "error" and not message.uncaught:
            return False
        return not any(re.search(pattern, message.text) for pattern in self.ignored)

    def critical_entries(self, page_url: str) -> Sequence[ConsoleEntry]:
        """Return the critical errors captured on ``page_url``."""
        return [entry for entry in self.entries_for(page_url) if entry.is_critical]

    def check_results(self, page_url: str) -> Sequence[TestResult]:
        check_id = make_check_id(TestType.CONSOLE, page_url, "console", "errors")
        if self.degraded:
            return [
                TestResult(
                    check_id=check_id,
                    type=TestType.CONSOLE,
                    status="skip",
                    name="No console errors",
                    page_url=page_url,
                )
            ]

        critical = self.critical_entries(page_url)
        if not critical:
            return [
                TestResult(
                    check_id=check_id,
                    type=TestType.CONSOLE,
                    status="pass",
                    name="No console errors",
                    page_url=page_url,
                )
            ]

        first = critical[0].text
        return [
            TestResult(
                check_id=check_id,
                type=TestType.CONSOLE,
                status="fail",
                name="No console errors",
                page_url=page_url,
                error=CategorizedError(
                    classification="console",
                    message=f"{len(critical)} console error(s): {first}",
                ),
            )
        ]

    @staticmethod
    def _entry_page(entry: ConsoleEntry) -> str:
        return entry.page_url
