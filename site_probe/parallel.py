"""Concurrent execution of page checks over isolated browser sessions."""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from site_probe.driver.base import BrowserDriver, PageSession
from site_probe.errors import TesterError
from site_probe.events import EventCallback, RunEvent, RunEventKind
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.report import (
    AccessibilityResult,
    PageTestReport,
    PerformanceResult,
)
from site_probe.models.result import (
    CategorizedError,
    TestResult,
    TestType,
    error_result,
    make_check_id,
)
from site_probe.monitors.base import Monitor
from site_probe.monitors.console import ConsoleMonitor
from site_probe.monitors.network import NetworkMonitor
from site_probe.testers.base import Tester

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class CancellationToken:
    """Cooperative stop signal shared by everything working on a run.

    The token is cancelled explicitly with `cancel`, or implicitly once
    its deadline (a `time.monotonic` reading) has passed.
    """

    deadline: float | None = None
    reason: str | None = None

    @classmethod
    def with_timeout(cls, seconds: float | None) -> "CancellationToken":
        """Create a token that cancels itself after ``seconds``."""
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled") -> None:
        """Request a stop. The first reason given is kept."""
        if self.reason is None:
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        """Whether work should stop."""
        if (
            self.reason is None
            and self.deadline is not None
            and time.monotonic() >= self.deadline
        ):
            self.reason = "run timeout reached"
        return self.reason is not None


async def run_check(
    tester: Tester[Any],
    session: PageSession,
    page: DiscoveredPage | None,
    artifact: Any,
    config: TestConfig,
) -> Sequence[TestResult]:
    """Run one tester on one artifact under the per-check timeout.

    Every failure of the check itself becomes an ``error`` result for each
    of the tester's check identifiers so that one broken check never stops
    the others.
    """
    started = time.monotonic()
    check_id = tester.check_id(page, artifact)
    name = tester.check_name(artifact)
    page_url = page.url if page is not None else None
    timeout = tester.timeout(artifact, config)
    try:
        return await asyncio.wait_for(
            tester.run(session, page, artifact, config), timeout=timeout
        )
    except TimeoutError:
        log.warning("Check %s timed out after %.1fs", check_id, timeout)
        classification = "timeout"
        error: BaseException = TimeoutError(f"Timed out after {timeout:g}s")
    except TesterError as exc:
        log.warning("Check %s could not run: %s", check_id, exc)
        classification = exc.classification
        error = exc
    except Exception as exc:
        log.error("Check %s raised: %s", check_id, exc, exc_info=exc)
        classification = "unknown"
        error = exc
    duration_ms = (time.monotonic() - started) * 1000
    return [
        error_result(
            sub_check_id,
            tester.test_type,
            error,
            classification,
            page_url=page_url,
            name=name,
            duration_ms=duration_ms,
        )
        for sub_check_id in tester.check_ids(page, artifact)
    ]


@dataclass(frozen=True, kw_only=True)
class ParallelRunner:
    """Tests pages with a pool of workers, each owning one browser session.

    Workers take pages from a shared queue. Their reports are merged and
    sorted by canonical URL, so the outcome does not depend on the number
    of workers or on scheduling.
    """

    driver: BrowserDriver
    testers: Sequence[Tester[Any]]
    config: TestConfig
    run_id: str = ""
    cancel: CancellationToken = field(default_factory=CancellationToken)
    on_event: EventCallback | None = None

    async def run_pages(
        self, pages: Sequence[DiscoveredPage]
    ) -> Sequence[PageTestReport]:
        """Test every page and return one report per tested page.

        Pages still queued when the run is cancelled are left out.
        """
        queue: asyncio.Queue[DiscoveredPage] = asyncio.Queue()
        for page in pages:
            queue.put_nowait(page)
        workers = max(1, min(self.config.workers, len(pages)))
        log.info("Testing %d page(s) with %d worker(s)", len(pages), workers)

        chunks = await asyncio.gather(
            *(self._worker(index, queue) for index in range(workers))
        )
        if not queue.empty():
            log.warning(
                "%d page(s) not tested: %s", queue.qsize(), self.cancel.reason
            )
        return sorted(
            (report for chunk in chunks for report in chunk),
            key=lambda report: report.url,
        )

    async def run_global(self, graph: DiscoveryGraph) -> Sequence[TestResult]:
        """Run the run-scoped testers once, sorted by check identifier."""
        testers = [tester for tester in self.testers if tester.scope == "run"]
        pending = [
            (tester, artifact)
            for tester in testers
            for artifact in tester.artifacts(graph, self.config)
        ]
        if not pending:
            return []

        results: list[TestResult] = []
        async with self.driver.new_session(self.config.viewports[0]) as session:
            for tester, artifact in pending:
                if self.cancel.cancelled:
                    log.warning("Run-scoped checks cancelled: %s", self.cancel.reason)
                    break
                results.extend(
                    await run_check(tester, session, None, artifact, self.config)
                )
        return sorted(results, key=lambda result: result.check_id)

    async def _worker(
        self, index: int, queue: "asyncio.Queue[DiscoveredPage]"
    ) -> Sequence[PageTestReport]:
        reports: list[PageTestReport] = []
        async with self.driver.new_session(self.config.viewports[0]) as session:
            console = ConsoleMonitor()
            network = NetworkMonitor()
            monitors: list[Monitor[Any]] = []
            if self.config.console_monitoring:
                monitors.append(console)
            if self.config.network_monitoring:
                monitors.append(network)
            for monitor in monitors:
                monitor.attach(session)

            while not self.cancel.cancelled:
                try:
                    page = queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                log.debug("Worker %d testing %s", index, page.url)
                reports.append(await self.test_page(session, page, console, network))

            for monitor in monitors:
                monitor.detach()
        return reports

    async def test_page(
        self,
        session: PageSession,
        page: DiscoveredPage,
        console: ConsoleMonitor,
        network: NetworkMonitor,
    ) -> PageTestReport:
        """Load ``page`` and run every page tester against it."""
        self._emit("page-start", page.url)
        console.set_page(page.url)
        network.set_page(page.url)

        load = await self.load_page(session, page)
        results: list[TestResult] = [load]
        if load.status == "pass":
            for tester in self.testers:
                if tester.scope != "page":
                    continue
                for artifact in tester.artifacts(page, self.config):
                    if self.cancel.cancelled:
                        break
                    results.extend(
                        await run_check(tester, session, page, artifact, self.config)
                    )

        if self.config.console_monitoring:
            results.extend(console.check_results(page.url))
        if self.config.network_monitoring:
            results.extend(network.check_results(page.url))

        results.sort(key=lambda result: result.check_id)
        report = PageTestReport(
            page=page,
            results=results,
            console_entries=console.entries_for(page.url),
            network_requests=network.entries_for(page.url),
            accessibility=AccessibilityResult.from_results(page.url, results),
            performance=PerformanceResult.from_results(page.url, results),
            warnings=[*console.warnings, *network.warnings],
        )
        self._emit("page-end", page.url, f"{len(results)} check(s)")
        return report

    async def load_page(
        self, session: PageSession, page: DiscoveredPage
    ) -> TestResult:
        """Navigate to ``page`` and check that it loads."""
        check_id = make_check_id(TestType.PAGE_LOAD, page.url, "load")
        name = f"Load {page.url}"
        started = time.monotonic()
        try:
            navigation = await asyncio.wait_for(
                session.navigate(page.url, self.config.check_timeout),
                timeout=self.config.check_timeout,
            )
        except TimeoutError:
            return error_result(
                check_id,
                TestType.PAGE_LOAD,
                TimeoutError(f"Timed out after {self.config.check_timeout:g}s"),
                "timeout",
                page_url=page.url,
                name=name,
                duration_ms=(time.monotonic() - started) * 1000,
            )
        except Exception as exc:
            log.warning("Cannot load %s: %s", page.url, exc)
            return error_result(
                check_id,
                TestType.PAGE_LOAD,
                exc,
                "network",
                page_url=page.url,
                name=name,
                duration_ms=(time.monotonic() - started) * 1000,
            )

        duration = (time.monotonic() - started) * 1000
        status = navigation.status
        error = None
        if status is not None and status >= 400:
            error = CategorizedError(
                classification="server" if status >= 500 else "critical",
                message=f"{page.url} returned HTTP {status}",
            )
        return TestResult(
            check_id=check_id,
            type=TestType.PAGE_LOAD,
            status="pass" if error is None else "fail",
            name=name,
            page_url=page.url,
            duration_ms=duration,
            error=error,
        )

    def _emit(
        self, kind: RunEventKind, url: str | None = None, detail: str = ""
    ) -> None:
        if self.on_event is not None:
            self.on_event(
                RunEvent(kind=kind, run_id=self.run_id, url=url, detail=detail)
            )
