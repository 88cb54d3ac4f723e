"""Run orchestration: configure, discover, test, aggregate and report."""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

from site_probe.config import validate_config
from site_probe.crawler.page_crawler import PageCrawler
from site_probe.driver.base import BrowserDriver
from site_probe.errors import RunFailedError
from site_probe.events import EventCallback, RunEvent, RunEventKind
from site_probe.fixtures import (
    Fixture,
    FixtureManager,
    HttpClientFixture,
    OutputDirectoryFixture,
)
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveryGraph
from site_probe.models.report import RunMetadata, RunState, TestReport
from site_probe.models.result import TestType
from site_probe.parallel import CancellationToken, ParallelRunner
from site_probe.policy.baseline import BaselineManager
from site_probe.policy.filters import FilterManager
from site_probe.report import ReportGenerator
from site_probe.storage.kv import KeyValueStore
from site_probe.storage.metrics import MetricsStorage
from site_probe.testers.base import Tester, TesterResources
from site_probe.testers.registry import build_testers

log = logging.getLogger(__name__)

TRANSITIONS: Mapping[RunState, frozenset[RunState]] = {
    RunState.CONFIGURE: frozenset([RunState.DISCOVER, RunState.FAILED]),
    RunState.DISCOVER: frozenset([RunState.TEST, RunState.FAILED]),
    RunState.TEST: frozenset([RunState.AGGREGATE, RunState.FAILED]),
    RunState.AGGREGATE: frozenset([RunState.REPORT, RunState.FAILED]),
    RunState.REPORT: frozenset([RunState.DONE, RunState.FAILED]),
    RunState.DONE: frozenset(),
    RunState.FAILED: frozenset(),
}


def new_run_id() -> str:
    """Return a sortable, unique run identifier."""
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


@dataclass(kw_only=True)
class RunStateMachine:
    """Current state of one run and the path it took to get there."""

    run_id: str
    on_event: EventCallback | None = None
    state: RunState = RunState.CONFIGURE
    history: list[RunState] = field(default_factory=lambda: [RunState.CONFIGURE])

    def transition(self, target: RunState) -> None:
        """Move to ``target``.

        Raises:
            ValueError: If ``target`` cannot follow the current state

        """
        if target not in TRANSITIONS[self.state]:
            raise ValueError(f"Invalid transition {self.state} -> {target}")
        log.info("Run %s: %s -> %s", self.run_id, self.state, target)
        self.state = target
        self.history.append(target)
        if self.on_event is not None:
            self.on_event(
                RunEvent(kind="state", run_id=self.run_id, detail=str(target))
            )


class ReportSink(ABC):
    """Consumer of a finished report."""

    name: ClassVar[str] = "sink"

    @abstractmethod
    async def consume(self, report: TestReport) -> Any:
        """Handle ``report`` and return whatever the sink produced."""


@dataclass(frozen=True, kw_only=True)
class FileReportSink(ReportSink):
    """Writes the JSON, Markdown and HTML renderings of the report."""

    name = "files"
    output_dir: Path
    generator: ReportGenerator = field(default_factory=ReportGenerator)

    async def consume(self, report: TestReport) -> Sequence[Path]:
        return await self.generator.write(report, self.output_dir)


@dataclass(frozen=True, kw_only=True)
class BaselineSink(ReportSink):
    """Diffs the report against the baseline, then optionally replaces it."""

    name = "baseline"
    manager: BaselineManager
    update: bool = True

    async def consume(self, report: TestReport) -> Any:
        diff = await self.manager.diff(report)
        if self.update:
            await self.manager.update(report)
        return diff


@dataclass(frozen=True, kw_only=True)
class MetricsSink(ReportSink):
    """Appends the run to the metrics log and returns the updated trend."""

    name = "metrics"
    storage: MetricsStorage
    window: int = 10

    async def consume(self, report: TestReport) -> Any:
        await self.storage.record(report)
        return await self.storage.trend(self.window, report.metadata.environment)


@dataclass(frozen=True, kw_only=True)
class RunOutcome:
    """Report of a completed run and what each sink produced from it."""

    report: TestReport
    graph: DiscoveryGraph
    outputs: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class TestOrchestrator:
    """Drives one run through its states.

    ``CONFIGURE -> DISCOVER -> TEST -> AGGREGATE -> REPORT -> DONE``. An
    exception escaping a phase moves the run to ``FAILED`` and is re-raised
    as `RunFailedError`. Fixtures are set up before discovery and torn down
    after reporting on every path.
    """

    __test__ = False

    driver: BrowserDriver
    config: TestConfig
    store: KeyValueStore | None = None
    sinks: Sequence[ReportSink] = ()
    fixtures: Sequence[Fixture] = ()
    registry: Mapping[TestType, type[Tester[Any]]] | None = None
    only_types: Sequence[TestType] = ()
    skip_types: Sequence[TestType] = ()
    generator: ReportGenerator = field(default_factory=ReportGenerator)
    crawler: PageCrawler = field(default_factory=PageCrawler)
    cancel: CancellationToken | None = None
    on_event: EventCallback | None = None

    async def run(self, run_id: str | None = None) -> RunOutcome:
        """Execute a full run.

        Args:
            run_id: Identifier of the run, generated when omitted

        Returns:
            The report and the outputs of the report sinks

        Raises:
            RunFailedError: If a phase raised outside the per-page and
                per-check isolation boundaries

        """
        run_id = run_id or new_run_id()
        machine = RunStateMachine(run_id=run_id, on_event=self.on_event)
        cancel = self.cancel or CancellationToken.with_timeout(self.config.run_timeout)
        started_at = datetime.now(UTC)
        self._emit("run-start", run_id, self.config.base_url)

        try:
            outcome = await self._run(machine, cancel, started_at)
        except Exception as exc:
            failed_in = machine.state
            log.error(
                "Run %s failed during %s: %s", run_id, failed_in, exc, exc_info=exc
            )
            if failed_in not in (RunState.DONE, RunState.FAILED):
                machine.transition(RunState.FAILED)
            self._emit("run-end", run_id, detail=str(RunState.FAILED))
            raise RunFailedError(str(failed_in), exc) from exc

        self._emit("run-end", run_id, detail=str(RunState.DONE))
        return outcome

    async def _run(
        self,
        machine: RunStateMachine,
        cancel: CancellationToken,
        started_at: datetime,
    ) -> RunOutcome:
        validate_config(self.config)
        filters = FilterManager.from_config(
            self.config, only_types=self.only_types, skip_types=self.skip_types
        )
        http = HttpClientFixture()
        fixtures = [http, OutputDirectoryFixture(), *self.fixtures]

        async with FixtureManager(fixtures=fixtures, config=self.config):
            testers = build_testers(
                self.config,
                TesterResources(http=http.session, store=self.store),
                filters=filters,
                registry=self.registry,
            )

            machine.transition(RunState.DISCOVER)
            graph = await self.discover(filters, cancel)

            machine.transition(RunState.TEST)
            runner = ParallelRunner(
                driver=self.driver,
                testers=testers,
                config=self.config,
                run_id=machine.run_id,
                cancel=cancel,
                on_event=self.on_event,
            )
            pages = [
                page for page in graph.reachable_pages() if filters.allows_url(page.url)
            ]
            page_reports = await runner.run_pages(pages)
            run_results = await runner.run_global(graph)

            machine.transition(RunState.AGGREGATE)
            metadata = RunMetadata(
                run_id=machine.run_id,
                environment=self.config.environment,
                started_at=started_at,
                finished_at=datetime.now(UTC),
                workers=self.config.workers,
                state=RunState.DONE,
                cancel_reason=cancel.reason,
                config=self.config.model_dump(mode="json"),
            )
            report = self.generator.build(
                page_reports,
                run_results,
                metadata,
                unreachable=graph.unreachable_pages(),
            )

            machine.transition(RunState.REPORT)
            outputs: dict[str, Any] = {}
            for sink in self.sinks:
                log.debug("Running report sink %s", sink.name)
                outputs[sink.name] = await sink.consume(report)

        machine.transition(RunState.DONE)
        summary = report.summary
        log.info(
            "Run %s done: %d check(s), %d passed, %d failed, %d error(s)",
            machine.run_id,
            summary.total_checks,
            summary.passed,
            summary.failed,
            summary.errors,
        )
        return RunOutcome(report=report, graph=graph, outputs=outputs)

    async def discover(
        self, filters: FilterManager, cancel: CancellationToken
    ) -> DiscoveryGraph:
        """Crawl the application on a session of its own."""
        async with self.driver.new_session(self.config.viewports[0]) as session:
            return await self.crawler.crawl(
                session, self.config, filters=filters, cancel=cancel
            )

    def _emit(
        self, kind: RunEventKind, run_id: str, url: str | None = None, detail: str = ""
    ) -> None:
        if self.on_event is not None:
            self.on_event(RunEvent(kind=kind, run_id=run_id, url=url, detail=detail))


def default_sinks(
    config: TestConfig, store: KeyValueStore, *, baseline: bool = False
) -> Sequence[ReportSink]:
    """Sinks used by the command line: files, metrics and optionally baseline."""
    sinks: list[ReportSink] = [
        FileReportSink(output_dir=Path(config.output_dir)),
        MetricsSink(storage=MetricsStorage(store=store)),
    ]
    if baseline:
        sinks.append(BaselineSink(manager=BaselineManager(store=store)))
    return sinks
