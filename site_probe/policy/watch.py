"""Repeated runs triggered by file changes or a fixed interval."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from watchfiles import Change, awatch

from site_probe.errors import RunFailedError
from site_probe.parallel import CancellationToken

log = logging.getLogger(__name__)

DEBOUNCE_MS = 1600
POLL_MS = 1000

IGNORED_PARTS: frozenset[str] = frozenset(
    ["node_modules", "__pycache__", "dist", "build", "coverage", "test-results"]
)


class SourceFilter:
    """watchfiles filter skipping hidden directories and build output."""

    def __call__(self, change: Change, path: str) -> bool:
        parts = Path(path).parts
        return not any(part.startswith(".") or part in IGNORED_PARTS for part in parts)


@dataclass(frozen=True, kw_only=True)
class WatchMode[ResultT]:
    """Runs ``run_once`` now and again on every change or interval tick.

    Attributes:
        run_once: Coroutine function performing one full run
        paths: Paths watched for changes. When empty, ``interval`` is used
        interval: Seconds between runs when no paths are watched
        max_runs: Stop after this many runs. None means until cancelled
        cancel: Token stopping the loop between runs

    """

    run_once: Callable[[], Awaitable[ResultT]]
    paths: Sequence[Path] = ()
    interval: float = 300.0
    max_runs: int | None = None
    cancel: CancellationToken = field(default_factory=CancellationToken)
    debounce_ms: int = DEBOUNCE_MS

    async def run(self) -> Sequence[ResultT]:
        """Loop until cancelled or ``max_runs`` is reached.

        Returns:
            The results of the runs that completed, oldest first. Runs that
            raised `RunFailedError` are logged and left out.

        """
        results: list[ResultT] = []
        await self._attempt(results)
        if self.paths:
            await self._watch(results)
        else:
            await self._tick(results)
        log.info("Watch stopped after %d run(s)", len(results))
        return results

    def _done(self, attempts: int) -> bool:
        if self.cancel.cancelled:
            return True
        return self.max_runs is not None and attempts >= self.max_runs

    async def _watch(self, results: list[ResultT]) -> None:
        attempts = 1
        if self._done(attempts):
            return
        log.info("Watching %s for changes", ", ".join(map(str, self.paths)))
        async for changes in awatch(
            *self.paths,
            debounce=self.debounce_ms,
            rust_timeout=POLL_MS,
            yield_on_timeout=True,
            watch_filter=SourceFilter(),
        ):
            if self.cancel.cancelled:
                break
            if not changes:
                continue
            log.info("Detected %d changed file(s), re-running", len(changes))
            await self._attempt(results)
            attempts += 1
            if self._done(attempts):
                break

    async def _tick(self, results: list[ResultT]) -> None:
        attempts = 1
        while not self._done(attempts):
            log.info("Next run in %.0fs", self.interval)
            await asyncio.sleep(self.interval)
            if self.cancel.cancelled:
                break
            await self._attempt(results)
            attempts += 1

    async def _attempt(self, results: list[ResultT]) -> None:
        try:
            results.append(await self.run_once())
        except RunFailedError as exc:
            log.error("Watched run failed: %s", exc)
