"""Tests for watch mode."""

import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from watchfiles import Change

from site_probe.errors import RunFailedError
from site_probe.parallel import CancellationToken
from site_probe.policy import watch
from site_probe.policy.watch import SourceFilter, WatchMode


class Counter:
    """Run function returning how often it was called."""

    def __init__(self, fail_on: int | None = None) -> None:
        self.calls = 0
        self.fail_on = fail_on

    async def __call__(self) -> int:
        self.calls += 1
        if self.calls == self.fail_on:
            raise RunFailedError("test", RuntimeError("flaky backend"))
        return self.calls


def fake_awatch(*batches: set[tuple[Change, str]]) -> Any:
    """Replacement for awatch yielding ``batches`` then stopping."""

    async def awatch(*paths: Path, **kwargs: Any) -> AsyncIterator[set[Any]]:
        for batch in batches:
            yield batch

    return awatch


class TestWatchMode:
    """Tests for WatchMode."""

    async def test_interval_runs_until_max_runs(self) -> None:
        """Without paths, runs repeat on the interval."""
        counter = Counter()

        results = await WatchMode(run_once=counter, interval=0, max_runs=3).run()

        assert results == [1, 2, 3]

    async def test_reruns_on_changes(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """Each batch of changes triggers a run; empty batches do not."""
        monkeypatch.setattr(
            watch,
            "awatch",
            fake_awatch(
                {(Change.modified, str(tmp_path / "a.tsx"))},
                set(),
                {(Change.added, str(tmp_path / "b.tsx"))},
            ),
        )
        counter = Counter()

        results = await WatchMode(run_once=counter, paths=[tmp_path]).run()

        assert results == [1, 2, 3]

    async def test_stops_at_max_runs(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """No more runs start once max_runs is reached."""
        change = {(Change.modified, str(tmp_path / "a.tsx"))}
        monkeypatch.setattr(watch, "awatch", fake_awatch(change, change, change))
        counter = Counter()

        results = await WatchMode(
            run_once=counter, paths=[tmp_path], max_runs=2
        ).run()

        assert results == [1, 2]

    async def test_cancelled_watch_runs_once(self) -> None:
        """A cancelled token stops the loop after the initial run."""
        cancel = CancellationToken()
        cancel.cancel()

        results = await WatchMode(run_once=Counter(), interval=0, cancel=cancel).run()

        assert results == [1]

    async def test_failed_runs_are_skipped(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failed run is logged and watching continues."""
        with caplog.at_level(logging.ERROR):
            results = await WatchMode(
                run_once=Counter(fail_on=2), interval=0, max_runs=3
            ).run()

        assert results == [1, 3]
        assert "Watched run failed: Run failed during test: flaky backend" in (
            caplog.text
        )


@pytest.mark.parametrize(
    ("path", "watched"),
    [
        ("src/pages/Home.tsx", True),
        ("src/.cache/x.js", False),
        ("node_modules/react/index.js", False),
        ("test-results/report.json", False),
        (".git/HEAD", False),
    ],
)
def test_source_filter(path: str, watched: bool) -> None:
    """Hidden directories and build output never trigger runs."""
    assert SourceFilter()(Change.modified, path) is watched
