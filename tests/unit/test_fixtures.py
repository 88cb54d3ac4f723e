"""Tests for run fixtures."""

import logging
from dataclasses import dataclass
from pathlib import Path

import pytest

from site_probe.fixtures import (
    Fixture,
    FixtureManager,
    HttpClientFixture,
    OutputDirectoryFixture,
)
from site_probe.models.config import TestConfig


@dataclass(kw_only=True)
class RecordingFixture(Fixture):
    """Fixture appending its setup and teardown to a shared log."""

    name = "recording"
    label: str
    events: list[str]
    fail_setup: bool = False
    fail_teardown: bool = False

    async def setup(self, config: TestConfig) -> None:
        if self.fail_setup:
            raise RuntimeError(f"{self.label} unavailable")
        self.events.append(f"setup:{self.label}")

    async def teardown(self) -> None:
        self.events.append(f"teardown:{self.label}")
        if self.fail_teardown:
            raise RuntimeError(f"{self.label} stuck")


class TestFixtureManager:
    """Tests for FixtureManager."""

    async def test_releases_in_reverse_order(self, config: TestConfig) -> None:
        """Fixtures are torn down last acquired first."""
        events: list[str] = []
        fixtures = [
            RecordingFixture(label="a", events=events),
            RecordingFixture(label="b", events=events),
        ]

        async with FixtureManager(fixtures=fixtures, config=config) as manager:
            assert manager.get(RecordingFixture) is fixtures[0]

        assert events == ["setup:a", "setup:b", "teardown:b", "teardown:a"]

    async def test_releases_acquired_when_setup_fails(
        self, config: TestConfig
    ) -> None:
        """A failing setup tears down what was acquired and re-raises."""
        events: list[str] = []
        fixtures = [
            RecordingFixture(label="a", events=events),
            RecordingFixture(label="b", events=events, fail_setup=True),
            RecordingFixture(label="c", events=events),
        ]

        with pytest.raises(RuntimeError, match="b unavailable"):
            async with FixtureManager(fixtures=fixtures, config=config):
                pytest.fail("body must not run")

        assert events == ["setup:a", "teardown:a"]

    async def test_releases_when_body_raises(self, config: TestConfig) -> None:
        """Fixtures are released when the run fails."""
        events: list[str] = []

        with pytest.raises(ValueError, match="boom"):
            async with FixtureManager(
                fixtures=[RecordingFixture(label="a", events=events)], config=config
            ):
                raise ValueError("boom")

        assert events == ["setup:a", "teardown:a"]

    async def test_logs_teardown_errors(
        self, config: TestConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A teardown error is logged and the remaining fixtures still released."""
        events: list[str] = []
        fixtures = [
            RecordingFixture(label="a", events=events),
            RecordingFixture(label="b", events=events, fail_teardown=True),
        ]

        with caplog.at_level(logging.ERROR):
            async with FixtureManager(fixtures=fixtures, config=config):
                pass

        assert events[-2:] == ["teardown:b", "teardown:a"]
        assert "Teardown of fixture recording failed: b stuck" in caplog.text

    async def test_get_returns_none_when_missing(self, config: TestConfig) -> None:
        """get returns None for fixture types that were not acquired."""
        async with FixtureManager(fixtures=[], config=config) as manager:
            assert manager.get(HttpClientFixture) is None


async def test_http_client_fixture_closes_session(config: TestConfig) -> None:
    """The HTTP session is open during the run and closed afterwards."""
    fixture = HttpClientFixture()

    await fixture.setup(config)
    session = fixture.session
    assert session is not None
    assert not session.closed

    await fixture.teardown()
    assert session.closed
    assert fixture.session is None


async def test_output_directory_fixture_creates_directory(
    tmp_path: Path, config: TestConfig
) -> None:
    """The report directory exists once the fixture is set up."""
    fixture = OutputDirectoryFixture()

    await fixture.setup(config)

    assert fixture.path == Path(config.output_dir)
    assert fixture.path.is_dir()
