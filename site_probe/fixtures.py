"""Run-scoped resources acquired before discovery and released after reporting."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import ClassVar

import aiohttp

from site_probe.models.config import TestConfig

log = logging.getLogger(__name__)


class Fixture(ABC):
    """Resource living for the whole run."""

    name: ClassVar[str] = "fixture"

    @abstractmethod
    async def setup(self, config: TestConfig) -> None:
        """Acquire the resource."""

    async def teardown(self) -> None:
        """Release the resource. Does nothing by default."""


@dataclass(kw_only=True)
class HttpClientFixture(Fixture):
    """Shared aiohttp session for testers that call endpoints directly."""

    name = "http-client"
    session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def setup(self, config: TestConfig) -> None:
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=config.check_timeout),
            raise_for_status=False,
        )

    async def teardown(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None


@dataclass(kw_only=True)
class OutputDirectoryFixture(Fixture):
    """Makes sure the report directory exists before anything is written."""

    name = "output-directory"
    path: Path | None = None

    async def setup(self, config: TestConfig) -> None:
        self.path = Path(config.output_dir)
        await asyncio.to_thread(self.path.mkdir, parents=True, exist_ok=True)


@dataclass(kw_only=True)
class FixtureManager:
    """Acquires fixtures in order and releases them in reverse order.

    Only fixtures whose setup completed are torn down. Teardown errors are
    logged and never replace the exception that ended the run.
    """

    fixtures: Sequence[Fixture]
    config: TestConfig
    acquired: list[Fixture] = field(default_factory=list)

    async def __aenter__(self) -> "FixtureManager":
        try:
            for fixture in self.fixtures:
                log.debug("Setting up fixture %s", fixture.name)
                await fixture.setup(self.config)
                self.acquired.append(fixture)
        except BaseException:
            await self.release()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.release()

    async def release(self) -> None:
        """Tear down every acquired fixture, last acquired first."""
        while self.acquired:
            fixture = self.acquired.pop()
            log.debug("Tearing down fixture %s", fixture.name)
            try:
                await fixture.teardown()
            except Exception as exc:
                log.error(
                    "Teardown of fixture %s failed: %s", fixture.name, exc, exc_info=exc
                )

    def get[FixtureT: Fixture](self, fixture_type: type[FixtureT]) -> FixtureT | None:
        """Return the first acquired fixture of ``fixture_type``."""
        for fixture in self.acquired:
            if isinstance(fixture, fixture_type):
                return fixture
        return None
