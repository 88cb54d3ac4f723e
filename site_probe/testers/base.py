"""Contract shared by every tester."""

import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Self

import aiohttp

from site_probe.driver.base import PageSession
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.result import TestResult, TestType, make_check_id
from site_probe.storage.kv import KeyValueStore
from site_probe.urls import canonicalize_url

type TesterScope = Literal["page", "run"]


@dataclass(frozen=True, kw_only=True)
class TesterResources:
    """Run-scoped collaborators handed to testers when they are built."""

    http: aiohttp.ClientSession | None = None
    store: KeyValueStore | None = None


@dataclass(frozen=True, kw_only=True)
class Tester[ArtifactT](ABC):
    """Checks one kind of discovered artifact.

    Page testers are run once per reachable page and artifact, with the
    session already showing the page. Run testers are run once per run with
    ``page`` set to None and draw their artifacts from the discovery graph.
    A tester never adds pages to the graph.
    """

    test_type: ClassVar[TestType]
    scope: ClassVar[TesterScope] = "page"

    @classmethod
    def create(cls, resources: TesterResources) -> Self:
        """Build the tester from the run's shared resources."""
        return cls()

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        """Whether the tester applies to runs with ``config``."""
        return True

    @abstractmethod
    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[ArtifactT]:
        """Return the artifacts to check on a page, or in the run's graph."""

    @abstractmethod
    def artifact_id(self, artifact: ArtifactT) -> str:
        """Return the identifier of ``artifact`` used in check identifiers."""

    @abstractmethod
    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: ArtifactT,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        """Check one artifact.

        Args:
            session: Session owned by the calling worker
            page: Page the artifact belongs to, None for run testers
            artifact: Artifact returned by `artifacts`
            config: Resolved run configuration

        Returns:
            One result per sub-check

        Raises:
            TesterError: If the check cannot be carried out

        """

    def check_id(
        self,
        page: DiscoveredPage | None,
        artifact: ArtifactT,
        sub_check: str | None = None,
    ) -> str:
        """Return the identifier of a check on ``artifact``."""
        return make_check_id(
            self.test_type,
            page.url if page is not None else None,
            self.artifact_id(artifact),
            sub_check,
        )

    def timeout(self, artifact: ArtifactT, config: TestConfig) -> float:
        """Return how long `run` may take on ``artifact`` before it is abandoned."""
        return config.check_timeout

    def sub_checks(self, artifact: ArtifactT) -> Sequence[str | None]:
        """Return the sub-checks `run` reports on ``artifact``, in order."""
        return [None]

    def check_ids(
        self, page: DiscoveredPage | None, artifact: ArtifactT
    ) -> Sequence[str]:
        """Return the identifiers `run` reports for ``artifact``.

        A check that raises or times out is reported once under each of
        these, so its history lines up with the runs where it completed.
        """
        return [self.check_id(page, artifact, sub) for sub in self.sub_checks(artifact)]

    def check_name(self, artifact: ArtifactT) -> str:
        """Return a human-readable name for checks on ``artifact``."""
        return f"{self.test_type}: {self.artifact_id(artifact)}"


async def show_page(
    session: PageSession,
    page: DiscoveredPage,
    config: TestConfig,
    *,
    fresh: bool = False,
) -> None:
    """Navigate back to ``page`` unless the session is already showing it.

    With ``fresh`` the page is always reloaded, discarding any state left by
    a previous interaction.
    """
    if fresh or canonicalize_url(session.url) != page.url:
        await session.navigate(page.url, config.check_timeout)


def elapsed_ms(started: float) -> float:
    """Milliseconds since ``started``, a `time.monotonic` reading."""
    return (time.monotonic() - started) * 1000


def excerpt(value: Any, limit: int = 200) -> str:
    """Return ``value`` as text, truncated to ``limit`` characters."""
    text = str(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


async def any_present(session: PageSession, selectors: Sequence[str]) -> bool:
    """Whether any of ``selectors`` currently matches an element."""
    for selector in selectors:
        if await session.count(selector) > 0:
            return True
    return False
