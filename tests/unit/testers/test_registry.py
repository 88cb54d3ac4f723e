"""Tests for the tester registry."""

from collections.abc import AsyncGenerator, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import aiohttp
import pytest

from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.result import TestResult, TestType
from site_probe.policy.filters import FilterManager
from site_probe.storage.kv import MemoryStore
from site_probe.testers import registry
from site_probe.testers.accessibility import AccessibilityTester
from site_probe.testers.base import Tester, TesterResources
from site_probe.testers.registry import (
    TESTER_REGISTRY,
    TesterNotFoundError,
    build_testers,
    load_tester_plugins,
)

type ConfigFactory = Callable[..., TestConfig]


@dataclass(frozen=True)
class FakeEntryPoint:
    """Entry point resolving to a fixed object."""

    name: str
    target: Any

    def load(self) -> Any:
        return self.target


@dataclass(frozen=True, kw_only=True)
class StrictAccessibilityTester(AccessibilityTester):
    """Plugin replacing the built-in accessibility tester."""


@dataclass(frozen=True, kw_only=True)
class NoopTester(Tester[str]):
    """Tester that checks nothing."""

    test_type = TestType.AUTH

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[str]:
        return []

    def artifact_id(self, artifact: str) -> str:
        return artifact

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: str,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        return []


@pytest.fixture
async def resources() -> AsyncGenerator[TesterResources, None]:
    """Create resources with an HTTP session and an in-memory store."""
    async with aiohttp.ClientSession() as http:
        yield TesterResources(http=http, store=MemoryStore.empty())


def types(testers: Sequence[Tester[Any]]) -> list[str]:
    return [str(tester.test_type) for tester in testers]


class TestBuildTesters:
    """Tests for build_testers."""

    async def test_default_testers_in_registry_order(
        self, config: TestConfig, resources: TesterResources
    ) -> None:
        """Defaults enable the read-only, interaction and backend testers."""
        testers = build_testers(config, resources, registry=TESTER_REGISTRY)

        assert types(testers) == [
            "accessibility",
            "performance",
            "form",
            "element",
            "edge-function",
        ]

    async def test_optional_testers(
        self, make_config: ConfigFactory, resources: TesterResources
    ) -> None:
        """Visual, API and auth testers are opt-in."""
        config = make_config(
            visual=True,
            api_testing=True,
            auth={"login_url": "/login", "username": "u", "password": "p"},
        )

        testers = build_testers(config, resources, registry=TESTER_REGISTRY)

        assert set(types(testers)) >= {"visual", "api", "auth"}

    async def test_type_filters(
        self, config: TestConfig, resources: TesterResources
    ) -> None:
        """Only and skip selections narrow the enabled testers."""
        filters = FilterManager(
            only_types=frozenset({TestType.FORM, TestType.ELEMENT}),
            skip_types=frozenset({TestType.ELEMENT}),
        )

        testers = build_testers(
            config, resources, filters=filters, registry=TESTER_REGISTRY
        )

        assert types(testers) == ["form"]

    def test_backend_testers_need_http(self, config: TestConfig) -> None:
        """Edge function checks cannot be built without an HTTP session."""
        with pytest.raises(TesterError, match="need an HTTP session"):
            build_testers(config, TesterResources(), registry=TESTER_REGISTRY)


class TestLoadTesterPlugins:
    """Tests for load_tester_plugins."""

    def test_without_plugins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The built-in table is returned as is."""
        monkeypatch.setattr(registry, "entry_points", lambda group: [])

        assert load_tester_plugins() == TESTER_REGISTRY

    def test_plugin_replaces_builtin(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A plugin takes the slot of the tester with the same type."""
        monkeypatch.setattr(
            registry,
            "entry_points",
            lambda group: [FakeEntryPoint("strict", StrictAccessibilityTester)],
        )

        loaded = load_tester_plugins()

        assert loaded[TestType.ACCESSIBILITY] is StrictAccessibilityTester
        assert list(loaded) == list(TESTER_REGISTRY)

    def test_plugin_for_another_type(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Plugins may replace any built-in type."""
        monkeypatch.setattr(
            registry,
            "entry_points",
            lambda group: [FakeEntryPoint("noop", NoopTester)],
        )

        assert load_tester_plugins()[TestType.AUTH] is NoopTester

    def test_rejects_non_testers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An entry point must name a Tester subclass."""
        monkeypatch.setattr(
            registry,
            "entry_points",
            lambda group: [FakeEntryPoint("broken", object)],
        )

        with pytest.raises(TesterNotFoundError, match="'broken'"):
            load_tester_plugins()
