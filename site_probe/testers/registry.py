"""Table of available testers and loading of third-party testers."""

import logging
from collections.abc import Mapping, Sequence
from importlib.metadata import entry_points
from typing import Any

from site_probe.errors import SiteProbeError
from site_probe.models.config import TestConfig
from site_probe.models.result import TestType
from site_probe.policy.filters import FilterManager
from site_probe.testers.accessibility import AccessibilityTester
from site_probe.testers.api import ApiTester
from site_probe.testers.auth import AuthTester
from site_probe.testers.base import Tester, TesterResources
from site_probe.testers.edge_function import EdgeFunctionTester
from site_probe.testers.element import ElementTester
from site_probe.testers.form import FormTester
from site_probe.testers.performance import PerformanceTester
from site_probe.testers.visual import VisualTester

log = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "site_probe.testers"

# Read-only testers come first so they see each page as it loaded.
TESTER_REGISTRY: Mapping[TestType, type[Tester[Any]]] = {
    TestType.ACCESSIBILITY: AccessibilityTester,
    TestType.PERFORMANCE: PerformanceTester,
    TestType.VISUAL: VisualTester,
    TestType.FORM: FormTester,
    TestType.ELEMENT: ElementTester,
    TestType.EDGE_FUNCTION: EdgeFunctionTester,
    TestType.API: ApiTester,
    TestType.AUTH: AuthTester,
}


class TesterNotFoundError(SiteProbeError):
    """Raised when a tester entry point does not resolve to a tester class."""


def load_tester_plugins() -> Mapping[TestType, type[Tester[Any]]]:
    """Return the built-in testers extended by installed plugins.

    Plugins register a `Tester` subclass in the ``site_probe.testers``
    entry-point group. A plugin replaces the built-in tester of the same
    test type.

    Raises:
        TesterNotFoundError: If an entry point does not load a `Tester`

    """
    registry = dict(TESTER_REGISTRY)
    for entry in entry_points(group=ENTRY_POINT_GROUP):
        tester_cls = entry.load()
        if not (isinstance(tester_cls, type) and issubclass(tester_cls, Tester)):
            raise TesterNotFoundError(
                f"Entry point '{entry.name}' does not name a Tester: {tester_cls!r}"
            )
        log.info("Loaded tester plugin %s for %s", entry.name, tester_cls.test_type)
        registry[tester_cls.test_type] = tester_cls
    return registry


def build_testers(
    config: TestConfig,
    resources: TesterResources,
    *,
    filters: FilterManager | None = None,
    registry: Mapping[TestType, type[Tester[Any]]] | None = None,
) -> Sequence[Tester[Any]]:
    """Instantiate the testers enabled for ``config``, in registry order."""
    if registry is None:
        registry = load_tester_plugins()
    testers: list[Tester[Any]] = []
    for test_type, tester_cls in registry.items():
        if filters is not None and not filters.allows_type(test_type):
            continue
        if not tester_cls.enabled(config):
            continue
        testers.append(tester_cls.create(resources))
    log.debug("Enabled testers: %s", ", ".join(str(t.test_type) for t in testers))
    return testers
