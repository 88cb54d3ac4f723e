"""URL and test-type filtering."""

import re
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field

from site_probe.models.config import TestConfig
from site_probe.models.result import TestType


@dataclass(frozen=True, kw_only=True)
class FilterManager:
    """Decides which URLs are crawled and which test types run.

    Exclude patterns win over include patterns. An empty include list
    admits every URL; an empty type selection admits every test type.
    """

    include: Sequence[re.Pattern[str]] = ()
    exclude: Sequence[re.Pattern[str]] = ()
    only_types: frozenset[TestType] = field(default_factory=frozenset)
    skip_types: frozenset[TestType] = field(default_factory=frozenset)

    @classmethod
    def from_config(
        cls,
        config: TestConfig,
        *,
        only_types: Collection[TestType] = (),
        skip_types: Collection[TestType] = (),
    ) -> "FilterManager":
        """Compile the URL patterns of ``config``."""
        return cls(
            include=[re.compile(pattern) for pattern in config.include_patterns],
            exclude=[re.compile(pattern) for pattern in config.exclude_patterns],
            only_types=frozenset(only_types),
            skip_types=frozenset(skip_types),
        )

    def allows_url(self, url: str) -> bool:
        """Check whether ``url`` may be crawled and tested."""
        if any(pattern.search(url) for pattern in self.exclude):
            return False
        if not self.include:
            return True
        return any(pattern.search(url) for pattern in self.include)

    def allows_type(self, test_type: TestType) -> bool:
        """Check whether checks of ``test_type`` should run."""
        if test_type in self.skip_types:
            return False
        return not self.only_types or test_type in self.only_types
