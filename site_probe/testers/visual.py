"""Visual tester: screenshot fingerprints compared against stored baselines."""

import asyncio
import hashlib
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from site_probe.crawler.route_analyzer import slugify
from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig, ViewportConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.result import (
    CategorizedError,
    ScreenshotEvidence,
    TestResult,
    TestType,
)
from site_probe.storage.kv import KeyValueStore
from site_probe.testers.base import Tester, TesterResources, elapsed_ms, show_page

log = logging.getLogger(__name__)


def baseline_key(environment: str, check_id: str) -> str:
    """Store key of the screenshot baseline of one check."""
    return f"visual/{environment}/{check_id}"


@dataclass(frozen=True, kw_only=True)
class VisualTester(Tester[ViewportConfig]):
    """Screenshots every page in every viewport.

    The first run of a check records its baseline and is skipped; later
    runs fail when the screenshot hash differs from the baseline.
    """

    test_type = TestType.VISUAL

    store: KeyValueStore = field(repr=False)

    @classmethod
    def create(cls, resources: TesterResources) -> Self:
        if resources.store is None:
            raise TesterError("Visual checks need a key-value store")
        return cls(store=resources.store)

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        return config.visual and config.screenshots

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[ViewportConfig]:
        return list(config.viewports) if isinstance(target, DiscoveredPage) else []

    def artifact_id(self, artifact: ViewportConfig) -> str:
        return artifact.name

    def check_name(self, artifact: ViewportConfig) -> str:
        return f"Screenshot at {artifact.name} ({artifact.width}x{artifact.height})"

    def sub_checks(self, artifact: ViewportConfig) -> Sequence[str | None]:
        return ["screenshot"]

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: ViewportConfig,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        if page is None:
            raise TesterError("Visual checks need a page")
        started = time.monotonic()
        [check_id] = self.check_ids(page, artifact)

        await session.set_viewport(artifact)
        try:
            await show_page(session, page, config)
            image = await session.screenshot()
        finally:
            await session.set_viewport(config.viewports[0])

        digest = hashlib.sha256(image).hexdigest()
        path = await asyncio.to_thread(
            save_screenshot, Path(config.output_dir), check_id, image
        )
        key = baseline_key(config.environment, check_id)
        baseline = await self.store.get(key)

        status = "pass"
        error = None
        if baseline is None:
            log.info("Recording visual baseline for %s", check_id)
            await self.store.set(key, digest)
            status = "skip"
        elif baseline != digest:
            status = "fail"
            error = CategorizedError(
                classification="visual",
                message=f"Screenshot differs from baseline at {artifact.name}",
            )
        return [
            TestResult(
                check_id=check_id,
                type=self.test_type,
                status=status,
                name=self.check_name(artifact),
                page_url=page.url,
                duration_ms=elapsed_ms(started),
                error=error,
                evidence=ScreenshotEvidence(
                    viewport=artifact.name,
                    hash=digest,
                    baseline_hash=baseline,
                    path=str(path),
                ),
            )
        ]


def save_screenshot(output_dir: Path, check_id: str, image: bytes) -> Path:
    """Write ``image`` under ``output_dir/screenshots`` and return its path."""
    suffix = hashlib.sha256(check_id.encode()).hexdigest()[:8]
    path = output_dir / "screenshots" / f"{slugify(check_id)}-{suffix}.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(image)
    return path
