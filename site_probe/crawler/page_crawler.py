"""Breadth-first discovery of the pages of a running application."""

import asyncio
import logging
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import urljoin

from site_probe.crawler.route_analyzer import RouteAnalyzer
from site_probe.crawler.static_scan import edge_function_name, scan_edge_functions
from site_probe.driver.base import NavigationResult, PageSession, RequestEvent
from site_probe.errors import DiscoveryError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import (
    DiscoveredPage,
    DiscoveredRoute,
    DiscoveryGraph,
    EdgeFunction,
)
from site_probe.parallel import CancellationToken
from site_probe.policy.filters import FilterManager
from site_probe.urls import canonicalize_url, same_origin

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class QueuedPage:
    """Page waiting to be visited."""

    url: str
    depth: int
    referrer: str | None = None


@dataclass(kw_only=True)
class TraversalContext:
    """State of one crawl. Created per call, never shared."""

    base_url: str
    max_pages: int
    hop_limit: int
    seen: set[str] = field(default_factory=set)
    queue: deque[QueuedPage] = field(default_factory=deque)
    pages: dict[str, DiscoveredPage] = field(default_factory=dict)
    observed_functions: dict[str, EdgeFunction] = field(default_factory=dict)

    def seed(self, url: str) -> None:
        """Queue the start page, bypassing every admission rule."""
        self.seen.add(url)
        self.queue.append(QueuedPage(url=url, depth=0))

    def offer(
        self,
        url: str,
        depth: int,
        referrer: str | None,
        filters: FilterManager | None = None,
    ) -> bool:
        """Queue ``url`` if it has not been seen and is admissible.

        Returns:
            True if the URL was queued

        """
        if url in self.seen:
            return False
        if not same_origin(url, self.base_url):
            return False
        if depth > self.hop_limit:
            return False
        if len(self.seen) >= self.max_pages:
            return False
        if filters is not None and not filters.allows_url(url):
            return False
        self.seen.add(url)
        self.queue.append(QueuedPage(url=url, depth=depth, referrer=referrer))
        return True

    def observe_request(self, event: RequestEvent) -> None:
        """Record edge functions invoked by the pages being crawled."""
        name = edge_function_name(event.url)
        if name is None or name in self.observed_functions:
            return
        log.debug("Observed edge function %s at %s", name, event.url)
        self.observed_functions[name] = EdgeFunction(
            name=name,
            endpoint=event.url.split("?", 1)[0],
            method=event.method.upper(),
            source="network",
        )


@dataclass(frozen=True, kw_only=True)
class PageCrawler:
    """Discovers pages, their artifacts and the edge functions they call."""

    analyzer: RouteAnalyzer = field(default_factory=RouteAnalyzer)

    async def crawl(
        self,
        session: PageSession,
        config: TestConfig,
        *,
        filters: FilterManager | None = None,
        cancel: CancellationToken | None = None,
    ) -> DiscoveryGraph:
        """Traverse the application breadth-first from ``config.base_url``.

        Args:
            session: Session dedicated to discovery
            config: Resolved run configuration
            filters: URL filter applied to every page except the base URL
            cancel: Token checked between pages

        Returns:
            The discovery graph, pages keyed by canonical URL

        """
        base_url = canonicalize_url(config.base_url)
        context = TraversalContext(
            base_url=base_url,
            max_pages=config.max_pages,
            hop_limit=config.hop_limit,
        )
        context.seed(base_url)

        static_routes = self._static_routes(config)
        for route in static_routes:
            if route.testable:
                url = canonicalize_url(urljoin(base_url, route.path))
                context.offer(url, 1, None, filters)

        unsubscribe = session.on_request(context.observe_request)
        try:
            while context.queue:
                if cancel is not None and cancel.cancelled:
                    log.warning(
                        "Discovery cancelled (%s), %d page(s) not visited",
                        cancel.reason,
                        len(context.queue),
                    )
                    break
                queued = context.queue.popleft()
                page = await self.visit(session, queued, config)
                context.pages[queued.url] = page
                if page.unreachable:
                    continue
                for link in page.links:
                    context.offer(link, queued.depth + 1, queued.url, filters)
                if config.navigation_delay and context.queue:
                    await asyncio.sleep(config.navigation_delay)
        finally:
            unsubscribe()

        log.info(
            "Discovered %d page(s) (%d unreachable)",
            len(context.pages),
            sum(1 for page in context.pages.values() if page.unreachable),
        )
        return DiscoveryGraph(
            base_url=base_url,
            pages=dict(sorted(context.pages.items())),
            edge_functions=self._edge_functions(config, base_url, context),
            routes=self._all_routes(static_routes, context.pages.values()),
        )

    async def visit(
        self, session: PageSession, queued: QueuedPage, config: TestConfig
    ) -> DiscoveredPage:
        """Load one page and analyze it, recording failures as unreachable."""
        first_seen = datetime.now(UTC)
        try:
            navigation, html = await self.load(session, queued.url, config)
        except DiscoveryError as exc:
            log.warning("%s", exc)
            return DiscoveredPage(
                url=queued.url,
                depth=queued.depth,
                referrer=queued.referrer,
                first_seen=first_seen,
                status_code=exc.status,
                unreachable=True,
                unreachable_reason=exc.reason,
            )

        analysis = self.analyzer.analyze(html, navigation.url)
        log.debug(
            "Visited %s (depth %d): %d link(s), %d form(s), %d button(s)",
            queued.url,
            queued.depth,
            len(analysis.links),
            len(analysis.forms),
            len(analysis.buttons),
        )
        return DiscoveredPage(
            url=queued.url,
            depth=queued.depth,
            referrer=queued.referrer,
            first_seen=first_seen,
            title=navigation.title or analysis.title,
            status_code=navigation.status,
            load_time_ms=navigation.load_time_ms,
            links=analysis.links,
            external_links=analysis.external_links,
            routes=analysis.routes,
            forms=analysis.forms,
            buttons=analysis.buttons,
            elements=analysis.elements,
        )

    async def load(
        self, session: PageSession, url: str, config: TestConfig
    ) -> tuple[NavigationResult, str]:
        """Navigate to ``url`` and return the navigation and rendered HTML.

        Raises:
            DiscoveryError: If navigation fails or the server answers >= 400

        """
        try:
            navigation = await session.navigate(url, config.check_timeout)
        except Exception as exc:
            raise DiscoveryError(url, str(exc) or type(exc).__name__) from exc
        if navigation.status is not None and navigation.status >= 400:
            raise DiscoveryError(
                url, f"HTTP {navigation.status}", status=navigation.status
            )
        try:
            html = await session.content()
        except Exception as exc:
            raise DiscoveryError(url, f"cannot read document: {exc}") from exc
        return navigation, html

    def _static_routes(self, config: TestConfig) -> Sequence[DiscoveredRoute]:
        if config.routes_dir is None:
            return []
        routes_dir = Path(config.routes_dir)
        if not routes_dir.is_dir():
            log.warning("Routes directory %s does not exist", routes_dir)
            return []
        return self.analyzer.analyze_routes_dir(routes_dir)

    def _edge_functions(
        self, config: TestConfig, base_url: str, context: TraversalContext
    ) -> Sequence[EdgeFunction]:
        functions: dict[str, EdgeFunction] = {}
        if config.edge_functions_dir is not None:
            for function in scan_edge_functions(
                Path(config.edge_functions_dir),
                config.edge_function_base_url or base_url,
            ):
                functions[function.name] = function
        for name, function in context.observed_functions.items():
            functions.setdefault(name, function)
        return [functions[name] for name in sorted(functions)]

    @staticmethod
    def _all_routes(
        static_routes: Sequence[DiscoveredRoute], pages: Iterable[DiscoveredPage]
    ) -> Sequence[DiscoveredRoute]:
        routes = {route.path: route for route in static_routes}
        for page in sorted(pages, key=lambda page: page.url):
            for route in page.routes:
                routes.setdefault(route.path, route)
        return [routes[path] for path in sorted(routes)]
