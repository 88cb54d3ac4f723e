"""In-memory browser driver serving a scripted site, for tests."""

import asyncio
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from site_probe.driver.base import (
    BrowserDriver,
    ConsoleHandler,
    ConsoleMessage,
    NavigationResult,
    PageSession,
    RequestEvent,
    RequestHandler,
    Unsubscribe,
    register,
)
from site_probe.models.config import ViewportConfig
from site_probe.urls import canonicalize_url


@dataclass(frozen=True, kw_only=True)
class FakeAction:
    """Scripted outcome of a click or a form submission.

    With ``requires`` set, the action only happens when the listed selectors
    were filled with the given values.
    """

    navigate_to: str | None = None
    console: Sequence[ConsoleMessage] = ()
    requests: Sequence[RequestEvent] = ()
    reveals: Sequence[str] = ()
    raises: str | None = None
    requires: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class FakePage:
    """Scripted document served by the fake driver."""

    html: str = "<html><head><title>Page</title></head><body></body></html>"
    status: int = 200
    title: str | None = None
    console: Sequence[ConsoleMessage] = ()
    requests: Sequence[RequestEvent] = ()
    evaluations: Mapping[str, Any] = field(default_factory=dict)
    screenshot: bytes = b"\x89PNG fake"
    present: Sequence[str] = ()
    clicks: Mapping[str, FakeAction] = field(default_factory=dict)
    submit_empty: Mapping[str, FakeAction] = field(default_factory=dict)
    submit_filled: Mapping[str, FakeAction] = field(default_factory=dict)
    error: str | None = None
    delay: float = 0.0


def html_page(body: str, *, title: str = "Page", lang: str | None = "en") -> str:
    """Wrap ``body`` in a minimal HTML document."""
    lang_attr = f' lang="{lang}"' if lang else ""
    return (
        f"<html{lang_attr}><head><title>{title}</title></head>"
        f"<body>{body}</body></html>"
    )


@dataclass(kw_only=True)
class FakeSession(PageSession):
    """Session navigating the fake site."""

    driver: "FakeDriver"
    viewport: ViewportConfig
    current: str = "about:blank"
    filled: dict[str, str] = field(default_factory=dict)
    revealed: set[str] = field(default_factory=set)
    console_handlers: list[ConsoleHandler] = field(default_factory=list)
    request_handlers: list[RequestHandler] = field(default_factory=list)

    @property
    def url(self) -> str:
        return self.current

    @property
    def page(self) -> FakePage:
        return self.driver.page_for(self.current)

    async def navigate(self, url: str, timeout: float) -> NavigationResult:
        key = canonicalize_url(url)
        self.driver.navigations.append(key)
        page = self.driver.page_for(key)
        if page.delay:
            await asyncio.sleep(page.delay)
        if page.error is not None:
            raise RuntimeError(page.error)
        self.current = key
        self.filled.clear()
        self.revealed.clear()
        self._emit(page.console, page.requests)
        return NavigationResult(
            url=key,
            status=page.status,
            title=page.title or "",
            load_time_ms=page.delay * 1000,
        )

    async def content(self) -> str:
        return self.page.html

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return self.page.evaluations.get(expression)

    async def screenshot(self) -> bytes:
        return self.page.screenshot

    async def set_viewport(self, viewport: ViewportConfig) -> None:
        self.viewport = viewport

    async def click(self, selector: str, timeout: float) -> NavigationResult | None:
        self.driver.clicked.append((self.current, selector))
        return await self._perform(self.page.clicks.get(selector), timeout)

    async def fill(self, selector: str, value: str) -> None:
        self.filled[selector] = value

    async def check(self, selector: str) -> None:
        self.filled[selector] = "on"

    async def select_option(self, selector: str, value: str) -> None:
        self.filled[selector] = value

    async def submit(
        self, form_selector: str, timeout: float
    ) -> NavigationResult | None:
        self.driver.submitted.append((self.current, form_selector, dict(self.filled)))
        actions = self.page.submit_filled if self.filled else self.page.submit_empty
        return await self._perform(actions.get(form_selector), timeout)

    async def count(self, selector: str) -> int:
        if selector in self.revealed or selector in self.page.present:
            return 1
        return 0

    def on_console(self, handler: ConsoleHandler) -> Unsubscribe:
        return register(self.console_handlers, handler)

    def on_request(self, handler: RequestHandler) -> Unsubscribe:
        return register(self.request_handlers, handler)

    def remove_listeners(self) -> None:
        self.console_handlers.clear()
        self.request_handlers.clear()

    async def _perform(
        self, action: FakeAction | None, timeout: float
    ) -> NavigationResult | None:
        if action is None:
            return None
        if any(self.filled.get(k) != v for k, v in action.requires.items()):
            return None
        if action.raises is not None:
            raise RuntimeError(action.raises)
        self._emit(action.console, action.requests)
        self.revealed.update(action.reveals)
        if action.navigate_to is None:
            return None
        return await self.navigate(action.navigate_to, timeout)

    def _emit(
        self, console: Sequence[ConsoleMessage], requests: Sequence[RequestEvent]
    ) -> None:
        for message in console:
            for console_handler in list(self.console_handlers):
                console_handler(message)
        for request in requests:
            for request_handler in list(self.request_handlers):
                request_handler(request)


@dataclass(kw_only=True)
class FakeDriver(BrowserDriver):
    """Driver serving ``pages`` keyed by URL; unknown URLs return 404."""

    pages: Mapping[str, FakePage]
    navigations: list[str] = field(default_factory=list)
    clicked: list[tuple[str, str]] = field(default_factory=list)
    submitted: list[tuple[str, str, dict[str, str]]] = field(default_factory=list)
    sessions_opened: int = 0

    def __post_init__(self) -> None:
        self.pages = {canonicalize_url(url): page for url, page in self.pages.items()}

    def page_for(self, url: str) -> FakePage:
        """Return the scripted page at ``url``."""
        return self.pages.get(
            canonicalize_url(url),
            FakePage(html=html_page("Not found", title="404"), status=404),
        )

    @asynccontextmanager
    async def new_session(
        self, viewport: ViewportConfig | None = None
    ) -> AsyncGenerator[PageSession, None]:
        self.sessions_opened += 1
        yield FakeSession(driver=self, viewport=viewport or ViewportConfig())
