"""Playwright implementation of the browser driver."""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import (
    Browser,
    ConsoleMessage as PlaywrightConsoleMessage,
    Error as PlaywrightError,
    Page,
    Request,
    Response,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

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
from site_probe.errors import DriverError
from site_probe.models.config import TestConfig, ViewportConfig

log = logging.getLogger(__name__)

LEVELS = {"warning": "warn", "trace": "debug", "assert": "error"}

SETTLE_TIMEOUT = 5.0


@dataclass(kw_only=True)
class PlaywrightSession(PageSession):
    """Session backed by one Playwright page."""

    page: Page
    console_handlers: list[ConsoleHandler] = field(default_factory=list)
    request_handlers: list[RequestHandler] = field(default_factory=list)
    last_document_status: int | None = None

    def __post_init__(self) -> None:
        self.page.on("console", self._handle_console)
        self.page.on("pageerror", self._handle_page_error)
        self.page.on("response", self._handle_response)
        self.page.on("requestfailed", self._handle_request_failed)

    @property
    def url(self) -> str:
        return self.page.url

    async def navigate(self, url: str, timeout: float) -> NavigationResult:
        started = _now_ms()
        response = await self.page.goto(
            url, wait_until="load", timeout=timeout * 1000
        )
        await self._settle()
        return NavigationResult(
            url=self.page.url,
            status=response.status if response is not None else None,
            title=await self.page.title(),
            load_time_ms=_now_ms() - started,
        )

    async def content(self) -> str:
        return await self.page.content()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self.page.evaluate(expression, arg)

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=True)

    async def set_viewport(self, viewport: ViewportConfig) -> None:
        await self.page.set_viewport_size(
            {"width": viewport.width, "height": viewport.height}
        )

    async def click(self, selector: str, timeout: float) -> NavigationResult | None:
        return await self._act_and_settle(
            self.page.click(selector, timeout=timeout * 1000)
        )

    async def fill(self, selector: str, value: str) -> None:
        await self.page.fill(selector, value)

    async def check(self, selector: str) -> None:
        await self.page.check(selector)

    async def select_option(self, selector: str, value: str) -> None:
        await self.page.select_option(selector, value)

    async def submit(
        self, form_selector: str, timeout: float
    ) -> NavigationResult | None:
        return await self._act_and_settle(
            self.page.eval_on_selector(
                form_selector,
                "form => form.requestSubmit ? form.requestSubmit() : form.submit()",
            )
        )

    async def count(self, selector: str) -> int:
        return await self.page.locator(selector).count()

    def on_console(self, handler: ConsoleHandler) -> Unsubscribe:
        return register(self.console_handlers, handler)

    def on_request(self, handler: RequestHandler) -> Unsubscribe:
        return register(self.request_handlers, handler)

    def remove_listeners(self) -> None:
        self.console_handlers.clear()
        self.request_handlers.clear()

    async def _act_and_settle(self, action: Any) -> NavigationResult | None:
        before = self.page.url
        started = _now_ms()
        self.last_document_status = None
        await action
        await self._settle()
        if self.page.url == before and self.last_document_status is None:
            return None
        return NavigationResult(
            url=self.page.url,
            status=self.last_document_status,
            title=await self.page.title(),
            load_time_ms=_now_ms() - started,
        )

    async def _settle(self) -> None:
        try:
            await self.page.wait_for_load_state(
                "networkidle", timeout=SETTLE_TIMEOUT * 1000
            )
        except PlaywrightTimeoutError:
            log.debug("Page %s did not reach network idle", self.page.url)

    def _handle_console(self, message: PlaywrightConsoleMessage) -> None:
        location = message.location
        event = ConsoleMessage(
            level=LEVELS.get(message.type, message.type),
            text=message.text,
            url=location.get("url"),
            line=location.get("lineNumber", 0),
            column=location.get("columnNumber", 0),
        )
        for handler in list(self.console_handlers):
            handler(event)

    def _handle_page_error(self, error: PlaywrightError) -> None:
        event = ConsoleMessage(
            level="error", text=error.message, url=self.page.url, uncaught=True
        )
        for handler in list(self.console_handlers):
            handler(event)

    def _handle_response(self, response: Response) -> None:
        request = response.request
        if (
            request.resource_type == "document"
            and request.frame == self.page.main_frame
        ):
            self.last_document_status = response.status
        self._emit_request(
            request, status=response.status, failed=False, failure_reason=None
        )

    def _handle_request_failed(self, request: Request) -> None:
        self._emit_request(
            request, status=None, failed=True, failure_reason=request.failure
        )

    def _emit_request(
        self,
        request: Request,
        *,
        status: int | None,
        failed: bool,
        failure_reason: str | None,
    ) -> None:
        response_start = request.timing.get("responseStart", -1)
        event = RequestEvent(
            url=request.url,
            method=request.method,
            resource_type=request.resource_type,
            status=status,
            failed=failed,
            failure_reason=failure_reason,
            duration_ms=response_start if response_start >= 0 else None,
        )
        for handler in list(self.request_handlers):
            handler(event)


@dataclass(frozen=True, kw_only=True)
class PlaywrightDriver(BrowserDriver):
    """Driver launching one browser and one context per session."""

    config: TestConfig
    browser: Browser = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: TestConfig
    ) -> AsyncGenerator["PlaywrightDriver", None]:
        """Launch the configured browser for the lifetime of the context."""
        async with async_playwright() as playwright:
            browser_type = getattr(playwright, config.browser)
            try:
                browser = await browser_type.launch(headless=config.headless)
            except PlaywrightError as exc:
                raise DriverError(f"Cannot launch {config.browser}: {exc}") from exc
            log.info(
                "Launched %s (headless=%s)", config.browser, config.headless
            )
            try:
                yield cls(config=config, browser=browser)
            finally:
                await browser.close()

    @asynccontextmanager
    async def new_session(
        self, viewport: ViewportConfig | None = None
    ) -> AsyncGenerator[PageSession, None]:
        viewport = viewport or self.config.viewports[0]
        context = await self.browser.new_context(
            viewport={"width": viewport.width, "height": viewport.height},
            device_scale_factor=viewport.device_scale_factor,
            is_mobile=viewport.is_mobile,
            ignore_https_errors=True,
        )
        try:
            page = await context.new_page()
            page.set_default_timeout(self.config.check_timeout * 1000)
            yield PlaywrightSession(page=page)
        finally:
            await context.close()


def _now_ms() -> float:
    return time.monotonic() * 1000
