"""Abstract browser-automation driver used by the crawler, monitors and testers."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

from site_probe.models.config import ViewportConfig


@dataclass(frozen=True, kw_only=True)
class NavigationResult:
    """Outcome of loading a document in a session."""

    url: str
    status: int | None
    title: str = ""
    load_time_ms: float = 0.0


@dataclass(frozen=True, kw_only=True)
class ConsoleMessage:
    """Console message or uncaught page error reported by the driver."""

    level: str
    text: str
    url: str | None = None
    line: int = 0
    column: int = 0
    uncaught: bool = False


@dataclass(frozen=True, kw_only=True)
class RequestEvent:
    """Completed or failed network request observed by the driver."""

    url: str
    method: str
    resource_type: str
    status: int | None = None
    failed: bool = False
    failure_reason: str | None = None
    duration_ms: float | None = None


type ConsoleHandler = Callable[[ConsoleMessage], None]
type RequestHandler = Callable[[RequestEvent], None]
type Unsubscribe = Callable[[], None]


def register[HandlerT](handlers: list[HandlerT], handler: HandlerT) -> Unsubscribe:
    """Append ``handler`` to ``handlers`` and return a callable removing it."""
    handlers.append(handler)

    def unsubscribe() -> None:
        if handler in handlers:
            handlers.remove(handler)

    return unsubscribe


class PageSession(ABC):
    """One isolated browser context with a single page.

    Sessions are never shared between workers. Event handlers registered
    with `on_console` and `on_request` are called synchronously by the
    driver for every event until `remove_listeners` is called.
    """

    @property
    @abstractmethod
    def url(self) -> str:
        """URL of the document currently loaded."""

    @abstractmethod
    async def navigate(self, url: str, timeout: float) -> NavigationResult:
        """Load ``url`` and wait until the page settles.

        Args:
            url: Absolute URL to load
            timeout: Maximum time to wait in seconds

        Returns:
            The final URL, HTTP status and title of the loaded document

        """

    @abstractmethod
    async def content(self) -> str:
        """Return the serialized DOM of the current document."""

    @abstractmethod
    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        """Evaluate a JavaScript expression in the page and return its value."""

    @abstractmethod
    async def screenshot(self) -> bytes:
        """Capture a full-page PNG screenshot."""

    @abstractmethod
    async def set_viewport(self, viewport: ViewportConfig) -> None:
        """Resize the page to ``viewport``."""

    @abstractmethod
    async def click(self, selector: str, timeout: float) -> NavigationResult | None:
        """Click the element and wait for the page to settle.

        Returns:
            The navigation triggered by the click, or None if the page stayed

        """

    @abstractmethod
    async def fill(self, selector: str, value: str) -> None:
        """Type ``value`` into a text-like control."""

    @abstractmethod
    async def check(self, selector: str) -> None:
        """Tick a checkbox or radio button."""

    @abstractmethod
    async def select_option(self, selector: str, value: str) -> None:
        """Choose an option of a select element."""

    @abstractmethod
    async def submit(
        self, form_selector: str, timeout: float
    ) -> NavigationResult | None:
        """Submit a form and wait for the page to settle.

        Returns:
            The navigation triggered by the submission, or None

        """

    @abstractmethod
    async def count(self, selector: str) -> int:
        """Return the number of elements currently matching ``selector``."""

    @abstractmethod
    def on_console(self, handler: ConsoleHandler) -> Unsubscribe:
        """Register a console message handler.

        Returns:
            A callable unregistering the handler

        """

    @abstractmethod
    def on_request(self, handler: RequestHandler) -> Unsubscribe:
        """Register a network request handler and return its unregister callable."""

    @abstractmethod
    def remove_listeners(self) -> None:
        """Unregister every handler registered on this session."""


class BrowserDriver(ABC):
    """Factory of isolated page sessions."""

    @abstractmethod
    def new_session(
        self, viewport: ViewportConfig | None = None
    ) -> AbstractAsyncContextManager[PageSession]:
        """Open a new isolated session, closed when the context exits."""
