"""Models for the discovery graph produced by the crawler."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Literal

from pydantic import Field

from site_probe.models.base import Model


class FormField(Model):
    """Input control of a discovered form."""

    name: str
    type: str = "text"
    selector: str
    required: bool = False
    label: str | None = None
    placeholder: str | None = None
    pattern: str | None = None
    min: str | None = None
    max: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    options: Sequence[str] = Field(
        default=(), description="Option values for select elements"
    )


class DiscoveredForm(Model):
    """Form found on a page."""

    id: str = Field(..., description="Identifier, unique within the page")
    page_url: str
    selector: str
    method: str = "GET"
    action: str | None = None
    fields: Sequence[FormField] = ()
    has_submit_button: bool = False


class DiscoveredButton(Model):
    """Button found on a page."""

    id: str = Field(..., description="Identifier, unique within the page")
    page_url: str
    selector: str
    text: str = ""
    type: str = "button"
    disabled: bool = False
    aria_label: str | None = None
    in_form: bool = False


class DiscoveredElement(Model):
    """Non-button interactive element found on a page."""

    id: str = Field(..., description="Identifier, unique within the page")
    page_url: str
    selector: str
    tag_name: str
    role: str | None = None
    text: str = ""
    aria_label: str | None = None
    enabled: bool = True


class DiscoveredRoute(Model):
    """Client-side route found on a page or by scanning route sources."""

    id: str
    path: str
    page_url: str | None = None
    source_file: str | None = None
    params: Sequence[str] = ()
    requires_auth: bool = False

    @property
    def testable(self) -> bool:
        """Whether the route can be visited without inventing parameters."""
        return not self.params and "*" not in self.path


class EdgeFunction(Model):
    """Backend function discovered statically or from observed traffic."""

    name: str
    endpoint: str
    method: str = "POST"
    request_shape: Mapping[str, str] = Field(
        default_factory=dict,
        description="Field name to JSON type inferred for the request body",
    )
    source: Literal["static", "network"] = "static"
    requires_auth: bool = False


class DiscoveredPage(Model):
    """Page reached by the crawler. Identity is the canonical URL."""

    url: str = Field(..., description="Canonical URL")
    depth: int = Field(..., description="Link hops from the base URL")
    referrer: str | None = Field(
        default=None, description="Canonical URL of the page that linked here"
    )
    first_seen: datetime
    title: str = ""
    status_code: int | None = None
    load_time_ms: float = 0.0
    unreachable: bool = False
    unreachable_reason: str | None = None
    links: Sequence[str] = Field(
        default=(), description="Canonical URLs of same-origin links"
    )
    external_links: Sequence[str] = ()
    routes: Sequence[DiscoveredRoute] = ()
    forms: Sequence[DiscoveredForm] = ()
    buttons: Sequence[DiscoveredButton] = ()
    elements: Sequence[DiscoveredElement] = ()


class DiscoveryGraph(Model):
    """Arena of discovered pages keyed by canonical URL."""

    base_url: str
    pages: Mapping[str, DiscoveredPage] = Field(default_factory=dict)
    edge_functions: Sequence[EdgeFunction] = ()
    routes: Sequence[DiscoveredRoute] = ()

    def reachable_pages(self) -> Sequence[DiscoveredPage]:
        """Return pages that loaded, sorted by canonical URL."""
        return sorted(
            (page for page in self.pages.values() if not page.unreachable),
            key=lambda page: page.url,
        )

    def unreachable_pages(self) -> Sequence[DiscoveredPage]:
        """Return pages that failed to load, sorted by canonical URL."""
        return sorted(
            (page for page in self.pages.values() if page.unreachable),
            key=lambda page: page.url,
        )
