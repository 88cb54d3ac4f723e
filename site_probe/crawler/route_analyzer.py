"""Extraction of links, forms and interactive elements from rendered HTML."""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup, Tag

from site_probe.crawler.static_scan import scan_routes
from site_probe.models.discovery import (
    DiscoveredButton,
    DiscoveredElement,
    DiscoveredForm,
    DiscoveredRoute,
    FormField,
)
from site_probe.urls import resolve_link, same_origin

ROUTER_LINK_ATTRS: Sequence[str] = ("routerlink", "data-href", "to")

INTERACTIVE_ROLES: frozenset[str] = frozenset(
    ["button", "link", "tab", "menuitem", "checkbox", "switch", "option", "combobox"]
)

NON_FIELD_INPUT_TYPES: frozenset[str] = frozenset(
    ["hidden", "submit", "button", "reset", "image"]
)

BUTTON_INPUT_TYPES: frozenset[str] = frozenset(["submit", "button", "reset"])


@dataclass(frozen=True, kw_only=True)
class PageAnalysis:
    """Everything the analyzer found in one document."""

    title: str = ""
    links: Sequence[str] = ()
    external_links: Sequence[str] = ()
    routes: Sequence[DiscoveredRoute] = ()
    forms: Sequence[DiscoveredForm] = ()
    buttons: Sequence[DiscoveredButton] = ()
    elements: Sequence[DiscoveredElement] = ()


@dataclass(kw_only=True)
class IdAllocator:
    """Hands out identifiers that are unique within one page."""

    used: set[str] = field(default_factory=set)

    def allocate(self, candidate: str) -> str:
        base = slugify(candidate) or "item"
        allocated, count = base, 1
        while allocated in self.used:
            count += 1
            allocated = f"{base}-{count}"
        self.used.add(allocated)
        return allocated


def slugify(text: str) -> str:
    """Lowercase ``text`` and collapse non-alphanumerics to dashes."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:48]


def css_path(tag: Tag) -> str:
    """Return a selector that matches exactly ``tag``.

    Elements with an ``id`` are addressed directly; anything else gets a
    child path of ``nth-of-type`` steps from the nearest ancestor with an id
    (or from the document root).
    """
    steps: list[str] = []
    node: Tag | None = tag
    while isinstance(node, Tag) and node.name != "[document]":
        element_id = node.get("id")
        if isinstance(element_id, str) and element_id and re.fullmatch(
            r"[A-Za-z][\w-]*", element_id
        ):
            steps.append(f"#{element_id}")
            break
        parent = node.parent
        if isinstance(parent, Tag):
            siblings = parent.find_all(node.name, recursive=False)
            if len(siblings) == 1:
                steps.append(str(node.name))
            else:
                index = next(
                    i for i, sibling in enumerate(siblings, 1) if sibling is node
                )
                steps.append(f"{node.name}:nth-of-type({index})")
        else:
            steps.append(node.name)
        node = parent
    return " > ".join(reversed(steps))


def text_of(tag: Tag) -> str:
    """Visible text of ``tag`` with whitespace collapsed."""
    return " ".join(tag.get_text(" ", strip=True).split())


class RouteAnalyzer:
    """Parses rendered HTML into discovered artifacts."""

    def analyze(self, html: str, page_url: str) -> PageAnalysis:
        """Extract links, routes, forms, buttons and interactive elements.

        Args:
            html: Serialized DOM of the page
            page_url: Canonical URL the document was loaded from

        Returns:
            The artifacts found, links split into same-origin and external

        """
        soup = BeautifulSoup(html, "html.parser")
        ids = IdAllocator()

        links, external = self._links(soup, page_url)
        title_tag = soup.find("title")

        return PageAnalysis(
            title=text_of(title_tag) if isinstance(title_tag, Tag) else "",
            links=links,
            external_links=external,
            routes=self._routes(soup, page_url, ids),
            forms=self._forms(soup, page_url, ids),
            buttons=self._buttons(soup, page_url, ids),
            elements=self._elements(soup, page_url, ids),
        )

    def analyze_routes_dir(self, routes_dir: Path) -> Sequence[DiscoveredRoute]:
        """Return the routes declared in the route sources under ``routes_dir``."""
        return scan_routes(routes_dir)

    def _links(
        self, soup: BeautifulSoup, page_url: str
    ) -> tuple[list[str], list[str]]:
        internal: dict[str, None] = {}
        external: dict[str, None] = {}
        hrefs = [anchor.get("href") for anchor in soup.find_all("a", href=True)]
        for attr in ROUTER_LINK_ATTRS:
            hrefs.extend(tag.get(attr) for tag in soup.find_all(attrs={attr: True}))

        for href in hrefs:
            if not isinstance(href, str):
                continue
            url = resolve_link(page_url, href)
            if url is None:
                continue
            if same_origin(url, page_url):
                internal[url] = None
            else:
                external[url] = None
        return list(internal), list(external)

    def _routes(
        self, soup: BeautifulSoup, page_url: str, ids: IdAllocator
    ) -> list[DiscoveredRoute]:
        routes: list[DiscoveredRoute] = []
        for attr in ROUTER_LINK_ATTRS:
            for tag in soup.find_all(attrs={attr: True}):
                path = tag.get(attr)
                if not isinstance(path, str) or not path.startswith("/"):
                    continue
                routes.append(
                    DiscoveredRoute(
                        id=ids.allocate(f"route-{path}"),
                        path=path,
                        page_url=page_url,
                        params=route_params(path),
                    )
                )
        return routes

    def _forms(
        self, soup: BeautifulSoup, page_url: str, ids: IdAllocator
    ) -> list[DiscoveredForm]:
        forms: list[DiscoveredForm] = []
        for index, form in enumerate(soup.find_all("form"), 1):
            name = form.get("id") or form.get("name") or form.get("aria-label")
            action = form.get("action")
            forms.append(
                DiscoveredForm(
                    id=ids.allocate(str(name) if name else f"form-{index}"),
                    page_url=page_url,
                    selector=css_path(form),
                    method=str(form.get("method") or "GET").upper(),
                    action=(
                        resolve_link(page_url, action)
                        if isinstance(action, str)
                        else None
                    ),
                    fields=self._fields(soup, form),
                    has_submit_button=form.find(is_submit_control) is not None,
                )
            )
        return forms

    def _fields(self, soup: BeautifulSoup, form: Tag) -> list[FormField]:
        fields: list[FormField] = []
        controls = form.find_all(["input", "textarea", "select"])
        for index, control in enumerate(controls, 1):
            if control.name == "input":
                field_type = str(control.get("type") or "text").lower()
                if field_type in NON_FIELD_INPUT_TYPES:
                    continue
            else:
                field_type = str(control.name)

            name = control.get("name") or control.get("id") or f"field-{index}"
            fields.append(
                FormField(
                    name=str(name),
                    type=field_type,
                    selector=css_path(control),
                    required=control.has_attr("required")
                    or control.get("aria-required") == "true",
                    label=self._label_for(soup, control),
                    placeholder=_str_attr(control, "placeholder"),
                    pattern=_str_attr(control, "pattern"),
                    min=_str_attr(control, "min"),
                    max=_str_attr(control, "max"),
                    min_length=_int_attr(control, "minlength"),
                    max_length=_int_attr(control, "maxlength"),
                    options=[
                        str(option.get("value", text_of(option)))
                        for option in control.find_all("option")
                        if not option.has_attr("disabled")
                    ]
                    if control.name == "select"
                    else (),
                )
            )
        return fields

    def _label_for(self, soup: BeautifulSoup, control: Tag) -> str | None:
        control_id = control.get("id")
        if isinstance(control_id, str):
            label = soup.find("label", attrs={"for": control_id})
            if isinstance(label, Tag):
                return text_of(label)
        parent_label = control.find_parent("label")
        if isinstance(parent_label, Tag):
            return text_of(parent_label)
        return _str_attr(control, "aria-label")

    def _buttons(
        self, soup: BeautifulSoup, page_url: str, ids: IdAllocator
    ) -> list[DiscoveredButton]:
        buttons: list[DiscoveredButton] = []
        candidates = soup.find_all(
            lambda tag: tag.name == "button"
            or (tag.name == "input" and tag.get("type") in BUTTON_INPUT_TYPES)
        )
        for index, button in enumerate(candidates, 1):
            text = text_of(button) or str(button.get("value") or "")
            aria_label = _str_attr(button, "aria-label")
            default_type = "submit" if button.find_parent("form") else "button"
            buttons.append(
                DiscoveredButton(
                    id=ids.allocate(
                        str(button.get("id") or text or aria_label or f"button-{index}")
                    ),
                    page_url=page_url,
                    selector=css_path(button),
                    text=text,
                    type=str(button.get("type") or default_type),
                    disabled=button.has_attr("disabled")
                    or button.get("aria-disabled") == "true",
                    aria_label=aria_label,
                    in_form=button.find_parent("form") is not None,
                )
            )
        return buttons

    def _elements(
        self, soup: BeautifulSoup, page_url: str, ids: IdAllocator
    ) -> list[DiscoveredElement]:
        elements: list[DiscoveredElement] = []

        def interactive(tag: Tag) -> bool:
            if tag.name in ("a", "button", "input", "textarea", "select", "option"):
                return False
            if tag.get("role") in INTERACTIVE_ROLES:
                return True
            if tag.has_attr("onclick") or tag.name == "summary":
                return True
            tabindex = tag.get("tabindex")
            return isinstance(tabindex, str) and tabindex.isdigit()

        for index, tag in enumerate(soup.find_all(interactive), 1):
            text = text_of(tag)
            role = _str_attr(tag, "role")
            elements.append(
                DiscoveredElement(
                    id=ids.allocate(
                        str(tag.get("id") or text or f"{tag.name}-{index}")
                    ),
                    page_url=page_url,
                    selector=css_path(tag),
                    tag_name=str(tag.name),
                    role=role,
                    text=text,
                    aria_label=_str_attr(tag, "aria-label"),
                    enabled=not (
                        tag.has_attr("disabled") or tag.get("aria-disabled") == "true"
                    ),
                )
            )
        return elements


def is_submit_control(tag: Tag) -> bool:
    """Whether ``tag`` submits its form when activated."""
    if tag.name == "button":
        return tag.get("type", "submit") == "submit"
    return tag.name == "input" and tag.get("type") in ("submit", "image")


def route_params(path: str) -> list[str]:
    """Return the ``:param`` segments of a route path."""
    return [segment[1:] for segment in path.split("/") if segment.startswith(":")]


def _str_attr(tag: Tag, name: str) -> str | None:
    value = tag.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value if isinstance(value, str) else None


def _int_attr(tag: Tag, name: str) -> int | None:
    value = _str_attr(tag, name)
    return int(value) if value is not None and value.isdigit() else None
