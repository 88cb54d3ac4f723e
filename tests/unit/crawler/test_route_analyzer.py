"""Tests for the HTML route analyzer."""

import pytest
from bs4 import BeautifulSoup, Tag

from site_probe.crawler.route_analyzer import (
    IdAllocator,
    RouteAnalyzer,
    css_path,
    route_params,
    slugify,
)
from site_probe.testing.fake_driver import html_page

PAGE_URL = "https://app.test/"


@pytest.fixture
def analyzer() -> RouteAnalyzer:
    """Create analyzer."""
    return RouteAnalyzer()


class TestLinks:
    """Tests for link extraction."""

    def test_splits_internal_and_external(self, analyzer: RouteAnalyzer) -> None:
        """Same-origin links are canonical, others are external."""
        html = html_page(
            '<a href="/about#team">About</a>'
            '<a href="/search?b=2&a=1">Search</a>'
            '<a href="https://github.com/acme">GitHub</a>'
            '<a href="mailto:hi@app.test">Mail</a>'
            '<a href="#top">Top</a>'
            '<a href="/about">About again</a>'
        )

        analysis = analyzer.analyze(html, PAGE_URL)

        assert analysis.links == [
            "https://app.test/about",
            "https://app.test/search?a=1&b=2",
        ]
        assert analysis.external_links == ["https://github.com/acme"]
        assert analysis.title == "Page"

    def test_router_attributes_are_links_and_routes(
        self, analyzer: RouteAnalyzer
    ) -> None:
        """Client-side router attributes yield links and routes."""
        html = html_page(
            '<span data-href="/settings">Settings</span>'
            '<span data-href="/users/:id">User</span>'
        )

        analysis = analyzer.analyze(html, PAGE_URL)

        assert "https://app.test/settings" in analysis.links
        assert [route.path for route in analysis.routes] == [
            "/settings",
            "/users/:id",
        ]
        assert analysis.routes[0].testable
        assert analysis.routes[1].params == ["id"]
        assert not analysis.routes[1].testable


class TestForms:
    """Tests for form extraction."""

    def test_extracts_fields_and_constraints(self, analyzer: RouteAnalyzer) -> None:
        """Fields carry their type, constraints and label."""
        html = html_page(
            '<form id="signup" method="post" action="/api/signup">'
            '<label for="email">Email</label>'
            '<input id="email" type="email" name="email" required>'
            '<input type="password" name="password" minlength="8">'
            '<select name="plan"><option value="free">Free</option>'
            '<option value="pro">Pro</option>'
            '<option value="old" disabled>Old</option></select>'
            '<input type="hidden" name="csrf" value="x">'
            '<button type="submit">Sign up</button>'
            "</form>"
        )

        [form] = analyzer.analyze(html, PAGE_URL).forms

        assert form.id == "signup"
        assert form.selector == "#signup"
        assert form.method == "POST"
        assert form.action == "https://app.test/api/signup"
        assert form.has_submit_button
        assert [field.name for field in form.fields] == ["email", "password", "plan"]
        email, password, plan = form.fields
        assert email.required
        assert email.label == "Email"
        assert email.selector == "#email"
        assert password.min_length == 8
        assert password.selector == "#signup > input:nth-of-type(2)"
        assert plan.type == "select"
        assert plan.options == ["free", "pro"]

    def test_unnamed_forms_get_positional_ids(self, analyzer: RouteAnalyzer) -> None:
        """Forms without a name are numbered."""
        html = html_page("<form><input name='q'></form><form></form>")

        forms = analyzer.analyze(html, PAGE_URL).forms

        assert [form.id for form in forms] == ["form-1", "form-2"]
        assert forms[0].method == "GET"
        assert not forms[0].has_submit_button


class TestButtonsAndElements:
    """Tests for button and interactive element extraction."""

    def test_buttons(self, analyzer: RouteAnalyzer) -> None:
        """Buttons record text, type, state and form membership."""
        html = html_page(
            '<button id="menu">Menu</button>'
            "<button disabled>Save</button>"
            '<button aria-label="Close"></button>'
            "<form id='f'><button>Send</button></form>"
        )

        buttons = analyzer.analyze(html, PAGE_URL).buttons

        assert [button.id for button in buttons] == ["menu", "save", "close", "send"]
        assert buttons[0].selector == "#menu"
        assert buttons[1].disabled
        assert buttons[2].aria_label == "Close"
        assert buttons[3].in_form
        assert buttons[3].type == "submit"
        assert buttons[0].type == "button"

    def test_duplicate_ids_are_suffixed(self, analyzer: RouteAnalyzer) -> None:
        """Identifiers stay unique within the page."""
        html = html_page("<button>Save</button><button>Save</button>")

        buttons = analyzer.analyze(html, PAGE_URL).buttons

        assert [button.id for button in buttons] == ["save", "save-2"]
        assert buttons[1].selector == "html > body > button:nth-of-type(2)"

    def test_suffixed_id_does_not_collide_with_literal_id(
        self, analyzer: RouteAnalyzer
    ) -> None:
        """A literal id equal to a generated suffix gets its own identifier."""
        html = html_page(
            '<button>Save</button><button>Save</button><button id="save-2"></button>'
        )

        buttons = analyzer.analyze(html, PAGE_URL).buttons

        assert [button.id for button in buttons] == ["save", "save-2", "save-2-2"]

    def test_interactive_elements(self, analyzer: RouteAnalyzer) -> None:
        """Roles, click handlers and tabindex make elements interactive."""
        html = html_page(
            '<div role="tab">Pricing</div>'
            '<div onclick="go()">Card</div>'
            '<span tabindex="0">Focus me</span>'
            '<div role="switch" aria-disabled="true">Dark mode</div>'
            "<div>Plain</div>"
        )

        elements = analyzer.analyze(html, PAGE_URL).elements

        assert [element.text for element in elements] == [
            "Pricing",
            "Card",
            "Focus me",
            "Dark mode",
        ]
        assert elements[0].role == "tab"
        assert elements[0].id == "pricing"
        assert not elements[3].enabled


def test_css_path_uses_nearest_id() -> None:
    """Selectors start at the closest ancestor with an id."""
    soup = BeautifulSoup(
        '<div id="app"><ul><li>a</li><li><b>b</b></li></ul></div>', "html.parser"
    )
    bold = soup.find("b")
    assert isinstance(bold, Tag)

    assert css_path(bold) == "#app > ul > li:nth-of-type(2) > b"


def test_id_allocator() -> None:
    """Allocated ids are slugs, numbered from the second use."""
    ids = IdAllocator()

    assert ids.allocate("Sign Up!") == "sign-up"
    assert ids.allocate("sign up") == "sign-up-2"
    assert ids.allocate("???") == "item"


def test_id_allocator_skips_taken_suffixes() -> None:
    """A suffix already handed out is never handed out again."""
    ids = IdAllocator()

    allocated = [ids.allocate(name) for name in ("Save", "Save", "save-2")]

    assert allocated == ["save", "save-2", "save-2-2"]


def test_slugify_and_route_params() -> None:
    """Helpers normalise labels and read route parameters."""
    assert slugify("  Hello, World  ") == "hello-world"
    assert route_params("/org/:org/repo/:repo") == ["org", "repo"]
