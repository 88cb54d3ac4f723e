"""Tests for the accessibility audit."""

import pytest

from site_probe.models.config import TestConfig
from site_probe.models.result import AccessibilityEvidence
from site_probe.testers.accessibility import AccessibilityTester, audit
from site_probe.testing.factories import page_from_html
from site_probe.testing.fake_driver import FakeDriver, FakePage, html_page

HOME = "https://app.test/"


def violations(html: str) -> dict[str, AccessibilityEvidence]:
    """Audit ``html`` and index the rules that were broken."""
    return {item.rule: item for item in audit(html) if item.violations}


class TestAudit:
    """Tests for audit."""

    def test_clean_page_has_no_violations(self) -> None:
        """A small, well-formed page passes every rule."""
        html = html_page(
            "<h1>Pricing</h1><h2>Plans</h2>"
            '<img src="a.png" alt="Plan chart">'
            '<label for="email">Email</label><input id="email" type="email">'
            '<button aria-label="Close"><svg></svg></button>'
            '<a href="/about">About</a>'
        )

        assert violations(html) == {}

    def test_image_without_alt(self) -> None:
        """Images need an alt attribute unless they are decorative."""
        html = html_page(
            '<img src="a.png"><img src="b.png" role="presentation">'
            '<img src="c.png" alt="">'
        )

        [violation] = violations(html)["image-alt"].violations
        assert violation.severity == "critical"
        assert violation.selector == "html > body > img:nth-of-type(1)"

    def test_unnamed_controls(self) -> None:
        """Buttons and links need an accessible name."""
        html = html_page(
            '<button id="icon"><svg></svg></button>'
            '<input type="submit" value="Send">'
            '<a href="/x"></a><a href="/y"><img src="y.png" alt="Home"></a>'
        )

        found = violations(html)
        assert [v.selector for v in found["button-name"].violations] == ["#icon"]
        assert len(found["link-name"].violations) == 1

    def test_missing_lang_and_title(self) -> None:
        """The document needs a language and a non-empty title."""
        html = "<html><head><title> </title></head><body><p>Hi</p></body></html>"

        found = violations(html)
        assert set(found) == {"html-lang", "document-title"}

    def test_unlabelled_form_controls(self) -> None:
        """Inputs need a label, a wrapping label or an aria label."""
        html = html_page(
            '<input id="q" name="q">'
            '<label>Name <input name="name"></label>'
            '<input aria-label="Search" name="s">'
            '<input type="hidden" name="csrf">'
            "<textarea name=notes></textarea>"
        )

        labels = violations(html)["label"]
        assert labels.elements_checked == 4
        assert [v.selector for v in labels.violations] == [
            "#q",
            "html > body > textarea",
        ]

    @pytest.mark.parametrize(
        ("headings", "broken"),
        [
            ("<h1>a</h1><h2>b</h2><h3>c</h3><h2>d</h2>", False),
            ("<h1>a</h1><h3>b</h3>", True),
            ("<h2>a</h2><h4>b</h4>", True),
        ],
    )
    def test_heading_order(self, headings: str, broken: bool) -> None:
        """Heading levels may only increase one step at a time."""
        assert ("heading-order" in violations(html_page(headings))) is broken

    def test_duplicate_ids_reported_once(self) -> None:
        """Each repeated id is reported once."""
        html = html_page('<p id="x">a</p><p id="x">b</p><p id="x">c</p>')

        [violation] = violations(html)["duplicate-id"].violations
        assert violation.message == "id 'x' is used 3x"


class TestAccessibilityTester:
    """Tests for AccessibilityTester."""

    async def test_reports_one_check_per_rule(self, config: TestConfig) -> None:
        """Each rule becomes a check on the page."""
        html = html_page('<img src="logo.png"><h1>Home</h1>')
        driver = FakeDriver(pages={HOME: FakePage(html=html)})
        page = page_from_html(HOME, html)
        tester = AccessibilityTester()

        async with driver.new_session() as session:
            results = await tester.run(session, page, "audit", config)

        statuses = {result.check_id: result.status for result in results}
        assert len(statuses) == 8
        assert statuses["accessibility:/:image-alt"] == "fail"
        assert statuses["accessibility:/:html-lang"] == "pass"
        failing = next(r for r in results if r.status == "fail")
        assert failing.error is not None
        assert failing.error.message == (
            "1 violation(s) of image-alt: Image has no alt attribute "
            "(html > body > img)"
        )
        assert driver.navigations == [HOME]
