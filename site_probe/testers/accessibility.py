"""Accessibility tester: rule-based audit of the rendered DOM."""

import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from site_probe.crawler.route_analyzer import css_path, text_of
from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
from site_probe.models.result import (
    AccessibilityEvidence,
    AccessibilityViolation,
    CategorizedError,
    Severity,
    TestResult,
    TestType,
    make_check_id,
)
from site_probe.testers.base import Tester, elapsed_ms, show_page

UNLABELLED_INPUT_TYPES: frozenset[str] = frozenset(
    ["hidden", "submit", "button", "reset", "image"]
)


@dataclass(frozen=True, kw_only=True)
class RuleOutcome:
    """Elements a rule looked at and the ones that broke it."""

    checked: int
    offenders: Sequence[tuple[Tag, str]]


type Rule = Callable[[BeautifulSoup], RuleOutcome]


def _has_accessible_name(tag: Tag) -> bool:
    if text_of(tag):
        return True
    if any(tag.get(attr) for attr in ("aria-label", "aria-labelledby", "title")):
        return True
    return any(img.get("alt") for img in tag.find_all("img"))


def image_alt(soup: BeautifulSoup) -> RuleOutcome:
    images = [
        img
        for img in soup.find_all("img")
        if img.get("role") not in ("presentation", "none")
    ]
    return RuleOutcome(
        checked=len(images),
        offenders=[
            (img, "Image has no alt attribute")
            for img in images
            if not img.has_attr("alt")
        ],
    )


def button_name(soup: BeautifulSoup) -> RuleOutcome:
    buttons = soup.find_all("button") + soup.find_all(
        "input", attrs={"type": ["button", "submit", "reset"]}
    )
    offenders = []
    for button in buttons:
        named = (
            button.get("value") or button.get("aria-label")
            if button.name == "input"
            else _has_accessible_name(button)
        )
        if not named:
            offenders.append((button, "Button has no accessible name"))
    return RuleOutcome(checked=len(buttons), offenders=offenders)


def link_name(soup: BeautifulSoup) -> RuleOutcome:
    links = soup.find_all("a", href=True)
    return RuleOutcome(
        checked=len(links),
        offenders=[
            (link, "Link has no discernible text")
            for link in links
            if not _has_accessible_name(link)
        ],
    )


def html_lang(soup: BeautifulSoup) -> RuleOutcome:
    html = soup.find("html")
    if not isinstance(html, Tag):
        return RuleOutcome(checked=0, offenders=[])
    lang = html.get("lang")
    offenders = [] if lang else [(html, "<html> element has no lang attribute")]
    return RuleOutcome(checked=1, offenders=offenders)


def document_title(soup: BeautifulSoup) -> RuleOutcome:
    title = soup.find("title")
    if isinstance(title, Tag) and text_of(title):
        return RuleOutcome(checked=1, offenders=[])
    anchor = soup.find("head") or soup.find("html") or soup
    return RuleOutcome(checked=1, offenders=[(anchor, "Document has no title")])


def label(soup: BeautifulSoup) -> RuleOutcome:
    controls = [
        control
        for control in soup.find_all(["input", "select", "textarea"])
        if control.name != "input"
        or str(control.get("type") or "text").lower() not in UNLABELLED_INPUT_TYPES
    ]
    labelled_ids = {
        str(tag.get("for")) for tag in soup.find_all("label") if tag.get("for")
    }
    offenders = []
    for control in controls:
        if control.get("id") in labelled_ids or control.find_parent("label"):
            continue
        if any(control.get(a) for a in ("aria-label", "aria-labelledby", "title")):
            continue
        offenders.append((control, "Form control has no label"))
    return RuleOutcome(checked=len(controls), offenders=offenders)


def heading_order(soup: BeautifulSoup) -> RuleOutcome:
    headings = soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
    offenders = []
    previous = 0
    for heading in headings:
        level = int(heading.name[1])
        if previous and level > previous + 1:
            offenders.append(
                (heading, f"Heading level jumps from h{previous} to h{level}")
            )
        previous = level
    return RuleOutcome(checked=len(headings), offenders=offenders)


def duplicate_id(soup: BeautifulSoup) -> RuleOutcome:
    tagged = soup.find_all(id=True)
    counts = Counter(str(tag.get("id")) for tag in tagged)
    offenders = []
    reported: set[str] = set()
    for tag in tagged:
        element_id = str(tag.get("id"))
        if counts[element_id] > 1 and element_id not in reported:
            reported.add(element_id)
            offenders.append((tag, f"id {element_id!r} is used {counts[element_id]}x"))
    return RuleOutcome(checked=len(tagged), offenders=offenders)


RULES: Sequence[tuple[str, Severity, Rule]] = (
    ("image-alt", "critical", image_alt),
    ("button-name", "critical", button_name),
    ("link-name", "serious", link_name),
    ("html-lang", "serious", html_lang),
    ("document-title", "serious", document_title),
    ("label", "critical", label),
    ("heading-order", "moderate", heading_order),
    ("duplicate-id", "minor", duplicate_id),
)


def audit(html: str) -> Sequence[AccessibilityEvidence]:
    """Run every rule against ``html``."""
    soup = BeautifulSoup(html, "html.parser")
    evidence = []
    for rule_id, severity, rule in RULES:
        outcome = rule(soup)
        evidence.append(
            AccessibilityEvidence(
                rule=rule_id,
                elements_checked=outcome.checked,
                violations=[
                    AccessibilityViolation(
                        rule=rule_id,
                        severity=severity,
                        selector=css_path(tag) if tag.name != "[document]" else "html",
                        message=message,
                    )
                    for tag, message in outcome.offenders
                ],
            )
        )
    return evidence


@dataclass(frozen=True, kw_only=True)
class AccessibilityTester(Tester[str]):
    """Audits each page once, reporting one check per rule."""

    test_type = TestType.ACCESSIBILITY

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        return config.accessibility

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[str]:
        return ["audit"] if isinstance(target, DiscoveredPage) else []

    def artifact_id(self, artifact: str) -> str:
        return artifact

    def check_ids(
        self, page: DiscoveredPage | None, artifact: str
    ) -> Sequence[str]:
        page_url = page.url if page is not None else None
        return [
            make_check_id(self.test_type, page_url, rule_id)
            for rule_id, _, _ in RULES
        ]

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: str,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        if page is None:
            raise TesterError("Accessibility checks need a page")
        started = time.monotonic()
        await show_page(session, page, config)
        evidence = audit(await session.content())
        duration = elapsed_ms(started) / max(len(evidence), 1)

        results = []
        for item in evidence:
            error = None
            if item.violations:
                first = item.violations[0]
                error = CategorizedError(
                    classification="accessibility",
                    message=(
                        f"{len(item.violations)} violation(s) of {item.rule}: "
                        f"{first.message} ({first.selector})"
                    ),
                )
            results.append(
                TestResult(
                    check_id=make_check_id(self.test_type, page.url, item.rule),
                    type=self.test_type,
                    status="fail" if item.violations else "pass",
                    name=f"Accessibility rule {item.rule}",
                    page_url=page.url,
                    duration_ms=duration,
                    error=error,
                    evidence=item,
                )
            )
        return results
