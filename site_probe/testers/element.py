"""Element tester: clicks buttons and interactive elements."""

import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

from site_probe.driver.base import ConsoleMessage, NavigationResult, PageSession
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import (
    DiscoveredButton,
    DiscoveredElement,
    DiscoveredPage,
    DiscoveryGraph,
)
from site_probe.models.result import (
    CategorizedError,
    InteractionEvidence,
    TestResult,
    TestType,
)
from site_probe.monitors.console import IGNORED_MESSAGES
from site_probe.testers.base import Tester, any_present, elapsed_ms, show_page

type Clickable = DiscoveredButton | DiscoveredElement

DESTRUCTIVE_LABEL = re.compile(
    r"\b(delete|remove|destroy|log ?out|sign ?out|cancel subscription|drop|purge)\b",
    re.IGNORECASE,
)

ERROR_TITLE = re.compile(r"\b(404|not found|error|something went wrong)\b", re.I)


def label_of(artifact: Clickable) -> str:
    """Text a user would read on the element."""
    return " ".join(filter(None, [artifact.text, artifact.aria_label])) or artifact.id


def is_destructive(artifact: Clickable) -> bool:
    """Whether clicking the element probably destroys data or ends the session."""
    return DESTRUCTIVE_LABEL.search(f"{label_of(artifact)} {artifact.id}") is not None


@dataclass(frozen=True, kw_only=True)
class ElementTester(Tester[Clickable]):
    """Clicks each enabled button and interactive element on a fresh page.

    A click fails when it raises a critical console error or lands on an
    error page. Submit buttons inside forms are left to the form tester.
    """

    test_type = TestType.ELEMENT

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[Clickable]:
        if not isinstance(target, DiscoveredPage):
            return []
        buttons = [
            button
            for button in target.buttons
            if not button.disabled and not (button.in_form and button.type == "submit")
        ]
        elements = [element for element in target.elements if element.enabled]
        return [*buttons, *elements]

    def artifact_id(self, artifact: Clickable) -> str:
        return artifact.id

    def check_name(self, artifact: Clickable) -> str:
        return f"Click {label_of(artifact)}"

    def sub_checks(self, artifact: Clickable) -> Sequence[str | None]:
        return ["click"]

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: Clickable,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        if page is None:
            raise TesterError("Element checks need a page")
        started = time.monotonic()
        [check_id] = self.check_ids(page, artifact)
        name = self.check_name(artifact)

        if is_destructive(artifact) and not config.allow_destructive:
            return [
                TestResult(
                    check_id=check_id,
                    type=self.test_type,
                    status="skip",
                    name=f"{name} (destructive)",
                    page_url=page.url,
                )
            ]

        await show_page(session, page, config, fresh=True)
        console_errors: list[str] = []

        def record(message: ConsoleMessage) -> None:
            if message.level == "error" or message.uncaught:
                if not any(re.search(p, message.text) for p in IGNORED_MESSAGES):
                    console_errors.append(message.text)

        unsubscribe = session.on_console(record)
        try:
            navigation = await session.click(artifact.selector, config.check_timeout)
        finally:
            unsubscribe()

        error = await self._click_failure(session, navigation, console_errors, config)
        return [
            TestResult(
                check_id=check_id,
                type=self.test_type,
                status="pass" if error is None else "fail",
                name=name,
                page_url=page.url,
                duration_ms=elapsed_ms(started),
                error=error,
                evidence=InteractionEvidence(
                    selector=artifact.selector,
                    final_url=navigation.url if navigation is not None else None,
                    status=navigation.status if navigation is not None else None,
                    console_errors=console_errors,
                ),
            )
        ]

    async def _click_failure(
        self,
        session: PageSession,
        navigation: NavigationResult | None,
        console_errors: Sequence[str],
        config: TestConfig,
    ) -> CategorizedError | None:
        if navigation is not None and navigation.status is not None:
            if navigation.status >= 500:
                return CategorizedError(
                    classification="server",
                    message=f"Click led to {navigation.url} (HTTP {navigation.status})",
                )
            if navigation.status >= 400:
                return CategorizedError(
                    classification="functional",
                    message=f"Click led to {navigation.url} (HTTP {navigation.status})",
                )
        if navigation is not None and ERROR_TITLE.search(navigation.title):
            return CategorizedError(
                classification="functional",
                message=f"Click led to an error page titled {navigation.title!r}",
            )
        if await any_present(session, config.selectors.error_page):
            return CategorizedError(
                classification="functional", message="Click rendered an error page"
            )
        if console_errors:
            return CategorizedError(
                classification="console",
                message=(
                    f"Click raised {len(console_errors)} console error(s): "
                    f"{console_errors[0]}"
                ),
            )
        return None
