"""Form tester: required-field validation and submission with valid input."""

import logging
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from site_probe.driver.base import NavigationResult, PageSession, RequestEvent
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import (
    DiscoveredForm,
    DiscoveredPage,
    DiscoveryGraph,
    FormField,
)
from site_probe.models.result import (
    CategorizedError,
    ErrorClassification,
    InteractionEvidence,
    TestResult,
    TestType,
)
from site_probe.testers.base import Tester, any_present, elapsed_ms, show_page
from site_probe.urls import canonicalize_url

log = logging.getLogger(__name__)

TEST_VALUES: Mapping[str, str] = {
    "email": "test@example.com",
    "password": "TestPassword123!",
    "text": "Test input value",
    "search": "search query",
    "tel": "5551234567",
    "url": "https://example.com",
    "number": "42",
    "range": "50",
    "date": "2024-01-15",
    "time": "14:30",
    "datetime-local": "2024-01-15T14:30",
    "month": "2024-01",
    "week": "2024-W03",
    "color": "#ff0000",
    "textarea": "This is a longer test value for textarea fields.",
}

# Field names that say more about the expected value than the input type.
NAME_HINTS: Sequence[tuple[str, str]] = (
    ("email", "test@example.com"),
    ("password", "TestPassword123!"),
    ("phone", "5551234567"),
    ("tel", "5551234567"),
    ("website", "https://example.com"),
    ("url", "https://example.com"),
    ("zip", "12345"),
    ("postal", "12345"),
    ("name", "Test User"),
)

PATTERN_CANDIDATES: Sequence[str] = (
    "Test User",
    "test",
    "12345",
    "5551234567",
    "ABC123",
    "test@example.com",
    "https://example.com",
)

CHECKABLE_TYPES: frozenset[str] = frozenset(["checkbox", "radio"])
NUMERIC_TYPES: frozenset[str] = frozenset(["number", "range"])
SUBMIT_RESOURCE_TYPES: frozenset[str] = frozenset(["xhr", "fetch", "document"])


def value_for(field: FormField) -> str:
    """Return a valid value for ``field`` honouring its constraints."""
    if field.type == "select":
        return field.options[1] if len(field.options) > 1 else "".join(field.options)
    if field.type in NUMERIC_TYPES:
        return _number_within(field)

    value = TEST_VALUES.get(field.type, TEST_VALUES["text"])
    if field.type in ("text", "textarea"):
        name = field.name.lower()
        value = next((hint for key, hint in NAME_HINTS if key in name), value)

    if field.pattern:
        candidates = (value, *PATTERN_CANDIDATES)
        try:
            value = next(
                (c for c in candidates if re.fullmatch(field.pattern, c)), value
            )
        except re.error:
            log.debug("Ignoring invalid pattern %r on %s", field.pattern, field.name)

    if field.min_length is not None and len(value) < field.min_length:
        value = value + "x" * (field.min_length - len(value))
    if field.max_length is not None:
        value = value[: field.max_length]
    return value


def _number_within(field: FormField) -> str:
    value = float(TEST_VALUES[field.type])
    low, high = _float(field.min), _float(field.max)
    if low is not None and value < low:
        value = low
    if high is not None and value > high:
        value = high
    return str(int(value)) if value.is_integer() else str(value)


def _float(text: str | None) -> float | None:
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return None


async def fill_field(session: PageSession, field: FormField) -> None:
    """Put a valid value into ``field``."""
    if field.type in CHECKABLE_TYPES:
        await session.check(field.selector)
    elif field.type == "select":
        value = value_for(field)
        if value:
            await session.select_option(field.selector, value)
    elif field.type != "file":
        await session.fill(field.selector, value_for(field))


@dataclass(frozen=True, kw_only=True)
class FormTester(Tester[DiscoveredForm]):
    """Submits every form empty, then filled with valid values."""

    test_type = TestType.FORM

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[DiscoveredForm]:
        return target.forms if isinstance(target, DiscoveredPage) else []

    def artifact_id(self, artifact: DiscoveredForm) -> str:
        return artifact.id

    def check_name(self, artifact: DiscoveredForm) -> str:
        return f"Form {artifact.id}"

    def sub_checks(self, artifact: DiscoveredForm) -> Sequence[str | None]:
        return ["empty", "submit"]

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: DiscoveredForm,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        if page is None:
            raise TesterError("Form checks need a page")
        return [
            await self.check_empty_submission(session, page, artifact, config),
            await self.check_valid_submission(session, page, artifact, config),
        ]

    async def check_empty_submission(
        self,
        session: PageSession,
        page: DiscoveredPage,
        form: DiscoveredForm,
        config: TestConfig,
    ) -> TestResult:
        """Submit the form untouched; required fields must be enforced."""
        started = time.monotonic()
        check_id = self.check_id(page, form, "empty")
        name = f"{self.check_name(form)} rejects empty submission"
        required = [field.name for field in form.fields if field.required]

        await show_page(session, page, config, fresh=True)
        navigation = await session.submit(form.selector, config.check_timeout)
        evidence = _evidence(form, navigation)

        if not required:
            return TestResult(
                check_id=check_id,
                type=self.test_type,
                status="pass",
                name=name,
                page_url=page.url,
                duration_ms=elapsed_ms(started),
                evidence=evidence,
            )

        shown = await any_present(session, config.selectors.validation_error)
        left = navigation is not None and canonicalize_url(navigation.url) != page.url
        if shown and not left:
            status, error = "pass", None
        else:
            status = "fail"
            error = CategorizedError(
                classification="validation",
                message=(
                    "Empty submission was accepted without a validation error "
                    f"(required: {', '.join(required)})"
                ),
            )
        return TestResult(
            check_id=check_id,
            type=self.test_type,
            status=status,
            name=name,
            page_url=page.url,
            duration_ms=elapsed_ms(started),
            error=error,
            evidence=evidence,
        )

    async def check_valid_submission(
        self,
        session: PageSession,
        page: DiscoveredPage,
        form: DiscoveredForm,
        config: TestConfig,
    ) -> TestResult:
        """Fill every field with a valid value and submit."""
        started = time.monotonic()
        check_id = self.check_id(page, form, "submit")
        name = f"{self.check_name(form)} accepts valid input"
        if not config.allow_form_submission:
            return TestResult(
                check_id=check_id,
                type=self.test_type,
                status="skip",
                name=name,
                page_url=page.url,
            )

        await show_page(session, page, config, fresh=True)
        for field in form.fields:
            await fill_field(session, field)

        responses: list[RequestEvent] = []

        def record(event: RequestEvent) -> None:
            if event.resource_type in SUBMIT_RESOURCE_TYPES:
                responses.append(event)

        unsubscribe = session.on_request(record)
        try:
            navigation = await session.submit(form.selector, config.check_timeout)
        finally:
            unsubscribe()

        failure = await self._submission_failure(session, navigation, responses, config)
        return TestResult(
            check_id=check_id,
            type=self.test_type,
            status="pass" if failure is None else "fail",
            name=name,
            page_url=page.url,
            duration_ms=elapsed_ms(started),
            error=failure,
            evidence=_evidence(form, navigation),
        )

    async def _submission_failure(
        self,
        session: PageSession,
        navigation: NavigationResult | None,
        responses: Sequence[RequestEvent],
        config: TestConfig,
    ) -> CategorizedError | None:
        statuses = [event.status for event in responses if event.status is not None]
        if navigation is not None and navigation.status is not None:
            statuses.append(navigation.status)

        if any(status >= 500 for status in statuses):
            return _failure("server", f"Submission hit a server error: {statuses}")
        if navigation is not None and (navigation.status or 200) < 400:
            return None
        if await any_present(session, config.selectors.success):
            return None
        if any(200 <= status < 300 for status in statuses):
            return None
        if await any_present(session, config.selectors.validation_error):
            return _failure("validation", "Valid input was rejected by validation")
        if statuses:
            return _failure("functional", f"Submission was refused: {statuses}")
        return _failure("functional", "Submission produced no visible outcome")


def _failure(classification: ErrorClassification, message: str) -> CategorizedError:
    return CategorizedError(classification=classification, message=message)


def _evidence(
    form: DiscoveredForm, navigation: NavigationResult | None
) -> InteractionEvidence:
    return InteractionEvidence(
        selector=form.selector,
        final_url=navigation.url if navigation is not None else None,
        status=navigation.status if navigation is not None else None,
    )
