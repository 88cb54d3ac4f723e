"""Tests for result models."""

import pytest

from site_probe.models.result import (
    HttpEvidence,
    PerformanceEvidence,
    TestResult,
    TestType,
    error_result,
    make_check_id,
)


@pytest.mark.parametrize(
    ("page_url", "sub_check", "expected"),
    [
        ("https://app.test/signup", "submit", "form:/signup:signup-form:submit"),
        ("https://staging.app.test/signup", None, "form:/signup:signup-form"),
        (
            "https://app.test/search?b=2&a=1#top",
            None,
            "form:/search?a=1&b=2:signup-form",
        ),
        (None, "valid", "form:-:signup-form:valid"),
    ],
)
def test_make_check_id(
    page_url: str | None, sub_check: str | None, expected: str
) -> None:
    """Identifiers depend on path and query only, never on host or fragment."""
    assert make_check_id(TestType.FORM, page_url, "signup-form", sub_check) == expected


def test_evidence_is_parsed_by_kind() -> None:
    """Serialized evidence comes back as the right model."""
    result = TestResult(
        check_id="performance:/:lcp",
        type=TestType.PERFORMANCE,
        status="fail",
        evidence=PerformanceEvidence(metric="lcp", value=4100.0, threshold=2500.0),
    )

    loaded = TestResult.model_validate_json(result.model_dump_json())

    assert loaded == result
    assert isinstance(loaded.evidence, PerformanceEvidence)


def test_http_evidence_from_dict() -> None:
    """The kind field selects the evidence model."""
    result = TestResult.model_validate(
        {
            "check_id": "api:-:health:contract",
            "type": "api",
            "status": "pass",
            "evidence": {"kind": "http", "method": "GET", "url": "https://x/"},
        }
    )

    assert result.evidence == HttpEvidence(method="GET", url="https://x/")


def test_error_result_uses_exception_type_without_message() -> None:
    """An exception with no message is described by its type."""
    result = error_result(
        "element:/:save", TestType.ELEMENT, TimeoutError(), "timeout"
    )

    assert result.status == "error"
    assert result.error is not None
    assert result.error.message == "TimeoutError"
    assert result.error.classification == "timeout"
