"""Edge function tester: calls backend functions with valid and invalid input."""

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Self

import aiohttp

from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph, EdgeFunction
from site_probe.models.result import (
    CategorizedError,
    HttpEvidence,
    TestResult,
    TestType,
    error_result,
)
from site_probe.testers.base import Tester, TesterResources, elapsed_ms, excerpt
from site_probe.testers.http import HttpOutcome, request_budget, request_with_retry

log = logging.getLogger(__name__)

SAMPLE_VALUES: Mapping[str, Any] = {
    "string": "test",
    "number": 1,
    "integer": 1,
    "boolean": True,
    "array": [],
    "object": {},
}

type PayloadKind = Literal["valid", "invalid"]


def valid_payload(function: EdgeFunction) -> dict[str, Any]:
    """Minimal body matching the inferred request shape."""
    return {
        name: SAMPLE_VALUES.get(json_type, "test")
        for name, json_type in function.request_shape.items()
    }


def auth_headers(config: TestConfig) -> dict[str, str]:
    """Headers authenticating calls to the functions backend, if a key is set."""
    if config.edge_function_api_key is None:
        return {}
    key = config.edge_function_api_key.get_secret_value()
    return {"Authorization": f"Bearer {key}", "apikey": key}


@dataclass(frozen=True, kw_only=True)
class EdgeFunctionTester(Tester[EdgeFunction]):
    """Checks that every discovered function handles good and bad input.

    A valid call must not fail; an invalid call (a body missing every
    expected field) must be refused with a 4xx. Server errors always fail
    with classification ``server``.
    """

    test_type = TestType.EDGE_FUNCTION
    scope = "run"

    http: aiohttp.ClientSession = field(repr=False)

    @classmethod
    def create(cls, resources: TesterResources) -> Self:
        if resources.http is None:
            raise TesterError("Edge function checks need an HTTP session")
        return cls(http=resources.http)

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        return config.edge_functions

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[EdgeFunction]:
        return target.edge_functions if isinstance(target, DiscoveryGraph) else []

    def artifact_id(self, artifact: EdgeFunction) -> str:
        return artifact.name

    def check_name(self, artifact: EdgeFunction) -> str:
        return f"Edge function {artifact.name}"

    def sub_checks(self, artifact: EdgeFunction) -> Sequence[PayloadKind]:
        if artifact.method != "GET" and artifact.request_shape:
            return ["valid", "invalid"]
        return ["valid"]

    def timeout(self, artifact: EdgeFunction, config: TestConfig) -> float:
        return len(self.sub_checks(artifact)) * request_budget(config)

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: EdgeFunction,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        return [
            await self.call(artifact, kind, config)
            for kind in self.sub_checks(artifact)
        ]

    async def call(
        self, function: EdgeFunction, kind: PayloadKind, config: TestConfig
    ) -> TestResult:
        """Invoke ``function`` with a payload of ``kind`` and judge the answer."""
        started = time.monotonic()
        check_id = self.check_id(None, function, kind)
        name = f"{self.check_name(function)} handles {kind} input"
        payload = valid_payload(function) if kind == "valid" else {}
        try:
            outcome = await request_with_retry(
                self.http,
                function.method,
                function.endpoint,
                payload=payload if function.method != "GET" else None,
                headers=auth_headers(config),
                retries=config.retries,
                backoff=config.retry_backoff,
                timeout=config.check_timeout,
            )
        except TesterError as exc:
            log.warning("%s: %s", name, exc)
            return error_result(
                check_id,
                self.test_type,
                exc,
                exc.classification,
                name=name,
                duration_ms=elapsed_ms(started),
            ).model_copy(update={"retries": config.retries})

        error = judge(outcome, kind)
        return TestResult(
            check_id=check_id,
            type=self.test_type,
            status="pass" if error is None else "fail",
            name=name,
            duration_ms=elapsed_ms(started),
            error=error,
            retries=outcome.retries,
            evidence=HttpEvidence(
                method=outcome.method,
                url=outcome.url,
                status=outcome.status,
                response_excerpt=excerpt(outcome.text),
                response_time_ms=outcome.elapsed_ms,
            ),
        )


def judge(outcome: HttpOutcome, kind: PayloadKind) -> CategorizedError | None:
    """Classify the response to a valid or invalid call."""
    status = outcome.status
    if outcome.is_server_error:
        return CategorizedError(
            classification="server",
            message=f"{outcome.method} {outcome.url} returned HTTP {status}",
        )
    if kind == "invalid":
        if 400 <= status < 500:
            return None
        return CategorizedError(
            classification="validation",
            message=f"Invalid payload was not rejected (HTTP {status})",
        )
    if status in (401, 403):
        return CategorizedError(
            classification="functional",
            message=f"Valid call was not authorized (HTTP {status})",
        )
    if status >= 400:
        return CategorizedError(
            classification="functional",
            message=f"Valid call was refused (HTTP {status})",
        )
    return None
