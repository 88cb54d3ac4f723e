"""API tester: checks configured REST contracts directly."""

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Self
from urllib.parse import urljoin

import aiohttp

from site_probe.driver.base import PageSession
from site_probe.errors import TesterError
from site_probe.models.config import ApiEndpoint, TestConfig
from site_probe.models.discovery import DiscoveredPage, DiscoveryGraph
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


def contract_violation(
    endpoint: ApiEndpoint, outcome: HttpOutcome
) -> CategorizedError | None:
    """Compare a response to the endpoint's contract."""
    if outcome.status != endpoint.expected_status:
        return CategorizedError(
            classification="server" if outcome.is_server_error else "functional",
            message=(
                f"{endpoint.method} {endpoint.path} returned HTTP {outcome.status}, "
                f"expected {endpoint.expected_status}"
            ),
        )
    if endpoint.required_keys:
        body = outcome.body if isinstance(outcome.body, Mapping) else {}
        missing = [key for key in endpoint.required_keys if key not in body]
        if missing:
            return CategorizedError(
                classification="functional",
                message=f"Response is missing key(s): {', '.join(missing)}",
            )
    return None


@dataclass(frozen=True, kw_only=True)
class ApiTester(Tester[ApiEndpoint]):
    """Requests each configured endpoint and checks status and body keys."""

    test_type = TestType.API
    scope = "run"

    http: aiohttp.ClientSession = field(repr=False)

    @classmethod
    def create(cls, resources: TesterResources) -> Self:
        if resources.http is None:
            raise TesterError("API checks need an HTTP session")
        return cls(http=resources.http)

    @classmethod
    def enabled(cls, config: TestConfig) -> bool:
        return config.api_testing

    def artifacts(
        self, target: DiscoveredPage | DiscoveryGraph, config: TestConfig
    ) -> Sequence[ApiEndpoint]:
        return list(config.api_endpoints) if isinstance(target, DiscoveryGraph) else []

    def artifact_id(self, artifact: ApiEndpoint) -> str:
        return artifact.name

    def check_name(self, artifact: ApiEndpoint) -> str:
        return f"API {artifact.method} {artifact.path}"

    def sub_checks(self, artifact: ApiEndpoint) -> Sequence[str | None]:
        return ["contract"]

    def timeout(self, artifact: ApiEndpoint, config: TestConfig) -> float:
        return request_budget(config)

    async def run(
        self,
        session: PageSession,
        page: DiscoveredPage | None,
        artifact: ApiEndpoint,
        config: TestConfig,
    ) -> Sequence[TestResult]:
        started = time.monotonic()
        [check_id] = self.check_ids(None, artifact)
        name = self.check_name(artifact)
        url = urljoin(config.base_url, artifact.path)
        try:
            outcome = await request_with_retry(
                self.http,
                artifact.method,
                url,
                payload=artifact.body,
                retries=config.retries,
                backoff=config.retry_backoff,
                timeout=config.check_timeout,
            )
        except TesterError as exc:
            log.warning("%s: %s", name, exc)
            return [
                error_result(
                    check_id,
                    self.test_type,
                    exc,
                    exc.classification,
                    name=name,
                    duration_ms=elapsed_ms(started),
                ).model_copy(update={"retries": config.retries})
            ]

        error = contract_violation(artifact, outcome)
        return [
            TestResult(
                check_id=check_id,
                type=self.test_type,
                status="pass" if error is None else "fail",
                name=name,
                duration_ms=elapsed_ms(started),
                error=error,
                retries=outcome.retries,
                evidence=HttpEvidence(
                    method=artifact.method,
                    url=url,
                    status=outcome.status,
                    response_excerpt=excerpt(outcome.text),
                    response_time_ms=outcome.elapsed_ms,
                ),
            )
        ]
