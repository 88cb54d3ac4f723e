"""Tests for the edge function tester."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import Mock

import aiohttp
import pytest
from aioresponses import aioresponses as aioresponses_cls
from yarl import URL

from site_probe.driver.base import PageSession
from site_probe.models.config import TestConfig
from site_probe.models.discovery import DiscoveryGraph, EdgeFunction
from site_probe.parallel import run_check
from site_probe.testers.edge_function import EdgeFunctionTester, judge, valid_payload
from site_probe.testers.http import HttpOutcome, request_budget
from site_probe.testing.factories import DiscoveredPageFactory

type ConfigFactory = Callable[..., TestConfig]

ENDPOINT = "https://proj.supabase.test/functions/v1/send-email"

SEND_EMAIL = EdgeFunction(
    name="send-email",
    endpoint=ENDPOINT,
    method="POST",
    request_shape={"to": "string", "count": "number"},
)


@pytest.fixture
async def http() -> AsyncGenerator[aiohttp.ClientSession, None]:
    """Create an HTTP session."""
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def tester(http: aiohttp.ClientSession) -> EdgeFunctionTester:
    """Create tester bound to the HTTP session."""
    return EdgeFunctionTester(http=http)


@pytest.fixture
def session() -> Mock:
    """Browser session, unused by run-scoped checks."""
    return Mock(spec=PageSession)


class TestEdgeFunctionTester:
    """Tests for EdgeFunctionTester."""

    async def test_valid_and_invalid_calls_pass(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        config: TestConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Valid input is accepted and an empty body is refused with a 4xx."""
        aioresponses.post(ENDPOINT, status=200, payload={"sent": True})
        aioresponses.post(ENDPOINT, status=400, payload={"error": "to is required"})

        valid, invalid = await tester.run(session, None, SEND_EMAIL, config)

        assert valid.check_id == "edge-function:-:send-email:valid"
        assert valid.status == "pass"
        assert invalid.check_id == "edge-function:-:send-email:invalid"
        assert invalid.status == "pass"
        calls = aioresponses.requests[("POST", URL(ENDPOINT))]
        assert calls[0].kwargs["json"] == {"to": "test", "count": 1}
        assert calls[1].kwargs["json"] == {}

    async def test_server_error_fails(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        config: TestConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """A 5xx answer fails with classification server."""
        aioresponses.post(ENDPOINT, status=500, body="boom")
        aioresponses.post(ENDPOINT, status=500, body="boom")

        valid, invalid = await tester.run(session, None, SEND_EMAIL, config)

        for result in (valid, invalid):
            assert result.status == "fail"
            assert result.error is not None
            assert result.error.classification == "server"
        assert valid.evidence is not None
        assert valid.evidence.status == 500
        assert valid.evidence.response_excerpt == "boom"

    async def test_invalid_payload_accepted_fails(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        config: TestConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Accepting an empty body is a validation failure."""
        aioresponses.post(ENDPOINT, status=200, payload={})
        aioresponses.post(ENDPOINT, status=200, payload={})

        _, invalid = await tester.run(session, None, SEND_EMAIL, config)

        assert invalid.status == "fail"
        assert invalid.error is not None
        assert invalid.error.classification == "validation"

    async def test_connection_error_is_network_error(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        config: TestConfig,
        aioresponses: aioresponses_cls,
    ) -> None:
        """An unreachable function yields error results classified network."""
        aioresponses.post(
            ENDPOINT, exception=aiohttp.ClientConnectionError("refused"), repeat=True
        )

        valid, invalid = await tester.run(session, None, SEND_EMAIL, config)

        for result in (valid, invalid):
            assert result.status == "error"
            assert result.error is not None
            assert result.error.classification == "network"
        assert "failed after 1 attempt(s)" in valid.error.message

    async def test_retries_transient_failures(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        make_config: ConfigFactory,
        aioresponses: aioresponses_cls,
    ) -> None:
        """Connection errors are retried before giving up."""
        health = EdgeFunction(
            name="health",
            endpoint="https://proj.supabase.test/functions/v1/health",
            method="GET",
        )
        aioresponses.get(health.endpoint, exception=aiohttp.ClientConnectionError())
        aioresponses.get(health.endpoint, status=200, payload={"ok": True})

        [result] = await tester.run(
            session, None, health, make_config(retries=2, retry_backoff=0.0)
        )

        assert result.status == "pass"
        assert result.retries == 1

    async def test_slow_attempt_is_retried_within_the_check_budget(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        make_config: ConfigFactory,
        aioresponses: aioresponses_cls,
    ) -> None:
        """An attempt that times out is retried before the check gives up."""
        health = EdgeFunction(
            name="health",
            endpoint="https://proj.supabase.test/functions/v1/health",
            method="GET",
        )

        async def stalls(url: URL, **kwargs: Any) -> None:
            await asyncio.sleep(0.4)
            raise TimeoutError

        aioresponses.get(health.endpoint, callback=stalls)
        aioresponses.get(health.endpoint, status=200, payload={"ok": True})
        config = make_config(check_timeout=0.3, retries=1)

        [result] = await run_check(tester, session, None, health, config)

        assert result.status == "pass"
        assert result.retries == 1

    def test_timeout_covers_both_calls_and_their_retries(
        self, tester: EdgeFunctionTester, make_config: ConfigFactory
    ) -> None:
        """Each payload kind gets the budget of a retried request."""
        config = make_config(check_timeout=5.0, retries=2, retry_backoff=0.5)

        assert request_budget(config) == 16.5
        assert tester.timeout(SEND_EMAIL, config) == 33.0

    async def test_sends_api_key(
        self,
        tester: EdgeFunctionTester,
        session: Mock,
        make_config: ConfigFactory,
        aioresponses: aioresponses_cls,
    ) -> None:
        """The configured key is sent as bearer token and apikey header."""
        aioresponses.post(ENDPOINT, status=200, payload={})
        aioresponses.post(ENDPOINT, status=422, payload={})

        await tester.run(
            session, None, SEND_EMAIL, make_config(edge_function_api_key="anon")
        )

        call = aioresponses.requests[("POST", URL(ENDPOINT))][0]
        assert call.kwargs["headers"] == {
            "Authorization": "Bearer anon",
            "apikey": "anon",
        }

    def test_artifacts_come_from_the_graph(
        self, tester: EdgeFunctionTester, config: TestConfig
    ) -> None:
        """Functions are checked once per run, never per page."""
        graph = DiscoveryGraph(
            base_url="https://app.test/", edge_functions=[SEND_EMAIL]
        )

        assert tester.artifacts(graph, config) == [SEND_EMAIL]
        assert tester.artifacts(DiscoveredPageFactory.build(), config) == []


def test_valid_payload_uses_sample_values() -> None:
    """Each inferred field gets a value of its JSON type."""
    function = EdgeFunction(
        name="f",
        endpoint=ENDPOINT,
        request_shape={"a": "boolean", "b": "array", "c": "mystery"},
    )

    assert valid_payload(function) == {"a": True, "b": [], "c": "test"}


@pytest.mark.parametrize(
    ("status", "kind", "classification"),
    [
        (200, "valid", None),
        (401, "valid", "functional"),
        (404, "valid", "functional"),
        (503, "valid", "server"),
        (400, "invalid", None),
        (201, "invalid", "validation"),
        (502, "invalid", "server"),
    ],
)
def test_judge(status: int, kind: str, classification: str | None) -> None:
    """Responses are classified by status and payload kind."""
    outcome = HttpOutcome(
        method="POST", url=ENDPOINT, status=status, text="", body=None, elapsed_ms=1
    )

    error = judge(outcome, kind)  # type: ignore[arg-type]

    assert (error.classification if error else None) == classification
