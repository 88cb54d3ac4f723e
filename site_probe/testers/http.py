"""HTTP requests with retries for the testers that call backends directly."""

import asyncio
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

from site_probe.errors import TesterError
from site_probe.models.config import TestConfig

log = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientConnectionError,
    TimeoutError,
)


@dataclass(frozen=True, kw_only=True)
class HttpOutcome:
    """Response of a request, body decoded as JSON when possible."""

    method: str
    url: str
    status: int
    text: str
    body: Any
    elapsed_ms: float
    retries: int = 0

    @property
    def is_server_error(self) -> bool:
        """Whether the backend answered with a 5xx status."""
        return self.status >= 500


async def request_with_retry(
    http: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    payload: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    retries: int = 2,
    backoff: float = 0.5,
    timeout: float = 30.0,
) -> HttpOutcome:
    """Send a request, retrying transient network failures.

    Connection errors and timeouts are retried up to ``retries`` times,
    waiting ``backoff * 2**attempt`` seconds before each new attempt. Any
    HTTP response, whatever its status, is returned as is.

    Raises:
        TesterError: With classification ``network`` once retries are exhausted

    """
    attempt = 0
    while True:
        started = time.monotonic()
        try:
            async with http.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                text = await response.text()
                return HttpOutcome(
                    method=method,
                    url=url,
                    status=response.status,
                    text=text,
                    body=_decode(text),
                    elapsed_ms=(time.monotonic() - started) * 1000,
                    retries=attempt,
                )
        except TRANSIENT_ERRORS as exc:
            if attempt >= retries:
                raise TesterError(
                    f"{method} {url} failed after {attempt + 1} attempt(s): "
                    f"{str(exc) or type(exc).__name__}",
                    classification="network",
                ) from exc
            delay = backoff * 2**attempt
            log.info(
                "%s %s failed (%s), retrying in %.1fs", method, url, exc, delay
            )
            await asyncio.sleep(delay)
            attempt += 1


def _decode(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def request_budget(config: TestConfig) -> float:
    """Longest a `request_with_retry` call may take under ``config``.

    Every attempt gets the full per-check timeout, so the budget covers all
    attempts and the waits between them.
    """
    waits = sum(config.retry_backoff * 2**attempt for attempt in range(config.retries))
    return (config.retries + 1) * config.check_timeout + waits
