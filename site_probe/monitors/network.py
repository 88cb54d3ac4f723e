"""Network monitor: records requests issued by the page."""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from site_probe.driver.base import PageSession, RequestEvent, Unsubscribe
from site_probe.models.monitor import NetworkRequest
from site_probe.models.result import (
    CategorizedError,
    TestResult,
    TestType,
    make_check_id,
)
from site_probe.monitors.base import Monitor

IGNORED_RESOURCE_TYPES: frozenset[str] = frozenset(
    ["websocket", "eventsource", "ping"]
)


@dataclass(kw_only=True)
class NetworkMonitor(Monitor[NetworkRequest]):
    """Accumulates `NetworkRequest` records for the pages of a session."""

    def subscribe(self, session: PageSession) -> Unsubscribe:
        return session.on_request(self.guarded(self._record))

    def _record(self, event: RequestEvent) -> NetworkRequest | None:
        if event.resource_type in IGNORED_RESOURCE_TYPES:
            return None
        return NetworkRequest(
            url=event.url,
            method=event.method,
            resource_type=event.resource_type,
            page_url=self.page_url,
            timestamp=datetime.now(timezone.utc),
            status=event.status,
            failed=event.failed,
            failure_reason=event.failure_reason,
            duration_ms=event.duration_ms,
        )

    def failed_requests(self, page_url: str) -> Sequence[NetworkRequest]:
        """Return requests from ``page_url`` that failed or hit a server error."""
        return [request for request in self.entries_for(page_url) if request.is_error]

    def check_results(self, page_url: str) -> Sequence[TestResult]:
        check_id = make_check_id(TestType.NETWORK, page_url, "network", "requests")
        name = "No failed network requests"
        if self.degraded:
            return [
                TestResult(
                    check_id=check_id,
                    type=TestType.NETWORK,
                    status="skip",
                    name=name,
                    page_url=page_url,
                )
            ]

        failed = self.failed_requests(page_url)
        if not failed:
            return [
                TestResult(
                    check_id=check_id,
                    type=TestType.NETWORK,
                    status="pass",
                    name=name,
                    page_url=page_url,
                )
            ]

        first = failed[0]
        classification = "network" if first.failed else "server"
        detail = first.failure_reason if first.failed else f"HTTP {first.status}"
        return [
            TestResult(
                check_id=check_id,
                type=TestType.NETWORK,
                status="fail",
                name=name,
                page_url=page_url,
                error=CategorizedError(
                    classification=classification,
                    message=(
                        f"{len(failed)} failed request(s): "
                        f"{first.method} {first.url} ({detail})"
                    ),
                ),
            )
        ]

    @staticmethod
    def _entry_page(entry: NetworkRequest) -> str:
        return entry.page_url
