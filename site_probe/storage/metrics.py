"""Longitudinal log of run summaries and trend computation over it."""

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import Field, ValidationError

from site_probe.models.base import Model
from site_probe.models.report import ReportSummary, TestReport
from site_probe.policy.baseline import count_flips
from site_probe.storage.kv import KeyValueStore

log = logging.getLogger(__name__)

METRICS_KEY = "metrics/runs"

type Direction = Literal["improving", "degrading", "stable"]

# Metrics where a smaller value is better.
LOWER_IS_BETTER: frozenset[str] = frozenset(
    ["mean_duration_ms", "avg_page_load_ms", "accessibility_violations", "failed"]
)

STABLE_CHANGE_PERCENT = 5.0


class MetricsRecord(Model):
    """Summary of one run as stored in the metrics log."""

    timestamp: datetime
    environment: str
    run_id: str
    summary: ReportSummary
    statuses: Mapping[str, str] = Field(
        default_factory=dict, description="Check identifier to status"
    )

    @classmethod
    def from_report(cls, report: TestReport) -> "MetricsRecord":
        """Condense ``report`` into a log record."""
        return cls(
            timestamp=report.metadata.finished_at,
            environment=report.metadata.environment,
            run_id=report.metadata.run_id,
            summary=report.summary,
            statuses=report.status_map(),
        )

    def value(self, metric: str) -> float:
        """Read a numeric summary field by name."""
        return float(getattr(self.summary, metric))


class MetricTrend(Model):
    """Movement of one metric between the last two runs of a window."""

    metric: str
    current: float
    previous: float
    mean: float
    change: float
    change_percent: float
    std_dev: float
    direction: Direction
    is_anomaly: bool = False


class TrendReport(Model):
    """Aggregates over the last runs of an environment."""

    window: int
    environment: str | None = None
    runs: int = 0
    pass_rate: float = 0.0
    mean_duration_ms: float = 0.0
    accessibility_violations: float = 0.0
    failed: float = 0.0
    metrics: Mapping[str, MetricTrend] = Field(default_factory=dict)
    direction: Direction = "stable"


TREND_METRICS: Sequence[str] = (
    "pass_rate",
    "mean_duration_ms",
    "accessibility_violations",
    "failed",
    "avg_page_load_ms",
)


def metric_trend(metric: str, values: Sequence[float]) -> MetricTrend | None:
    """Compare the last value of ``values`` with the one before it.

    Changes smaller than 5% of the previous value are stable. A value more
    than two standard deviations away from the mean is an anomaly.
    """
    if len(values) < 2:
        return None
    current, previous = values[-1], values[-2]
    change = current - previous
    if previous:
        change_percent = change / previous * 100
    else:
        change_percent = 100.0 if change else 0.0
    mean = sum(values) / len(values)
    std_dev = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))

    if abs(change_percent) < STABLE_CHANGE_PERCENT:
        direction: Direction = "stable"
    elif (change < 0) == (metric in LOWER_IS_BETTER):
        direction = "improving"
    else:
        direction = "degrading"

    return MetricTrend(
        metric=metric,
        current=current,
        previous=previous,
        mean=round(mean, 2),
        change=round(change, 2),
        change_percent=round(change_percent, 2),
        std_dev=round(std_dev, 2),
        direction=direction,
        is_anomaly=std_dev > 0 and abs(current - mean) > 2 * std_dev,
    )


@dataclass(frozen=True, kw_only=True)
class MetricsStorage:
    """Append-only metrics log kept in a key-value store."""

    store: KeyValueStore
    key: str = METRICS_KEY

    async def record(self, report: TestReport) -> MetricsRecord:
        """Append the summary of ``report`` to the log."""
        entry = MetricsRecord.from_report(report)
        await self.store.append(self.key, entry.model_dump(mode="json"))
        log.info("Recorded metrics for run %s", entry.run_id)
        return entry

    async def records(
        self, environment: str | None = None
    ) -> Sequence[MetricsRecord]:
        """Return every readable record, oldest first."""
        records = []
        for raw in await self.store.read(self.key):
            try:
                entry = MetricsRecord.model_validate(raw)
            except ValidationError as exc:
                log.warning("Skipping unreadable metrics record: %s", exc)
                continue
            if environment is None or entry.environment == environment:
                records.append(entry)
        return records

    async def last_runs(
        self, n: int, environment: str | None = None
    ) -> Sequence[MetricsRecord]:
        """Return the ``n`` most recent records, oldest first."""
        if n <= 0:
            return []
        return list((await self.records(environment))[-n:])

    async def trend(
        self, window: int = 10, environment: str | None = None
    ) -> TrendReport:
        """Compute moving aggregates over the last ``window`` runs.

        The overall direction follows the pass rate. When the pass rate is
        stable, the failed count decides.
        """
        records = await self.last_runs(window, environment)
        if not records:
            return TrendReport(window=window, environment=environment)

        def average(metric: str) -> float:
            return round(sum(r.value(metric) for r in records) / len(records), 2)

        trends = {
            metric: moved
            for metric in TREND_METRICS
            if (moved := metric_trend(metric, [r.value(metric) for r in records]))
            is not None
        }
        direction: Direction = "stable"
        for metric in ("pass_rate", "failed"):
            if metric in trends and trends[metric].direction != "stable":
                direction = trends[metric].direction
                break

        return TrendReport(
            window=window,
            environment=environment,
            runs=len(records),
            pass_rate=average("pass_rate"),
            mean_duration_ms=average("mean_duration_ms"),
            accessibility_violations=average("accessibility_violations"),
            failed=average("failed"),
            metrics=trends,
            direction=direction,
        )

    async def flaky_checks(
        self, window: int = 10, environment: str | None = None
    ) -> Sequence[str]:
        """Return checks whose status flipped at least twice in recent runs."""
        records = await self.last_runs(window, environment)
        history: dict[str, list[str]] = {}
        for entry in records:
            for check_id, status in entry.statuses.items():
                history.setdefault(check_id, []).append(status)
        return sorted(
            check_id
            for check_id, statuses in history.items()
            if count_flips(statuses) >= 2
        )
