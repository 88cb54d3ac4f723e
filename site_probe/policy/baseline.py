"""Comparison of a run against the stored baseline of its environment."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import Field, ValidationError

from site_probe.models.base import Model
from site_probe.models.report import TestReport
from site_probe.storage.kv import KeyValueStore

log = logging.getLogger(__name__)

type Change = Literal["new", "fixed", "regression", "flaky", "unchanged"]


class BaselineSnapshot(Model):
    """Statuses of the last accepted run plus the runs before it."""

    environment: str
    run_id: str
    updated_at: datetime
    statuses: Mapping[str, str] = Field(default_factory=dict)
    history: Sequence[Mapping[str, str]] = Field(
        default=(), description="Status maps of previous runs, oldest first"
    )


class BaselineDiff(Model):
    """Per-check changes of a run relative to the baseline."""

    environment: str
    baseline_run_id: str | None = None
    new: Sequence[str] = ()
    fixed: Sequence[str] = ()
    regressions: Sequence[str] = ()
    flaky: Sequence[str] = ()
    unchanged: Sequence[str] = ()
    removed: Sequence[str] = ()

    @property
    def has_regressions(self) -> bool:
        """Whether any check went from pass to fail."""
        return bool(self.regressions)


def outcome(status: str) -> str:
    """Collapse a status to pass, fail or skip."""
    return "fail" if status in ("fail", "error") else status


def count_flips(statuses: Sequence[str]) -> int:
    """Count pass/fail changes between consecutive statuses, ignoring skips."""
    outcomes = [outcome(s) for s in statuses if outcome(s) != "skip"]
    return sum(1 for before, after in zip(outcomes, outcomes[1:]) if before != after)


def classify(
    check_id: str, status: str, snapshot: BaselineSnapshot | None
) -> Change:
    """Classify one check of the current run against ``snapshot``."""
    if snapshot is None or check_id not in snapshot.statuses:
        return "new"
    previous = [run[check_id] for run in snapshot.history if check_id in run]
    if count_flips([*previous, snapshot.statuses[check_id], status]) >= 2:
        return "flaky"
    before, after = outcome(snapshot.statuses[check_id]), outcome(status)
    if before == "pass" and after == "fail":
        return "regression"
    if before == "fail" and after == "pass":
        return "fixed"
    return "unchanged"


@dataclass(frozen=True, kw_only=True)
class BaselineManager:
    """Stores accepted check statuses per environment and diffs runs with them.

    Attributes:
        store: Where snapshots are kept, one key per environment
        history: Number of earlier runs kept to detect flaky checks

    """

    store: KeyValueStore
    history: int = 5

    @staticmethod
    def key(environment: str) -> str:
        """Storage key of the baseline of ``environment``."""
        return f"baseline/{environment}"

    async def load(self, environment: str) -> BaselineSnapshot | None:
        """Return the stored baseline of ``environment``, if any."""
        raw = await self.store.get(self.key(environment))
        if raw is None:
            return None
        try:
            return BaselineSnapshot.model_validate(raw)
        except ValidationError as exc:
            log.warning("Ignoring unreadable baseline for %s: %s", environment, exc)
            return None

    async def diff(self, report: TestReport) -> BaselineDiff:
        """Classify every check of ``report`` against the stored baseline.

        A check is flaky when its status flipped between pass and fail at
        least twice across the stored history, the baseline and this run.
        Flaky takes precedence over regression and fixed.
        """
        environment = report.metadata.environment
        snapshot = await self.load(environment)
        current = report.status_map()

        changes: dict[Change, list[str]] = {
            "new": [],
            "fixed": [],
            "regression": [],
            "flaky": [],
            "unchanged": [],
        }
        for check_id in sorted(current):
            changes[classify(check_id, current[check_id], snapshot)].append(check_id)
        removed: list[str] = []
        if snapshot is not None:
            removed = sorted(set(snapshot.statuses) - set(current))

        diff = BaselineDiff(
            environment=environment,
            baseline_run_id=snapshot.run_id if snapshot is not None else None,
            new=changes["new"],
            fixed=changes["fixed"],
            regressions=changes["regression"],
            flaky=changes["flaky"],
            unchanged=changes["unchanged"],
            removed=removed,
        )
        log.info(
            "Baseline %s: %d regression(s), %d fixed, %d new, %d flaky, %d removed",
            environment,
            len(diff.regressions),
            len(diff.fixed),
            len(diff.new),
            len(diff.flaky),
            len(diff.removed),
        )
        return diff

    async def update(self, report: TestReport) -> BaselineSnapshot:
        """Make ``report`` the baseline of its environment."""
        environment = report.metadata.environment
        previous = await self.load(environment)
        history: list[Mapping[str, str]] = []
        if previous is not None and self.history > 0:
            history = [*previous.history, previous.statuses][-self.history :]

        snapshot = BaselineSnapshot(
            environment=environment,
            run_id=report.metadata.run_id,
            updated_at=report.metadata.finished_at,
            statuses=report.status_map(),
            history=history,
        )
        await self.store.set(self.key(environment), snapshot.model_dump(mode="json"))
        log.info("Updated baseline for %s from run %s", environment, snapshot.run_id)
        return snapshot
