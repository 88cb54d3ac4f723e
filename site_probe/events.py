"""Progress events emitted while a run executes."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

type RunEventKind = Literal["run-start", "state", "page-start", "page-end", "run-end"]


@dataclass(frozen=True, kw_only=True)
class RunEvent:
    """Something that happened during a run."""

    kind: RunEventKind
    run_id: str
    url: str | None = None
    detail: str = ""


type EventCallback = Callable[[RunEvent], None]
