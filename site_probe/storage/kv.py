"""Key-value persistence used for baselines and the metrics log."""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

UNSAFE_KEY_CHARS = re.compile(r"[^\w.-]+")


class KeyValueStore(ABC):
    """Persistent store of JSON-compatible values.

    Single values are read and written with `get` and `set`. Append-only
    logs are grown with `append` and read back, oldest first, with `read`.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value stored under ``key``, or None."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def append(self, key: str, value: Any) -> None:
        """Append ``value`` to the log stored under ``key``."""

    @abstractmethod
    async def read(self, key: str) -> Sequence[Any]:
        """Return every value appended to the log under ``key``."""


@dataclass(kw_only=True)
class MemoryStore(KeyValueStore):
    """Store kept in process memory."""

    values: dict[str, Any]
    logs: dict[str, list[Any]]

    @classmethod
    def empty(cls) -> "MemoryStore":
        """Create a store with no values."""
        return cls(values={}, logs={})

    async def get(self, key: str) -> Any | None:
        return self.values.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    async def append(self, key: str, value: Any) -> None:
        self.logs.setdefault(key, []).append(value)

    async def read(self, key: str) -> Sequence[Any]:
        return list(self.logs.get(key, ()))


@dataclass(frozen=True, kw_only=True)
class JsonFileStore(KeyValueStore):
    """Store writing one JSON file per value and one JSON Lines file per log."""

    root: Path

    async def get(self, key: str) -> Any | None:
        path = self._path(key, ".json")
        return await asyncio.to_thread(self._load, path)

    async def set(self, key: str, value: Any) -> None:
        path = self._path(key, ".json")
        await asyncio.to_thread(self._dump, path, value)

    async def append(self, key: str, value: Any) -> None:
        path = self._path(key, ".jsonl")
        await asyncio.to_thread(self._append_line, path, value)

    async def read(self, key: str) -> Sequence[Any]:
        path = self._path(key, ".jsonl")
        return await asyncio.to_thread(self._read_lines, path)

    def _path(self, key: str, suffix: str) -> Path:
        safe_key = UNSAFE_KEY_CHARS.sub("_", key)
        return self.root / f"{safe_key}{suffix}"

    @staticmethod
    def _load(path: Path) -> Any | None:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _dump(path: Path, value: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(value, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(path)

    @staticmethod
    def _append_line(path: Path, value: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(value, sort_keys=True) + "\n")

    @staticmethod
    def _read_lines(path: Path) -> Sequence[Any]:
        if not path.exists():
            return []
        values = []
        with path.open(encoding="utf-8") as f:
            for number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    values.append(json.loads(line))
                except json.JSONDecodeError:
                    log.warning("Skipping corrupt line %d of %s", number, path)
        return values
