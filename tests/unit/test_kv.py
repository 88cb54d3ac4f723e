"""Tests for key-value stores."""

import logging
from pathlib import Path

import pytest

from site_probe.storage.kv import JsonFileStore, KeyValueStore, MemoryStore


@pytest.fixture(params=["memory", "json"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> KeyValueStore:
    """Create each store implementation."""
    if request.param == "memory":
        return MemoryStore.empty()
    return JsonFileStore(root=tmp_path / "store")


class TestKeyValueStore:
    """Behaviour shared by every store."""

    async def test_get_missing_returns_none(self, store: KeyValueStore) -> None:
        """Unknown keys read as None."""
        assert await store.get("baseline/local") is None

    async def test_set_replaces_value(self, store: KeyValueStore) -> None:
        """set overwrites the previous value."""
        await store.set("baseline/local", {"run_id": "r1"})
        await store.set("baseline/local", {"run_id": "r2"})

        assert await store.get("baseline/local") == {"run_id": "r2"}

    async def test_append_keeps_order(self, store: KeyValueStore) -> None:
        """Logs read back oldest first."""
        await store.append("metrics/runs", {"n": 1})
        await store.append("metrics/runs", {"n": 2})

        assert await store.read("metrics/runs") == [{"n": 1}, {"n": 2}]
        assert await store.read("metrics/other") == []


class TestJsonFileStore:
    """Tests for JsonFileStore."""

    async def test_sanitizes_keys(self, tmp_path: Path) -> None:
        """Keys map to flat, safe file names."""
        store = JsonFileStore(root=tmp_path)

        await store.set("visual/local/a:b c", "hash")
        await store.append("metrics/runs", {"n": 1})

        assert (tmp_path / "visual_local_a_b_c.json").is_file()
        assert (tmp_path / "metrics_runs.jsonl").is_file()

    async def test_skips_corrupt_lines(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A truncated line is skipped with a warning."""
        store = JsonFileStore(root=tmp_path)
        await store.append("metrics/runs", {"n": 1})
        with (tmp_path / "metrics_runs.jsonl").open("a", encoding="utf-8") as f:
            f.write('{"n": \n')
        await store.append("metrics/runs", {"n": 3})

        with caplog.at_level(logging.WARNING):
            values = await store.read("metrics/runs")

        assert values == [{"n": 1}, {"n": 3}]
        assert "Skipping corrupt line 2" in caplog.text
