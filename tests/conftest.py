"""Shared fixtures for site-probe tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from site_probe.models.config import TestConfig

BASE_URL = "https://app.test/"


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., TestConfig]:
    """Create configurations pointing at the fake site, writing under tmp_path."""

    def factory(**overrides: Any) -> TestConfig:
        values: dict[str, Any] = {
            "base_url": BASE_URL,
            "output_dir": str(tmp_path / "results"),
            "check_timeout": 5.0,
            "retries": 0,
            "retry_backoff": 0.0,
        }
        values.update(overrides)
        return TestConfig.model_validate(values)

    return factory


@pytest.fixture
def config(make_config: Callable[..., TestConfig]) -> TestConfig:
    """Default configuration for the fake site."""
    return make_config()
