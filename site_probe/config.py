"""Resolution of the run configuration from defaults, presets and overrides."""

import re
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from site_probe.errors import ConfigError
from site_probe.models.config import TestConfig

DEFAULTS: Mapping[str, Any] = {
    "depth": "medium",
    "max_pages": 50,
    "workers": 1,
    "check_timeout": 30.0,
    "retries": 2,
    "retry_backoff": 0.5,
    "output_dir": "./test-results",
}

MOBILE_VIEWPORTS: Sequence[Mapping[str, Any]] = (
    {
        "name": "iphone-13",
        "width": 390,
        "height": 844,
        "device_scale_factor": 3,
        "is_mobile": True,
    },
    {
        "name": "pixel-7",
        "width": 412,
        "height": 915,
        "device_scale_factor": 2.625,
        "is_mobile": True,
    },
)

PRESETS: Mapping[str, Mapping[str, Any]] = {
    "smoke": {
        "depth": "shallow",
        "max_pages": 10,
        "accessibility": False,
        "performance": False,
        "edge_functions": False,
        "screenshots": False,
        "check_timeout": 15.0,
    },
    "standard": {
        "depth": "medium",
        "max_pages": 50,
    },
    "full": {
        "depth": "deep",
        "max_pages": 500,
        "visual": True,
        "api_testing": True,
        "workers": 4,
    },
    "mobile": {
        "depth": "medium",
        "max_pages": 30,
        "viewports": MOBILE_VIEWPORTS,
        "edge_functions": False,
    },
    "accessibility": {
        "depth": "deep",
        "max_pages": 100,
        "accessibility": True,
        "performance": False,
        "edge_functions": False,
        "screenshots": False,
    },
    "performance": {
        "depth": "medium",
        "max_pages": 30,
        "accessibility": False,
        "performance": True,
        "edge_functions": False,
    },
    "api": {
        "depth": "shallow",
        "max_pages": 5,
        "accessibility": False,
        "performance": False,
        "screenshots": False,
        "edge_functions": True,
        "api_testing": True,
    },
    "ci": {
        "depth": "medium",
        "max_pages": 100,
        "headless": True,
        "screenshots": False,
        "workers": 4,
        "run_timeout": 1800.0,
    },
}


def preset_names() -> Sequence[str]:
    """Return the names of all known presets."""
    return tuple(PRESETS)


def merge_layers(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge configuration layers, later layers winning.

    Keys whose value is None are skipped so an unset override never masks a
    lower layer. Nested mappings are merged key by key.
    """
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if value is None:
                continue
            current = merged.get(key)
            if isinstance(value, Mapping) and isinstance(current, Mapping):
                merged[key] = merge_layers(current, value)
            else:
                merged[key] = value
    return merged


def resolve_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    preset: str | None = None,
    environment_overrides: Mapping[str, Any] | None = None,
) -> TestConfig:
    """Build a validated TestConfig.

    Args:
        overrides: Explicit settings, usually from the command line
        preset: Name of a preset bundle applied on top of the defaults
        environment_overrides: Settings contributed by the selected environment

    Returns:
        The fully populated configuration

    Raises:
        ConfigError: If the preset is unknown, the base URL is missing or
            malformed, a numeric bound is out of range, a filter pattern is
            not a valid regular expression, or toggles conflict

    """
    if preset is not None and preset not in PRESETS:
        raise ConfigError(
            f"Unknown preset '{preset}'. Available presets: {list(PRESETS)}"
        )

    values = merge_layers(
        DEFAULTS,
        PRESETS[preset] if preset else None,
        environment_overrides,
        overrides,
    )
    if preset:
        values["preset"] = preset
    # An explicit deep run opts in to destructive clicks unless the environment
    # or the caller forbids them
    explicit = overrides or {}
    environment = environment_overrides or {}
    if (
        explicit.get("depth") == "deep"
        and explicit.get("allow_destructive") is None
        and environment.get("allow_destructive") is not False
    ):
        values["allow_destructive"] = True

    base_url = values.get("base_url")
    if not base_url:
        raise ConfigError("base_url is required")
    validate_base_url(str(base_url))

    try:
        config = TestConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    validate_config(config)
    return config


def validate_base_url(base_url: str) -> None:
    """Raise ConfigError unless ``base_url`` is an absolute http(s) URL."""
    parts = urlsplit(base_url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConfigError(f"base_url must be an absolute http(s) URL: {base_url!r}")


def validate_config(config: TestConfig) -> None:
    """Check bounds and cross-field constraints of a parsed configuration."""
    if config.max_pages < 1:
        raise ConfigError(f"max_pages must be at least 1, got {config.max_pages}")
    if config.workers < 1:
        raise ConfigError(f"workers must be at least 1, got {config.workers}")
    if config.max_depth is not None and config.max_depth < 0:
        raise ConfigError(f"max_depth must not be negative, got {config.max_depth}")
    if config.check_timeout <= 0:
        raise ConfigError("check_timeout must be positive")
    if config.run_timeout is not None and config.run_timeout <= 0:
        raise ConfigError("run_timeout must be positive")
    if config.retries < 0:
        raise ConfigError("retries must not be negative")
    if not config.viewports:
        raise ConfigError("at least one viewport is required")

    for kind, names in (
        ("viewport", [viewport.name for viewport in config.viewports]),
        ("API endpoint", [endpoint.name for endpoint in config.api_endpoints]),
    ):
        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        if duplicates:
            raise ConfigError(f"Duplicate {kind} name(s): {', '.join(duplicates)}")

    for pattern in (*config.include_patterns, *config.exclude_patterns):
        try:
            re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid URL pattern {pattern!r}: {exc}") from exc

    if config.depth == "deep" and config.max_pages == 1:
        raise ConfigError("depth 'deep' conflicts with max_pages=1")
    if config.visual and not config.screenshots:
        raise ConfigError("visual testing requires screenshots to be enabled")
