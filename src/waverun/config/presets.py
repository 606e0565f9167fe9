"""Named configuration profiles."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from waverun.config.schema import Configuration
from waverun.util.errors import ConfigError

PRESETS: dict[str, dict[str, Any]] = {
    "development": {
        "max_parallel": 2,
        "quality_threshold": 75,
        "timeout_multiplier": 1.0,
        "memory_limit": 4096,
        "enable_optimizations": False,
    },
    "production": {
        "max_parallel": 8,
        "quality_threshold": 95,
        "timeout_multiplier": 2.0,
        "memory_limit": 16384,
        "enable_optimizations": True,
    },
    "ci": {
        "max_parallel": 4,
        "quality_threshold": 85,
        "timeout_multiplier": 1.5,
        "memory_limit": 8192,
        "enable_optimizations": True,
    },
}


def get_preset(name: str) -> dict[str, Any]:
    try:
        return dict(PRESETS[name])
    except KeyError:
        raise ConfigError(f"unknown preset: {name} (expected one of {sorted(PRESETS)})") from None


def configuration_from_preset(name: str, **overrides: Any) -> Configuration:
    """Build a configuration from a preset; explicit overrides win."""
    values = get_preset(name)
    values.update(overrides)
    values.setdefault("name", name)
    return Configuration(**values)


def apply_preset(configuration: Configuration, name: str) -> Configuration:
    return replace(configuration, name=name, **get_preset(name))


def production_ready(configuration: Configuration) -> bool:
    return (
        configuration.quality_threshold >= 90
        and configuration.memory_limit >= 4096
        and configuration.timeout_multiplier >= 1.0
    )
