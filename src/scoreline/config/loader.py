"""Configuration loading from YAML files with environment variable overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from scoreline.config.models import AppConfig, Environment

ENV_PREFIX = "SCORELINE__"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge override dict into base dict. Override values win."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Convention: SCORELINE__SECTION__KEY=value
    Double underscore separates nesting levels.
    Example: SCORELINE__JOBS__DEFAULT_MAX_RETRIES=5
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        parts = key[len(ENV_PREFIX) :].lower().split("__")
        current = data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value
    return data


def load_config(
    config_dir: Path | str = "config",
    environment: str | None = None,
) -> AppConfig:
    """Load configuration from YAML files with environment overrides.

    Loading order (later values override earlier):
    1. config/base.yaml
    2. config/<environment>.yaml (development or production)
    3. Environment variables (SCORELINE__SECTION__KEY)

    The environment comes from the ``environment`` argument, else
    ``SCORELINE__ENVIRONMENT``, else ``development``.
    """
    config_dir = Path(config_dir)
    env = environment or os.environ.get(f"{ENV_PREFIX}ENVIRONMENT", Environment.DEVELOPMENT.value)
    env = Environment(env.lower()).value

    # Layer 1: base config
    data = _load_yaml(config_dir / "base.yaml")

    # Layer 2: environment overlay
    data = _deep_merge(data, _load_yaml(config_dir / f"{env}.yaml"))
    data["environment"] = env

    # Layer 3: env var overrides
    data = _apply_env_overrides(data)
    if environment is not None:
        data["environment"] = env

    return AppConfig.from_dict(data)
