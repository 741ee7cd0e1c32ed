"""Configuration loading utilities."""

from __future__ import annotations

import json
from pathlib import Path

import yaml

from .errors import ConfigError
from .models import MockServerConfig


def load_config(path: Path) -> MockServerConfig:
    """Load and validate a mock server configuration from YAML or JSON.

    A relative ``fixtures_root`` is resolved against the directory holding
    the configuration file.
    """

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    config = MockServerConfig.model_validate(data)
    if config.fixtures_root is not None and not config.fixtures_root.is_absolute():
        config.fixtures_root = (path.parent / config.fixtures_root).resolve()
    return config
