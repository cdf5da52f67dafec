"""Config file discovery and loading for autobot."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pydantic
import yaml
from loguru import logger

from autobot.core.config.schema import Config
from autobot.core.errors import FatalStartupError

CONFIG_ENV = "AUTOBOT_CONFIG"
DEFAULT_CONFIG = Path("config.yaml")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Build the Config from a YAML file plus ``AUTOBOT_*`` env overrides.

    File lookup:
        1. ``config_path`` argument
        2. ``AUTOBOT_CONFIG`` env variable
        3. ``./config.yaml``, when present

    A file named explicitly (1 or 2) must exist. Without any file the
    defaults apply. Every problem with the file is a FatalStartupError
    naming it.
    """
    path = _resolve_path(config_path)
    data = _load_yaml(path) if path else {}
    try:
        config = Config(**data)
    except pydantic.ValidationError as e:
        source = path or "environment"
        raise FatalStartupError(f"Invalid configuration in {source}: {e}") from e
    logger.debug(f"Configuration loaded from {path or 'defaults'}")
    return config


def _resolve_path(config_path: str | Path | None = None) -> Path | None:
    explicit = config_path or os.environ.get(CONFIG_ENV)
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise FatalStartupError(f"Config file not found: {path}")
        return path
    return DEFAULT_CONFIG if DEFAULT_CONFIG.is_file() else None


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise FatalStartupError(f"Cannot parse {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FatalStartupError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data
