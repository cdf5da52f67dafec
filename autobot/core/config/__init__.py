"""Configuration module."""

from autobot.core.config.loader import load_config
from autobot.core.config.schema import Config

__all__ = ["Config", "load_config"]
