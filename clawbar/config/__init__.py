"""Preferences — async JSON store with defaults merging."""

from clawbar.config.config import Config
from clawbar.config.defaults import DEFAULT_CONFIG, GATEWAY_PORT

__all__ = ["Config", "DEFAULT_CONFIG", "GATEWAY_PORT"]
