"""Harness settings and configuration file handling."""

from ephemera.config.settings import HarnessSettings, load_settings
from ephemera.config.templates import ConfigFormat, read_config, write_config

__all__ = [
    "HarnessSettings",
    "load_settings",
    "ConfigFormat",
    "read_config",
    "write_config",
]
