"""Configuration loading, validation and logging setup."""

from .config_parser import Settings, load_settings, parse_config_file
from .logging_config import init_logging

__all__ = ["Settings", "init_logging", "load_settings", "parse_config_file"]
