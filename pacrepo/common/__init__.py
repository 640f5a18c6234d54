"""Common utilities for pacrepo."""

from .logger import setup_logger, get_logger
from .config import load_config, load_typed_config, ConfigError

__all__ = ["ConfigError", "get_logger", "load_config", "load_typed_config", "setup_logger"]
