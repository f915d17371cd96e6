"""Top-level package for the loggerlink data logger toolkit."""
from __future__ import annotations

from .config import AppConfig, load_config

__all__ = ["AppConfig", "load_config"]
