"""Core utilities shared across :mod:`nitrate` modules.

The core namespace provides cohesive seams for configuration loading, logging
setup, and build path resolution so the bundler policies stay lightweight.

Example:
    >>> from nitrate.core import get_logger
    >>> logger = get_logger(__name__)
    >>> isinstance(logger, object)
    True
"""

from __future__ import annotations

from .logging import configure_logging, get_logger
from .paths import BuildPaths, normalize_id, resolve_build_paths
from .config import BuildConfig, load_build_config, load_config

__all__ = [
    "BuildConfig",
    "BuildPaths",
    "configure_logging",
    "get_logger",
    "load_build_config",
    "load_config",
    "normalize_id",
    "resolve_build_paths",
]
