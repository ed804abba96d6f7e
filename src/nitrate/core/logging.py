"""Logging helpers for :mod:`nitrate`.

Build diagnostics flow through structlog bound loggers layered over stdlib
logging. Console output is rendered by Rich; an optional JSON build log is
written next to the build artifacts so CI systems can archive it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

from rich.console import Console
from rich.logging import RichHandler
import structlog

Logger = structlog.stdlib.BoundLogger

_CONSOLE_PROCESSOR = structlog.dev.ConsoleRenderer(colors=False)
_FILE_PROCESSOR = structlog.processors.JSONRenderer(sort_keys=True)
_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)

BUILD_LOG_FILENAME = "nitrate.log"

_PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    _TIMESTAMPER,
]


def _normalize_level(level: str) -> int:
    """Return the logging module level constant for ``level``.

    Raises:
        ValueError: If the level name is not recognized.
    """

    normalized = level.strip().upper()
    value = logging.getLevelName(normalized)
    if isinstance(value, str):  # ``getLevelName`` echoes unknown names.
        raise ValueError(f"Unsupported log level: {level!r}")
    return value


def _reset_root_logger(
    root: logging.Logger,
    handlers: Iterable[logging.Handler],
) -> None:
    """Replace root handlers with the provided ones."""

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)


def _configure_structlog() -> None:
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            *_PRE_CHAIN,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _build_file_handler(log_file: Path, level: int) -> logging.FileHandler:
    """Return a handler writing one JSON document per line.

    The build log is truncated on every configuration so it only describes
    the most recent build.
    """

    handler = logging.FileHandler(
        log_file,
        mode="w",
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_FILE_PROCESSOR,
            foreign_pre_chain=_PRE_CHAIN,
        )
    )
    return handler


def _build_console_handler(
    level: int,
    console: Console | None = None,
) -> RichHandler:
    """Return a Rich-backed console handler for structured logging."""

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        enable_link_path=False,
        log_time_format="%H:%M:%S",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_CONSOLE_PROCESSOR,
            foreign_pre_chain=_PRE_CHAIN,
        )
    )
    return handler


def configure_logging(
    *,
    level: str = "INFO",
    log_dir: str | Path | None = None,
    console: Console | None = None,
) -> Path | None:
    """Configure structlog alongside stdlib logging.

    Args:
        level: Log level name to apply to the root logger (case-insensitive).
        log_dir: Optional directory receiving the JSON build log.
        console: Optional Rich console override, primarily for testing.

    Returns:
        The build log path when ``log_dir`` is provided, otherwise ``None``.

    Raises:
        ValueError: If ``level`` is not a recognized log level name.
    """

    log_level = _normalize_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    _configure_structlog()

    handlers: list[logging.Handler] = [
        _build_console_handler(log_level, console=console)
    ]

    log_file: Path | None = None
    if log_dir is not None:
        directory = Path(log_dir).expanduser().resolve(strict=False)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / BUILD_LOG_FILENAME
        handlers.append(_build_file_handler(log_file, log_level))

    _reset_root_logger(root_logger, handlers)
    logging.captureWarnings(True)
    return log_file


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structured logger bound to an optional context.

    Example:
        >>> logger = get_logger(__name__, stage="handlers")
        >>> hasattr(logger, "bind")
        True
    """

    return structlog.get_logger(name).bind(**initial_context)


__all__ = ["BUILD_LOG_FILENAME", "Logger", "configure_logging", "get_logger"]
