"""Tests for :mod:`nitrate.core.logging`."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest
from rich.console import Console
from rich.logging import RichHandler

from nitrate.core.logging import BUILD_LOG_FILENAME, configure_logging, get_logger


def _clear_root_handlers() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Ensure each test runs with a clean logging configuration."""

    _clear_root_handlers()
    yield
    _clear_root_handlers()


def _build_console() -> tuple[Console, io.StringIO]:
    """Return a console writing to an in-memory buffer."""

    buffer = io.StringIO()
    return Console(file=buffer, width=120, color_system=None), buffer


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def test_configure_logging_writes_json_build_log(tmp_path: Path) -> None:
    console, _ = _build_console()

    log_file = configure_logging(
        level="debug", log_dir=tmp_path / "logs", console=console
    )

    assert log_file == (tmp_path / "logs" / BUILD_LOG_FILENAME).resolve()
    root = logging.getLogger()
    assert len([h for h in root.handlers if isinstance(h, RichHandler)]) == 1
    assert len([h for h in root.handlers if isinstance(h, logging.FileHandler)]) == 1

    get_logger(__name__, stage="handlers").info("handlers-prepared", handlers=3)
    _flush()

    payload = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert payload["event"] == "handlers-prepared"
    assert payload["stage"] == "handlers"
    assert payload["handlers"] == 3
    assert payload["level"] == "info"


def test_build_log_is_truncated_per_configuration(tmp_path: Path) -> None:
    console, _ = _build_console()

    log_file = configure_logging(level="info", log_dir=tmp_path, console=console)
    get_logger("first").info("first-build")
    _flush()
    _clear_root_handlers()

    configure_logging(level="info", log_dir=tmp_path, console=console)
    get_logger("second").info("second-build")
    _flush()

    contents = log_file.read_text(encoding="utf-8")
    assert "second-build" in contents
    assert "first-build" not in contents


def test_configure_logging_without_log_dir_omits_file_handler() -> None:
    console, buffer = _build_console()

    assert configure_logging(level="info", console=console) is None

    root = logging.getLogger()
    assert any(isinstance(h, RichHandler) for h in root.handlers)
    assert not any(
        isinstance(h, logging.FileHandler) for h in root.handlers
    ), "No file handler should be registered without a log directory"

    get_logger("console").warning("import-ambiguous", handler="h1")
    _flush()
    assert "import-ambiguous" in buffer.getvalue()


def test_configure_logging_respects_level() -> None:
    console, buffer = _build_console()

    configure_logging(level="WARNING", console=console)
    get_logger("quiet").info("hidden-event")
    _flush()

    assert "hidden-event" not in buffer.getvalue()


def test_configure_logging_rejects_unknown_level(tmp_path: Path) -> None:
    console, _ = _build_console()

    with pytest.raises(ValueError):
        configure_logging(level="chatty", log_dir=tmp_path, console=console)
