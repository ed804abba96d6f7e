"""Tests for the debug handler table report."""

from __future__ import annotations

from pathlib import Path

from nitrate.bundler.diagnostics import (
    HandlerTableDumpState,
    dump_handler_table,
    flatten_options,
    report_handler_table,
)
from nitrate.bundler.handlers import HandlerDeclaration, HandlerTable


class _Logger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []

    def info(self, event: str, **kw: object) -> None:
        self.calls.append((event, kw))


def _table(*rows: HandlerDeclaration) -> HandlerTable:
    return HandlerTable(rows=rows)


def test_flatten_options_formats_values() -> None:
    assert (
        flatten_options({"lazy": False, "middleware": True, "method": "get"})
        == "lazy: false, middleware: true, method: get"
    )
    assert flatten_options({"method": None}) == ""
    assert flatten_options({"meta": {"a": 1}}) == 'meta: {"a": 1}'


def test_dump_handler_table_columns(tmp_path: Path) -> None:
    handler = tmp_path / "server" / "api" / "users.ts"
    table = _table(
        HandlerDeclaration(route="/", handler="#internal/nitrate/static"),
        HandlerDeclaration(route="/users", handler=str(handler), method="get"),
    )

    dumped = dump_handler_table(table, cwd=tmp_path)

    assert "Path" in dumped and "Handler" in dumped and "Options" in dumped
    assert "*" in dumped
    assert "server/api/users.ts" in dumped
    assert str(tmp_path) not in dumped
    assert "method: get" in dumped


def test_report_only_in_debug_mode() -> None:
    logger = _Logger()
    state = HandlerTableDumpState()
    table = _table(HandlerDeclaration(route="/a", handler="a"))

    result = report_handler_table(table, state, debug=False, logger=logger)  # type: ignore[arg-type]

    assert result is None
    assert logger.calls == []


def test_report_emits_once_per_change() -> None:
    logger = _Logger()
    state = HandlerTableDumpState()
    first = _table(HandlerDeclaration(route="/a", handler="a"))
    second = _table(HandlerDeclaration(route="/b", handler="b"))

    assert report_handler_table(first, state, debug=True, logger=logger) is not None  # type: ignore[arg-type]
    assert report_handler_table(first, state, debug=True, logger=logger) is None  # type: ignore[arg-type]
    assert report_handler_table(second, state, debug=True, logger=logger) is not None  # type: ignore[arg-type]

    assert [event for event, _ in logger.calls] == ["handler-table", "handler-table"]
    assert logger.calls[0][1]["rows"] == 1


def test_report_skips_empty_tables() -> None:
    logger = _Logger()
    state = HandlerTableDumpState()

    result = report_handler_table(_table(), state, debug=True, logger=logger)  # type: ignore[arg-type]

    assert result is None
    assert logger.calls == []
