"""Debug-mode rendering of the handler table."""

from __future__ import annotations

import io
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from nitrate.core.logging import Logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .handlers import HandlerTable

__all__ = [
    "HandlerTableDumpState",
    "dump_handler_table",
    "flatten_options",
    "report_handler_table",
]


@dataclass(slots=True)
class HandlerTableDumpState:
    """Last handler table dump emitted during a build session."""

    last_dump: str = ""


def flatten_options(options: dict[str, Any]) -> str:
    """Render ``options`` as ``key: value`` pairs.

    Example:
        >>> flatten_options({"lazy": True, "method": "get", "skip": None})
        'lazy: true, method: get'
    """

    items = []
    for key, value in options.items():
        if value is None:
            continue
        rendered = value if isinstance(value, str) else json.dumps(value)
        items.append(f"{key}: {rendered}")
    return ", ".join(items)


def _display_handler(handler: str, cwd: Path) -> str:
    if not os.path.isabs(handler):
        return handler
    try:
        return Path(handler).relative_to(cwd).as_posix()
    except ValueError:
        return handler


def dump_handler_table(table: "HandlerTable", *, cwd: Path | None = None) -> str:
    """Render ``table`` as a plain-text grid of path, handler and options."""

    cwd = cwd or Path.cwd()
    grid = Table(box=box.SQUARE, show_lines=False)
    for column in ("Path", "Handler", "Options"):
        grid.add_column(column, no_wrap=True)
    for row in table:
        # Handler ids like ``[id].ts`` must not be read as markup.
        grid.add_row(
            Text(row.route if row.route and row.route != "/" else "*"),
            Text(_display_handler(row.handler, cwd)),
            Text(flatten_options(row.model_dump(exclude={"route", "handler"}))),
        )

    buffer = io.StringIO()
    console = Console(file=buffer, width=200, color_system=None)
    console.print(grid)
    return buffer.getvalue().rstrip("\n")


def report_handler_table(
    table: "HandlerTable",
    state: HandlerTableDumpState,
    *,
    debug: bool,
    logger: Logger,
    cwd: Path | None = None,
) -> str | None:
    """Log the handler table when it changed since the last report.

    Nothing is rendered outside debug mode. Empty tables update the state but
    are never logged. Returns the dump when it was logged.
    """

    if not debug:
        return None
    dumped = dump_handler_table(table, cwd=cwd)
    if dumped == state.last_dump:
        return None
    state.last_dump = dumped
    if not len(table):
        return None
    logger.info("handler-table", rows=len(table), table="\n" + dumped)
    return dumped
