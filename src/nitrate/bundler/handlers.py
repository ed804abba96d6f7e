"""Handler aggregation: merged dispatch table and its generated module."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence

from nitrate.core.logging import Logger, get_logger

from .declarations import (
    HTTP_METHODS,
    HandlerDeclaration,
    declaration_from_mapping,
    infer_method,
    with_inferred_method,
)
from .diagnostics import HandlerTableDumpState, report_handler_table
from .hashing import ImportVariant, identifier

__all__ = [
    "HANDLERS_MODULE_ID",
    "HTTP_METHODS",
    "RENDERER_ROUTE",
    "STATIC_HANDLER_ID",
    "HandlerDeclaration",
    "HandlerRow",
    "HandlerTable",
    "HandlersModule",
    "ImportPlan",
    "compose_handler_table",
    "declaration_from_mapping",
    "infer_method",
    "parse_handler_imports",
    "parse_handler_rows",
    "plan_imports",
    "render_handlers_module",
    "with_inferred_method",
]


HANDLERS_MODULE_ID = "#internal/nitrate/virtual/server-handlers"
STATIC_HANDLER_ID = "#internal/nitrate/static"
RENDERER_ROUTE = "/**"

_STRING = r'"(?:[^"\\]|\\.)*"'
_ROW_PATTERN = re.compile(
    rf"\{{ route: ({_STRING}), handler: (\w+), lazy: (true|false), "
    rf"middleware: (true|false), method: ({_STRING}|undefined) \}}"
)
_EAGER_IMPORT = re.compile(rf"^import (\w+) from ({_STRING});$", re.MULTILINE)
_LAZY_IMPORT = re.compile(
    rf"^const (\w+) = \(\) => import\(({_STRING})\);$", re.MULTILINE
)


@dataclass(frozen=True, slots=True)
class HandlerTable:
    """Ordered handler rows; order defines router match priority."""

    rows: tuple[HandlerDeclaration, ...] = ()

    def __iter__(self) -> Iterator[HandlerDeclaration]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __getitem__(self, index: int) -> HandlerDeclaration:
        return self.rows[index]

    def module_ids(self) -> tuple[str, ...]:
        """Return handler module ids in first-seen order."""

        return tuple(dict.fromkeys(row.handler for row in self.rows))


@dataclass(frozen=True, slots=True)
class ImportPlan:
    """Deduplicated eager and lazy imports backing a handler table.

    ``ambiguous`` lists module ids requested both eagerly and lazily; they
    are imported eagerly only.
    """

    eager: tuple[str, ...] = ()
    lazy: tuple[str, ...] = ()
    ambiguous: tuple[str, ...] = ()
    _eager_set: frozenset[str] = field(
        default=frozenset(), init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "_eager_set", frozenset(self.eager))

    def binding_for(self, module_id: str) -> str:
        """Return the identifier the dispatch table uses for ``module_id``."""

        if module_id in self._eager_set:
            return identifier(module_id, ImportVariant.EAGER)
        if module_id in self.lazy:
            return identifier(module_id, ImportVariant.LAZY)
        raise KeyError(f"Module {module_id!r} is not part of the import plan.")


def compose_handler_table(
    *,
    scanned: Iterable[HandlerDeclaration] = (),
    configured: Iterable[HandlerDeclaration] = (),
    serve_static: bool = False,
    renderer: str | None = None,
) -> HandlerTable:
    """Merge handler sources into a single ordered table.

    Static middleware comes first, then scanned handlers, then configured
    handlers (with methods inferred from file names), then the catch-all
    renderer.
    """

    rows: list[HandlerDeclaration] = []
    if serve_static:
        rows.append(HandlerDeclaration(handler=STATIC_HANDLER_ID, middleware=True))
    rows.extend(scanned)
    rows.extend(with_inferred_method(handler) for handler in configured)
    if renderer:
        rows.append(
            HandlerDeclaration(route=RENDERER_ROUTE, handler=renderer, lazy=True)
        )
    return HandlerTable(rows=tuple(rows))


def plan_imports(table: HandlerTable) -> ImportPlan:
    """Partition handler modules into eager and lazy imports.

    Example:
        >>> table = HandlerTable(rows=(
        ...     HandlerDeclaration(route="/a", handler="h1"),
        ...     HandlerDeclaration(route="/b", handler="h1", lazy=True),
        ... ))
        >>> plan = plan_imports(table)
        >>> plan.eager, plan.lazy, plan.ambiguous
        (('h1',), (), ('h1',))
    """

    eager = tuple(dict.fromkeys(row.handler for row in table if not row.lazy))
    eager_set = set(eager)
    requested_lazy = tuple(dict.fromkeys(row.handler for row in table if row.lazy))
    lazy = tuple(handler for handler in requested_lazy if handler not in eager_set)
    ambiguous = tuple(
        handler for handler in requested_lazy if handler in eager_set
    )
    return ImportPlan(eager=eager, lazy=lazy, ambiguous=ambiguous)


def _render_row(row: HandlerDeclaration, plan: ImportPlan) -> str:
    method = json.dumps(row.method) if row.method else "undefined"
    return (
        f"  {{ route: {json.dumps(row.route)}, "
        f"handler: {plan.binding_for(row.handler)}, "
        f"lazy: {json.dumps(row.lazy)}, "
        f"middleware: {json.dumps(row.middleware)}, "
        f"method: {method} }}"
    )


def render_handlers_module(
    table: HandlerTable,
    plan: ImportPlan | None = None,
) -> str:
    """Generate the ESM source of the dispatch-table module."""

    plan = plan or plan_imports(table)
    sections: list[str] = []
    if plan.eager:
        sections.append(
            "\n".join(
                f"import {identifier(module_id, ImportVariant.EAGER)} "
                f"from {json.dumps(module_id)};"
                for module_id in plan.eager
            )
        )
    if plan.lazy:
        sections.append(
            "\n".join(
                f"const {identifier(module_id, ImportVariant.LAZY)} = "
                f"() => import({json.dumps(module_id)});"
                for module_id in plan.lazy
            )
        )
    rows = ",\n".join(_render_row(row, plan) for row in table)
    body = f"export const handlers = [\n{rows}\n];" if rows else (
        "export const handlers = [];"
    )
    sections.append(body)
    return "\n\n".join(sections)


@dataclass(frozen=True, slots=True)
class HandlerRow:
    """Row metadata read back from a generated dispatch-table module."""

    route: str
    binding: str
    lazy: bool
    middleware: bool
    method: str | None


def parse_handler_rows(source: str) -> list[HandlerRow]:
    """Read the dispatch rows out of generated handler module source."""

    rows: list[HandlerRow] = []
    for match in _ROW_PATTERN.finditer(source):
        route, binding, lazy, middleware, method = match.groups()
        rows.append(
            HandlerRow(
                route=json.loads(route),
                binding=binding,
                lazy=lazy == "true",
                middleware=middleware == "true",
                method=None if method == "undefined" else json.loads(method),
            )
        )
    return rows


def parse_handler_imports(source: str) -> dict[str, tuple[str, ImportVariant]]:
    """Map each binding in generated source to its module id and variant."""

    bindings: dict[str, tuple[str, ImportVariant]] = {}
    for match in _EAGER_IMPORT.finditer(source):
        bindings[match.group(1)] = (json.loads(match.group(2)), ImportVariant.EAGER)
    for match in _LAZY_IMPORT.finditer(source):
        bindings[match.group(1)] = (json.loads(match.group(2)), ImportVariant.LAZY)
    return bindings


class HandlersModule:
    """Virtual module generator for the dispatch table.

    The table is read through ``table_provider`` on every call so the module
    always reflects the current build.
    """

    def __init__(
        self,
        table_provider: Callable[[], HandlerTable],
        *,
        dump_state: HandlerTableDumpState | None = None,
        debug: bool = False,
        logger: Logger | None = None,
        cwd: Path | None = None,
    ) -> None:
        self._table_provider = table_provider
        self._dump_state = dump_state or HandlerTableDumpState()
        self._debug = debug
        self._logger = logger or get_logger(__name__, module=HANDLERS_MODULE_ID)
        self._cwd = cwd
        self._warned: set[str] = set()

    def __call__(self) -> str:
        table = self._table_provider()
        report_handler_table(
            table,
            self._dump_state,
            debug=self._debug,
            logger=self._logger,
            cwd=self._cwd,
        )
        plan = plan_imports(table)
        self._warn_ambiguous(plan.ambiguous)
        return render_handlers_module(table, plan)

    def _warn_ambiguous(self, module_ids: Sequence[str]) -> None:
        for module_id in module_ids:
            if module_id in self._warned:
                continue
            self._warned.add(module_id)
            self._logger.warning(
                "import-ambiguous",
                handler=module_id,
                resolution="eager",
            )
