"""Tests for handler aggregation and dispatch module generation."""

from __future__ import annotations

import logging

import pytest

from nitrate.bundler.diagnostics import HandlerTableDumpState
from nitrate.bundler.handlers import (
    RENDERER_ROUTE,
    STATIC_HANDLER_ID,
    HandlerDeclaration,
    HandlersModule,
    HandlerTable,
    compose_handler_table,
    parse_handler_imports,
    parse_handler_rows,
    plan_imports,
    render_handlers_module,
)
from nitrate.bundler.hashing import ImportVariant, identifier


def _table(*rows: HandlerDeclaration) -> HandlerTable:
    return HandlerTable(rows=rows)


def test_compose_orders_static_scanned_configured_renderer() -> None:
    scanned = [
        HandlerDeclaration(route="/api/a", handler="/app/server/api/a.ts"),
        HandlerDeclaration(route="/api/b", handler="/app/server/api/b.ts"),
    ]
    configured = [
        HandlerDeclaration(route="/users", handler="/app/handlers/users.get.ts"),
    ]

    table = compose_handler_table(
        scanned=scanned,
        configured=configured,
        serve_static=True,
        renderer="/app/renderer.ts",
    )

    handlers = [row.handler for row in table]
    assert handlers == [
        STATIC_HANDLER_ID,
        "/app/server/api/a.ts",
        "/app/server/api/b.ts",
        "/app/handlers/users.get.ts",
        "/app/renderer.ts",
    ]
    assert table[0].middleware is True
    assert table[3].method == "get"
    assert table[-1].route == RENDERER_ROUTE
    assert table[-1].lazy is True


def test_compose_without_static_or_renderer() -> None:
    table = compose_handler_table(
        configured=[HandlerDeclaration(route="/x", handler="x.ts")],
    )

    assert [row.handler for row in table] == ["x.ts"]


def test_compose_does_not_infer_methods_for_scanned_handlers() -> None:
    table = compose_handler_table(
        scanned=[HandlerDeclaration(route="/x", handler="x.get.ts")],
    )

    assert table[0].method is None


def test_plan_imports_eager_wins_ties() -> None:
    table = _table(
        HandlerDeclaration(route="/a", handler="h1"),
        HandlerDeclaration(route="/b", handler="h1", lazy=True),
    )

    plan = plan_imports(table)

    assert plan.eager == ("h1",)
    assert plan.lazy == ()
    assert plan.ambiguous == ("h1",)
    assert plan.binding_for("h1") == identifier("h1", ImportVariant.EAGER)


def test_plan_imports_deduplicates_in_first_seen_order() -> None:
    table = _table(
        HandlerDeclaration(route="/c", handler="c", lazy=True),
        HandlerDeclaration(route="/b", handler="b"),
        HandlerDeclaration(route="/a", handler="a", lazy=True),
        HandlerDeclaration(route="/b2", handler="b"),
        HandlerDeclaration(route="/c2", handler="c", lazy=True),
    )

    plan = plan_imports(table)

    assert plan.eager == ("b",)
    assert plan.lazy == ("c", "a")
    assert plan.ambiguous == ()


def test_binding_for_unknown_module_raises() -> None:
    plan = plan_imports(_table(HandlerDeclaration(handler="a")))

    with pytest.raises(KeyError):
        plan.binding_for("missing")


def test_render_shared_module_scenario() -> None:
    table = _table(
        HandlerDeclaration(route="/a", handler="h1", lazy=False),
        HandlerDeclaration(route="/b", handler="h1", lazy=True),
    )

    source = render_handlers_module(table)
    eager = identifier("h1", ImportVariant.EAGER)

    assert source.count("import ") == 1
    assert f'import {eager} from "h1";' in source
    assert "() => import(" not in source
    rows = parse_handler_rows(source)
    assert [row.binding for row in rows] == [eager, eager]
    assert [row.lazy for row in rows] == [False, True]


def test_render_lazy_imports_use_thunks() -> None:
    table = _table(HandlerDeclaration(route="/r", handler="renderer", lazy=True))

    source = render_handlers_module(table)
    lazy = identifier("renderer", ImportVariant.LAZY)

    assert f'const {lazy} = () => import("renderer");' in source
    assert source.startswith("const ")
    assert parse_handler_rows(source)[0].binding == lazy


def test_render_empty_table() -> None:
    assert render_handlers_module(_table()) == "export const handlers = [];"


def test_render_round_trips_row_metadata() -> None:
    table = _table(
        HandlerDeclaration(handler=STATIC_HANDLER_ID, middleware=True),
        HandlerDeclaration(route="/api/:id", handler="/srv/api/[id].ts"),
        HandlerDeclaration(
            route='/quote"d', handler="/srv/q.ts", method="post", lazy=True
        ),
        HandlerDeclaration(route="/**", handler="/srv/renderer.ts", lazy=True),
    )

    source = render_handlers_module(table)
    rows = parse_handler_rows(source)
    bindings = parse_handler_imports(source)

    assert [
        (row.route, row.lazy, row.middleware, row.method) for row in rows
    ] == [
        (decl.route, decl.lazy, decl.middleware, decl.method) for decl in table
    ]
    assert [bindings[row.binding][0] for row in rows] == [
        decl.handler for decl in table
    ]


def test_render_preserves_order_with_repeated_modules() -> None:
    table = _table(
        HandlerDeclaration(route="/1", handler="b"),
        HandlerDeclaration(route="/2", handler="a", lazy=True),
        HandlerDeclaration(route="/3", handler="b", method="get"),
    )

    rows = parse_handler_rows(render_handlers_module(table))

    assert [row.route for row in rows] == ["/1", "/2", "/3"]
    assert rows[2].method == "get"


def test_parse_handler_imports_reports_variants() -> None:
    table = _table(
        HandlerDeclaration(route="/a", handler="a"),
        HandlerDeclaration(route="/b", handler="b", lazy=True),
    )

    bindings = parse_handler_imports(render_handlers_module(table))

    assert bindings == {
        identifier("a", ImportVariant.EAGER): ("a", ImportVariant.EAGER),
        identifier("b", ImportVariant.LAZY): ("b", ImportVariant.LAZY),
    }


def test_handlers_module_reads_current_table() -> None:
    current = {"table": _table(HandlerDeclaration(route="/a", handler="a"))}
    module = HandlersModule(lambda: current["table"])

    first = module()
    current["table"] = _table(HandlerDeclaration(route="/b", handler="b"))
    second = module()

    assert '"/a"' in first
    assert '"/b"' in second
    assert first != second


def test_handlers_module_is_idempotent_for_fixed_table() -> None:
    table = _table(
        HandlerDeclaration(route="/a", handler="a"),
        HandlerDeclaration(route="/b", handler="b", lazy=True),
    )
    module = HandlersModule(lambda: table)

    assert module() == module()


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict]] = []

    def warning(self, event: str, **kw: object) -> None:
        self.events.append(("warning", event, kw))

    def info(self, event: str, **kw: object) -> None:
        self.events.append(("info", event, kw))

    def debug(self, event: str, **kw: object) -> None:
        self.events.append(("debug", event, kw))


def test_handlers_module_warns_once_about_ambiguous_imports() -> None:
    table = _table(
        HandlerDeclaration(route="/a", handler="h1"),
        HandlerDeclaration(route="/b", handler="h1", lazy=True),
    )
    logger = _RecordingLogger()
    module = HandlersModule(lambda: table, logger=logger)  # type: ignore[arg-type]

    module()
    module()

    warnings = [e for e in logger.events if e[0] == "warning"]
    assert warnings == [
        ("warning", "import-ambiguous", {"handler": "h1", "resolution": "eager"})
    ]


def test_handlers_module_reports_table_in_debug_mode() -> None:
    table = _table(HandlerDeclaration(route="/a", handler="a"))
    logger = _RecordingLogger()
    state = HandlerTableDumpState()
    module = HandlersModule(
        lambda: table,
        dump_state=state,
        debug=True,
        logger=logger,  # type: ignore[arg-type]
    )

    module()
    module()

    infos = [e for e in logger.events if e[1] == "handler-table"]
    assert len(infos) == 1
    assert state.last_dump


def test_handlers_module_silent_outside_debug(caplog: pytest.LogCaptureFixture) -> None:
    table = _table(HandlerDeclaration(route="/a", handler="a"))
    state = HandlerTableDumpState()

    with caplog.at_level(logging.DEBUG):
        HandlersModule(lambda: table, dump_state=state)()

    assert state.last_dump == ""
