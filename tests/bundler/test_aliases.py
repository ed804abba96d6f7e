"""Tests for alias expansion of configured module ids."""

from __future__ import annotations

from pathlib import Path

import pytest

from nitrate.bundler.aliases import ProjectModules
from nitrate.bundler.declarations import HandlerDeclaration
from nitrate.bundler.resolution import FallbackResolver
from nitrate.core.config import TaskSettings
from nitrate.core.paths import normalize_id

_ALIASES = {
    "#build": "/app/.nitrate",
    "~": "/app/server",
    "@/": "/app/server/",
    "~~": "/app",
    "@@/": "/app/",
}


@pytest.fixture
def modules() -> ProjectModules:
    return ProjectModules(_ALIASES, "/app/server")


@pytest.mark.parametrize(
    ("module_id", "expanded"),
    [
        ("~/api/users.ts", "/app/server/api/users.ts"),
        ("@/api/users.ts", "/app/server/api/users.ts"),
        ("~~/tasks/migrate.ts", "/app/tasks/migrate.ts"),
        ("@@/renderer.ts", "/app/renderer.ts"),
        ("~~", "/app"),
        ("./api/index.ts", "/app/server/api/index.ts"),
        ("../renderer.ts", "/app/renderer.ts"),
        ("api/index.ts", "/app/server/api/index.ts"),
        ("/app/server/../renderer.ts", "/app/renderer.ts"),
    ],
)
def test_expand_anchors_project_ids(
    modules: ProjectModules, module_id: str, expanded: str
) -> None:
    assert modules.expand(module_id) == expanded


@pytest.mark.parametrize(
    "module_id",
    ["#build/types.mjs", "#internal/nitrate/static", "\0virtual", "h3", "~foo", ""],
)
def test_expand_keeps_logical_ids(modules: ProjectModules, module_id: str) -> None:
    assert modules.expand(module_id) == module_id


def test_expand_finds_extensionless_files(tmp_path: Path) -> None:
    routes = tmp_path / "routes"
    routes.mkdir()
    (routes / "index.ts").write_text("export default 1;\n")
    (tmp_path / "health.mjs").write_text("export default 1;\n")
    modules = ProjectModules({}, str(tmp_path))
    base = normalize_id(tmp_path)

    assert modules.expand("routes") == f"{base}/routes"
    assert modules.expand("health") == f"{base}/health"
    assert modules.expand("missing") == "missing"


def test_expand_resolves_installed_packages(tmp_path: Path) -> None:
    entry = tmp_path / "node_modules" / "my-handlers" / "index.mjs"
    entry.parent.mkdir(parents=True)
    entry.write_text("export default 1;\n")
    modules = ProjectModules(
        {},
        str(tmp_path / "server"),
        resolver=FallbackResolver([tmp_path / "node_modules"]),
    )

    assert modules.expand("my-handlers") == normalize_id(entry)
    assert modules.expand("other-pkg") == "other-pkg"


def test_user_aliases_apply_before_built_ins() -> None:
    modules = ProjectModules(
        {**_ALIASES, "~/legacy": "/srv/legacy"}, "/app/server"
    )

    assert modules.expand("~/legacy/users.ts") == "/srv/legacy/users.ts"
    assert modules.expand("~/legacyish.ts") == "/app/server/legacyish.ts"


def test_handlers_and_tasks_are_copied(modules: ProjectModules) -> None:
    absolute = HandlerDeclaration(route="/a", handler="/srv/a.ts")
    aliased = HandlerDeclaration(route="/b", handler="~/b.ts", lazy=True)

    handlers = modules.handlers([absolute, aliased])
    tasks = modules.tasks({"db:migrate": TaskSettings(handler="~/tasks/m.ts")})

    assert handlers[0] is absolute
    assert handlers[1].handler == "/app/server/b.ts"
    assert handlers[1].lazy is True
    assert aliased.handler == "~/b.ts"
    assert tasks["db:migrate"].handler == "/app/server/tasks/m.ts"
