"""Tests for :mod:`nitrate.core.paths`."""

from __future__ import annotations

from pathlib import Path, PurePosixPath, PureWindowsPath

import pytest

from nitrate.core.paths import BuildPaths, normalize_id, resolve_build_paths


@pytest.mark.parametrize(
    ("module_id", "expected"),
    [
        ("/app/server/../routes/index.ts", "/app/routes/index.ts"),
        ("/app//server/./api.ts", "/app/server/api.ts"),
        ("/app/node_modules/", "/app/node_modules/"),
        ("C:\\app\\server\\api.ts", "C:/app/server/api.ts"),
        ("./utils/db", "./utils/db"),
        ("../shared", "../shared"),
        ("h3", "h3"),
        ("@scope/pkg\\sub", "@scope/pkg/sub"),
        ("\0#internal/nitrate/virtual/plugins", "\0#internal/nitrate/virtual/plugins"),
        ("", ""),
    ],
)
def test_normalize_id(module_id: str, expected: str) -> None:
    assert normalize_id(module_id) == expected


def test_normalize_id_accepts_pure_paths() -> None:
    assert normalize_id(PurePosixPath("/app/a/../b.ts")) == "/app/b.ts"
    assert normalize_id(PureWindowsPath("C:/app/b.ts")) == "C:/app/b.ts"


def test_resolve_build_paths_defaults(make_config, project_root: Path) -> None:
    paths = resolve_build_paths(make_config())
    root = normalize_id(project_root)

    assert paths.root_dir == root
    assert paths.src_dir == root
    assert paths.build_dir == f"{root}/.nitrate"
    assert paths.server_build_dir == f"{root}/.nitrate/dist/server"
    assert paths.runtime_dir == f"{root}/node_modules/nitrate/runtime"
    assert paths.presets_dir == f"{root}/node_modules/nitrate/presets"
    assert paths.entry == f"{root}/node_modules/nitrate/runtime/entries/node-server.mjs"
    assert paths.entry_dir == f"{root}/node_modules/nitrate/runtime/entries"
    assert paths.output_server_dir == f"{root}/.output/server"
    assert paths.node_modules_dirs == (f"{root}/node_modules",)


def test_resolve_build_paths_honours_overrides(
    make_config, project_root: Path, tmp_path: Path
) -> None:
    shared = tmp_path / "shared_modules"
    paths = resolve_build_paths(
        make_config(
            src_dir="server",
            build_dir="/var/build",
            node_modules_dirs=["node_modules", str(shared)],
            output={"server_dir": "dist/server"},
        )
    )
    root = normalize_id(project_root)

    assert paths.src_dir == f"{root}/server"
    assert paths.build_dir == "/var/build"
    assert paths.node_modules_dirs == (
        f"{root}/node_modules",
        normalize_id(shared),
    )
    assert paths.output_server_dir == f"{root}/dist/server"


def test_iter_all_lists_every_directory(build_paths: BuildPaths) -> None:
    directories = list(build_paths.iter_all())

    assert directories[0] == "/app"
    assert "/app/.nitrate/dist/server" in directories
    assert "/app/node_modules/nitrate/presets" in directories
    assert directories[-1] == "/app/node_modules"
