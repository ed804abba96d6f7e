"""Shared pytest fixtures for build policy tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from nitrate.core.config import BuildConfig, load_config, load_packaged_defaults
from nitrate.core.paths import BuildPaths


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Create a minimal project tree with a runtime and an installed package."""

    root = tmp_path / "app"
    runtime = root / "node_modules" / "nitrate" / "runtime"
    (runtime / "entries").mkdir(parents=True)
    (runtime / "entries" / "node-server.mjs").write_text("export {};\n")
    (root / "server" / "api").mkdir(parents=True)
    (root / "server" / "api" / "index.ts").write_text("export default 1;\n")
    return root


@pytest.fixture
def make_config(project_root: Path) -> Callable[..., BuildConfig]:
    """Return a factory building configs rooted at ``project_root``."""

    def _make(**overrides: Any) -> BuildConfig:
        user_config = {"root_dir": str(project_root), **overrides}
        return load_config(
            defaults=load_packaged_defaults(),
            user_config=user_config,
        )

    return _make


@pytest.fixture
def build_paths() -> BuildPaths:
    """Return a fixed, filesystem-independent build layout."""

    return BuildPaths(
        root_dir="/app",
        src_dir="/app/server",
        build_dir="/app/.nitrate",
        runtime_dir="/app/node_modules/nitrate/runtime",
        entry="/app/node_modules/nitrate/runtime/entries/node-server.mjs",
        output_server_dir="/app/.output/server",
        node_modules_dirs=("/app/node_modules",),
    )
