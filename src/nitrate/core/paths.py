"""Build directory layout and module id helpers for :mod:`nitrate`."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from nitrate.core.config import BuildConfig

__all__ = [
    "BuildPaths",
    "is_absolute_id",
    "normalize_id",
    "resolve_build_paths",
]

_DRIVE = re.compile(r"^[A-Za-z]:/")


def normalize_id(module_id: str | PurePath) -> str:
    """Return ``module_id`` with forward slashes and collapsed segments.

    Only absolute paths are collapsed; relative ids and bare package
    specifiers only get their separators fixed. NUL-prefixed virtual ids are
    returned untouched.

    Example:
        >>> normalize_id("C:\\\\app\\\\routes\\\\..\\\\api\\\\index.ts")
        'C:/app/api/index.ts'
        >>> normalize_id("\\0raw:assets/logo.svg")
        '\\x00raw:assets/logo.svg'
    """

    if isinstance(module_id, PurePath):
        module_id = module_id.as_posix()
    if not module_id or module_id.startswith("\0"):
        return module_id
    text = module_id.replace("\\", "/")
    if not (text.startswith("/") or _DRIVE.match(text)):
        return text
    normalized = posixpath.normpath(text)
    if text.endswith("/") and not normalized.endswith("/"):
        normalized += "/"
    return normalized


def is_absolute_id(module_id: str) -> bool:
    """Return ``True`` for POSIX or drive-letter absolute module ids.

    Example:
        >>> is_absolute_id("/app/a.ts"), is_absolute_id("~/a.ts")
        (True, False)
    """

    text = normalize_id(module_id)
    return text.startswith("/") or bool(_DRIVE.match(text))


@dataclass(frozen=True, slots=True)
class BuildPaths:
    """Normalized directories the classifiers match module ids against.

    Example:
        >>> paths = BuildPaths(
        ...     root_dir="/app",
        ...     src_dir="/app/server",
        ...     build_dir="/app/.nitrate",
        ...     runtime_dir="/app/node_modules/nitrate/runtime",
        ...     entry="/app/node_modules/nitrate/runtime/entries/node.mjs",
        ...     output_server_dir="/app/.output/server",
        ... )
        >>> paths.server_build_dir
        '/app/.nitrate/dist/server'
        >>> paths.presets_dir
        '/app/node_modules/nitrate/presets'
    """

    root_dir: str
    src_dir: str
    build_dir: str
    runtime_dir: str
    entry: str
    output_server_dir: str
    node_modules_dirs: tuple[str, ...] = ()

    @property
    def server_build_dir(self) -> str:
        return posixpath.join(self.build_dir, "dist", "server")

    @property
    def presets_dir(self) -> str:
        return posixpath.join(posixpath.dirname(self.runtime_dir), "presets")

    @property
    def entry_dir(self) -> str:
        return posixpath.dirname(self.entry)

    def iter_all(self) -> Iterable[str]:
        """Yield every directory managed by the build."""

        yield from (
            self.root_dir,
            self.src_dir,
            self.build_dir,
            self.server_build_dir,
            self.runtime_dir,
            self.presets_dir,
            self.output_server_dir,
            *self.node_modules_dirs,
        )


def resolve_build_paths(config: "BuildConfig") -> BuildPaths:
    """Derive :class:`BuildPaths` from an already validated configuration."""

    def _norm(path: Path | None) -> str:
        return normalize_id(path) if path is not None else ""

    return BuildPaths(
        root_dir=_norm(config.root_dir),
        src_dir=_norm(config.src_dir),
        build_dir=_norm(config.build_dir),
        runtime_dir=_norm(config.runtime_dir),
        entry=_norm(config.entry),
        output_server_dir=_norm(config.output.server_dir),
        node_modules_dirs=tuple(_norm(path) for path in config.node_modules_dirs),
    )
