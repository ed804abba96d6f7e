"""Filesystem fallback resolution for imports the bundler cannot find."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

__all__ = [
    "DEFAULT_EXTENSIONS",
    "DEFAULT_SUFFIXES",
    "FallbackResolver",
    "ResolutionOptions",
    "ResolvedModule",
    "default_conditions",
    "is_bare_specifier",
    "package_name",
]


DEFAULT_SUFFIXES: tuple[str, ...] = ("", "/index")
DEFAULT_EXTENSIONS: tuple[str, ...] = (
    ".mjs",
    ".cjs",
    ".js",
    ".mts",
    ".cts",
    ".ts",
    ".json",
)


@dataclass(frozen=True, slots=True)
class ResolvedModule:
    """Outcome of a module resolution."""

    id: str
    external: bool = False


def default_conditions(*, dev: bool) -> tuple[str, ...]:
    """Return the export conditions tried when reading ``package.json``."""

    return (
        "default",
        "development" if dev else "production",
        "node",
        "import",
        "require",
    )


@dataclass(frozen=True, slots=True)
class ResolutionOptions:
    """Candidate expansion used by :class:`FallbackResolver`."""

    suffixes: tuple[str, ...] = DEFAULT_SUFFIXES
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    conditions: tuple[str, ...] = field(
        default_factory=lambda: default_conditions(dev=False)
    )


def is_bare_specifier(module_id: str) -> bool:
    """Return ``True`` for package imports such as ``h3`` or ``@scope/pkg``.

    Example:
        >>> is_bare_specifier("left-pad"), is_bare_specifier("./util")
        (True, False)
    """

    if not module_id or module_id.startswith(("\0", ".", "/", "#", "~")):
        return False
    if ":" in module_id.split("/", 1)[0]:
        # ``node:fs``, ``virtual:x`` and drive letters are not packages.
        return False
    return not os.path.isabs(module_id)


def package_name(module_id: str) -> str:
    """Return the package part of a bare specifier.

    Example:
        >>> package_name("@scope/pkg/sub/path")
        '@scope/pkg'
        >>> package_name("h3/utils")
        'h3'
    """

    parts = module_id.split("/")
    if module_id.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


class FallbackResolver:
    """Widening search over importer and module directories.

    The resolver never mutates the filesystem. It tries, in order, the
    importer's directory (only when the importer is an absolute path) and
    then every configured search directory. Each base path is expanded with
    the configured suffixes and extensions. For bare package imports the
    ``package.json`` ``exports`` and ``main`` entries are consulted first.
    """

    def __init__(
        self,
        search_dirs: Iterable[str | Path],
        options: ResolutionOptions | None = None,
    ) -> None:
        self._search_dirs = tuple(Path(directory) for directory in search_dirs)
        self._options = options or ResolutionOptions()

    @property
    def search_dirs(self) -> tuple[Path, ...]:
        return self._search_dirs

    def resolve(self, module_id: str, importer: str | None = None) -> Path | None:
        """Return the first file matching ``module_id`` or ``None``."""

        bare = is_bare_specifier(module_id)
        for base in self._iter_bases(module_id, importer):
            if bare:
                found = self._probe_package(base, module_id)
                if found is not None:
                    return found
            found = self._probe(base)
            if found is not None:
                return found
        return None

    def _iter_bases(self, module_id: str, importer: str | None) -> Iterator[Path]:
        importer_dir = (
            Path(importer).parent
            if importer and os.path.isabs(importer)
            else None
        )
        if os.path.isabs(module_id):
            yield Path(module_id)
            return
        if module_id.startswith("."):
            if importer_dir is not None:
                yield importer_dir / module_id
            return
        if importer_dir is not None:
            for directory in (importer_dir, *importer_dir.parents):
                yield directory / "node_modules" / module_id
        for directory in self._search_dirs:
            yield directory / module_id

    def _probe(self, base: Path) -> Path | None:
        for suffix in self._options.suffixes:
            stem = Path(f"{base}{suffix}")
            if stem.is_file():
                return stem
            for extension in self._options.extensions:
                candidate = Path(f"{stem}{extension}")
                if candidate.is_file():
                    return candidate
        return None

    def _probe_package(self, base: Path, module_id: str) -> Path | None:
        name = package_name(module_id)
        subpath = module_id[len(name):]
        # ``base`` ends with the full specifier; walk back to the package root.
        package_root = Path(str(base)[: len(str(base)) - len(subpath)])
        manifest = package_root / "package.json"
        if not manifest.is_file():
            return None
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        for entry in self._package_entries(data, f".{subpath}"):
            found = self._probe(package_root / entry)
            if found is not None:
                return found
        return None

    def _package_entries(self, data: Any, subpath: str) -> list[str]:
        entries: list[str] = []
        exports = data.get("exports") if isinstance(data, dict) else None
        if exports is not None:
            target = exports
            if isinstance(exports, dict) and any(
                key.startswith(".") for key in exports
            ):
                target = exports.get(subpath)
            elif subpath != ".":
                target = None
            entry = self._pick_condition(target, self._options.conditions)
            if entry:
                entries.append(entry)
        if subpath == "." and isinstance(data, dict):
            main = data.get("main")
            if isinstance(main, str) and main:
                entries.append(main)
            entries.append("index")
        return entries

    def _pick_condition(
        self,
        target: Any,
        conditions: Sequence[str],
    ) -> str | None:
        if isinstance(target, str):
            return target
        if isinstance(target, list):
            for item in target:
                picked = self._pick_condition(item, conditions)
                if picked:
                    return picked
            return None
        if isinstance(target, dict):
            for condition in conditions:
                if condition in target:
                    picked = self._pick_condition(target[condition], conditions)
                    if picked:
                        return picked
        return None
