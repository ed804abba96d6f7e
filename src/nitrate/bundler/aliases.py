"""Import aliases and project module ids as the bundler sees them."""

from __future__ import annotations

import posixpath
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

from nitrate.core.paths import BuildPaths, is_absolute_id, normalize_id

from .declarations import HandlerDeclaration
from .resolution import (
    DEFAULT_EXTENSIONS,
    DEFAULT_SUFFIXES,
    FallbackResolver,
    ResolutionOptions,
    default_conditions,
    is_bare_specifier,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from nitrate.core.config import BuildConfig, TaskSettings

__all__ = [
    "ProjectModules",
    "resolve_aliases",
]


def resolve_aliases(
    config: "BuildConfig",
    paths: BuildPaths,
) -> dict[str, str]:
    """Return import aliases, longest key first.

    Alias targets that start with another alias are expanded once so user
    aliases may build on the built-in ones.
    """

    aliases: dict[str, str] = {
        "#build": paths.build_dir,
        "#internal/nitrate": paths.runtime_dir,
        "nitrate/runtime": paths.runtime_dir,
        "~": paths.src_dir,
        "@/": paths.src_dir + "/",
        "~~": paths.root_dir,
        "@@/": paths.root_dir + "/",
        **config.alias,
    }
    ordered = sorted(aliases, key=lambda key: (-len(key), key))
    resolved: dict[str, str] = {}
    for key in ordered:
        target = aliases[key]
        for other in ordered:
            if other != key and target.startswith(other):
                target = aliases[other] + target[len(other):]
                break
        resolved[key] = target
    return resolved


def _alias_applies(key: str, module_id: str) -> bool:
    if module_id == key:
        return True
    if not module_id.startswith(key):
        return False
    return key.endswith("/") or module_id[len(key)] == "/"


class ProjectModules:
    """Expand configured module ids into the absolute ids the bundler uses.

    Handler, task and renderer modules are written in ``nitrate.toml`` the
    way users import them (``~/api/users.ts``, ``server/api/index.ts``). The
    chunk and externals classifiers compare against resolved paths, so every
    configured id goes through :meth:`expand` first:

    * NUL-prefixed and ``#`` ids are logical and stay as written.
    * Path aliases (``~``, ``@/``, ``~~``, ``@@/`` and user aliases) are
      expanded, longest first.
    * Absolute ids are normalized.
    * ``./`` and ``../`` ids, and ids naming an existing file below
      ``base_dir``, are anchored to ``base_dir``.
    * Bare specifiers found in the module directories resolve to that file.
    * Remaining ids with a module extension are anchored to ``base_dir``;
      anything else is a package specifier and stays as written.
    """

    def __init__(
        self,
        aliases: Mapping[str, str],
        base_dir: str,
        *,
        resolver: FallbackResolver | None = None,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    ) -> None:
        self._aliases = tuple(
            (key, target)
            for key, target in sorted(
                aliases.items(), key=lambda item: (-len(item[0]), item[0])
            )
            if not key.startswith("#")
        )
        self._base_dir = normalize_id(base_dir)
        self._resolver = resolver
        self._extensions = tuple(extensions)

    @classmethod
    def from_config(
        cls, config: "BuildConfig", paths: BuildPaths
    ) -> "ProjectModules":
        resolver = FallbackResolver(
            paths.node_modules_dirs,
            ResolutionOptions(conditions=default_conditions(dev=config.dev)),
        )
        return cls(
            resolve_aliases(config, paths), paths.src_dir, resolver=resolver
        )

    def expand(self, module_id: str) -> str:
        if not module_id or module_id.startswith(("\0", "#")):
            return module_id
        for key, target in self._aliases:
            if _alias_applies(key, module_id):
                module_id = target + module_id[len(key):]
                break
        if is_absolute_id(module_id):
            return normalize_id(module_id)

        anchored = normalize_id(posixpath.join(self._base_dir, module_id))
        if module_id.startswith(("./", "../")) or self._exists(anchored):
            return anchored
        if is_bare_specifier(module_id) and self._resolver is not None:
            found = self._resolver.resolve(module_id)
            if found is not None:
                return normalize_id(found)
        if module_id.endswith(self._extensions):
            return anchored
        return module_id

    def _exists(self, anchored: str) -> bool:
        for suffix in DEFAULT_SUFFIXES:
            stem = f"{anchored}{suffix}"
            if Path(stem).is_file():
                return True
            if any(Path(f"{stem}{ext}").is_file() for ext in self._extensions):
                return True
        return False

    def handler(self, declaration: HandlerDeclaration) -> HandlerDeclaration:
        handler = self.expand(declaration.handler)
        if handler == declaration.handler:
            return declaration
        return declaration.model_copy(update={"handler": handler})

    def handlers(
        self, declarations: Iterable[HandlerDeclaration]
    ) -> tuple[HandlerDeclaration, ...]:
        return tuple(self.handler(declaration) for declaration in declarations)

    def tasks(
        self, tasks: Mapping[str, "TaskSettings"]
    ) -> dict[str, "TaskSettings"]:
        return {
            name: task.model_copy(update={"handler": self.expand(task.handler)})
            for name, task in tasks.items()
        }
