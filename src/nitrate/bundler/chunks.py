"""Output chunk grouping for bundled modules."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol, Sequence

from nitrate.core.paths import BuildPaths, normalize_id

from .declarations import HandlerDeclaration

__all__ = [
    "CHUNK_FILE_TEMPLATE",
    "ChunkClassifier",
    "ChunkRule",
    "FallbackRule",
    "PrefixRule",
    "RouteOwnershipRule",
    "TaskOwnershipRule",
    "TaskHandler",
    "build_chunk_classifier",
    "chunk_name_for_modules",
    "manual_chunk_group",
    "module_side_effects",
    "route_group",
]


CHUNK_FILE_TEMPLATE = "chunks/{group}/[name].mjs"
RUNTIME_GROUP = "nitro"

_PARAM_SEGMENT = re.compile(r":([^/]+)")
_LAST_SEGMENT = re.compile(r"/[^/]+$")


class ChunkRule(Protocol):
    """A classification step returning a group label or ``None``."""

    def match(self, path: str) -> str | None: ...


class TaskHandler(Protocol):
    handler: str


@dataclass(frozen=True, slots=True)
class PrefixRule:
    """Assign ``group`` to every path starting with ``prefix``."""

    prefix: str
    group: str

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError(f"Prefix rule for {self.group!r} needs a prefix.")

    def match(self, path: str) -> str | None:
        return self.group if path.startswith(self.prefix) else None


def route_group(route: str) -> str:
    """Return the chunk group for modules owned by ``route``.

    Parameter segments become ``_name`` and the last segment is dropped so
    sibling routes share a directory.

    Example:
        >>> route_group("/api/users/:id")
        'routes/api/users'
        >>> route_group("/api/:org/members")
        'routes/api/_org'
        >>> route_group("/health")
        'routes'
    """

    path = route if route.startswith("/") else f"/{route}"
    path = _PARAM_SEGMENT.sub(r"_\1", path)
    path = _LAST_SEGMENT.sub("", path).rstrip("/")
    return f"routes{path}" if path else "routes"


@dataclass(frozen=True, slots=True)
class RouteOwnershipRule:
    """Group modules by the route of the handler that owns them.

    Configured handlers are consulted before scanned ones. A handler owns
    every module id its own module id is a prefix of.
    """

    configured: tuple[HandlerDeclaration, ...] = ()
    scanned: tuple[HandlerDeclaration, ...] = ()

    def owner(self, path: str) -> HandlerDeclaration | None:
        for source in (self.configured, self.scanned):
            for declaration in source:
                if path.startswith(normalize_id(declaration.handler)):
                    return declaration
        return None

    def match(self, path: str) -> str | None:
        owner = self.owner(path)
        if owner is None or not owner.route:
            return None
        return route_group(owner.route)


@dataclass(frozen=True, slots=True)
class TaskOwnershipRule:
    """Group task handler modules together."""

    handlers: frozenset[str] = frozenset()
    group: str = "tasks"

    def match(self, path: str) -> str | None:
        return self.group if path in self.handlers else None


@dataclass(frozen=True, slots=True)
class FallbackRule:
    """Terminal rule catching every remaining module."""

    group: str = "_"

    def match(self, path: str) -> str | None:
        return self.group


class ChunkClassifier:
    """Ordered rule table mapping module paths to chunk groups.

    Rules are evaluated in order and the first label wins. The table must end
    with a :class:`FallbackRule` so every path gets a group.
    """

    def __init__(self, rules: Sequence[ChunkRule]) -> None:
        rules = tuple(rules)
        if not rules or not isinstance(rules[-1], FallbackRule):
            raise ValueError("Chunk rules must end with a FallbackRule.")
        self._rules = rules

    @property
    def rules(self) -> tuple[ChunkRule, ...]:
        return self._rules

    def classify(self, path: str) -> str:
        normalized = normalize_id(path)
        for rule in self._rules:
            group = rule.match(normalized)
            if group is not None:
                return group
        raise AssertionError("unreachable: fallback rule always matches")

    def chunk_file_name(self, path: str) -> str:
        """Return the output file name pattern for ``path``.

        Example:
            >>> ChunkClassifier([FallbackRule()]).chunk_file_name("x.mjs")
            'chunks/_/[name].mjs'
        """

        return CHUNK_FILE_TEMPLATE.format(group=self.classify(path))


def build_chunk_classifier(
    paths: BuildPaths,
    *,
    configured: Iterable[HandlerDeclaration] = (),
    scanned: Iterable[HandlerDeclaration] = (),
    tasks: Mapping[str, TaskHandler] | None = None,
) -> ChunkClassifier:
    """Assemble the default chunk rule table for a build."""

    task_handlers = frozenset(
        normalize_id(task.handler) for task in (tasks or {}).values()
    )
    return ChunkClassifier(
        [
            PrefixRule(paths.build_dir, "build"),
            PrefixRule(paths.server_build_dir, "app"),
            PrefixRule(paths.runtime_dir, RUNTIME_GROUP),
            PrefixRule(paths.presets_dir, RUNTIME_GROUP),
            PrefixRule("\0raw:", "raw"),
            PrefixRule("\0nitro-wasm:", "wasm"),
            PrefixRule("\0", "virtual"),
            RouteOwnershipRule(
                configured=tuple(configured),
                scanned=tuple(scanned),
            ),
            TaskOwnershipRule(handlers=task_handlers),
            FallbackRule(),
        ]
    )


def chunk_name_for_modules(
    module_ids: Sequence[str],
    classifier: ChunkClassifier,
) -> str:
    """Name an emitted chunk after the last module it contains."""

    last = module_ids[-1] if module_ids else ""
    return classifier.chunk_file_name(last)


def manual_chunk_group(path: str, paths: BuildPaths) -> str | None:
    """Force runtime and preset modules into a shared chunk."""

    normalized = normalize_id(path)
    if normalized.startswith(paths.runtime_dir) or normalized.startswith(
        paths.presets_dir
    ):
        return RUNTIME_GROUP
    return None


def module_side_effects(
    path: str,
    paths: BuildPaths,
    extra_prefixes: Iterable[str] = (),
) -> bool:
    """Return whether tree-shaking must keep ``path`` for its side effects.

    Matching also tries the id with everything up to the last
    ``node_modules/`` segment removed.
    """

    normalized = normalize_id(path)
    package_relative = normalized.split("node_modules/")[-1]
    if not package_relative:
        return False
    candidates = (normalized, package_relative)
    if any(c.startswith(paths.runtime_dir) for c in candidates):
        return True
    return any(
        candidate.startswith(prefix)
        for prefix in extra_prefixes
        for candidate in candidates
    )
