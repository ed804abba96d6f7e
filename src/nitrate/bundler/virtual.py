"""In-memory virtual modules served to the bundler."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping

from nitrate.core.logging import Logger, get_logger

from .errors import DuplicateVirtualModuleError
from .hashing import hash_text

__all__ = [
    "VIRTUAL_PREFIX",
    "ModuleSource",
    "VirtualModuleEntry",
    "VirtualModuleRegistry",
    "VirtualModuleSnapshot",
]


# Resolved ids of virtual modules start with a NUL byte so that other bundler
# plugins leave them alone.
VIRTUAL_PREFIX = "\0"

ModuleSource = str | Callable[[], str]


@dataclass(frozen=True, slots=True)
class VirtualModuleEntry:
    """Generator producing the source text of a virtual module."""

    name: str
    generator: Callable[[], str]


@dataclass(frozen=True, slots=True)
class VirtualModuleSnapshot:
    """Most recent text generated for a virtual module."""

    name: str
    text: str
    digest: str


def _static(text: str) -> Callable[[], str]:
    def _generator() -> str:
        return text

    return _generator


class VirtualModuleRegistry:
    """Registry mapping virtual module ids to their generators.

    One registry is created per build session. Generators are invoked on
    every :meth:`load` so they always observe the current build state; the
    registry only keeps the last generated text for diagnostics.
    """

    def __init__(self, *, logger: Logger | None = None) -> None:
        self._entries: dict[str, VirtualModuleEntry] = {}
        self._snapshots: dict[str, VirtualModuleSnapshot] = {}
        self._logger = logger or get_logger(__name__)

    def register(self, name: str, source: ModuleSource) -> VirtualModuleEntry:
        """Register ``source`` under ``name``.

        Raises:
            ValueError: If ``name`` is blank.
            DuplicateVirtualModuleError: If ``name`` is already registered.
        """

        name = _strip_prefix(name).strip()
        if not name:
            raise ValueError("Virtual module names cannot be blank.")
        if name in self._entries:
            raise DuplicateVirtualModuleError(
                f"Virtual module {name!r} is already registered."
            )
        generator = _static(source) if isinstance(source, str) else source
        entry = VirtualModuleEntry(name=name, generator=generator)
        self._entries[name] = entry
        return entry

    def register_many(self, sources: Mapping[str, ModuleSource]) -> None:
        for name, source in sources.items():
            self.register(name, source)

    def __contains__(self, module_id: object) -> bool:
        if not isinstance(module_id, str):
            return False
        return _strip_prefix(module_id) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def resolve_id(self, module_id: str) -> str | None:
        """Return the resolved id for a known virtual module, else ``None``."""

        if module_id not in self:
            return None
        return VIRTUAL_PREFIX + _strip_prefix(module_id)

    def load(self, module_id: str) -> str | None:
        """Generate the source text for ``module_id``.

        Returns ``None`` for ids that are not virtual modules so the bundler
        can fall through to the next loader.
        """

        name = _strip_prefix(module_id)
        entry = self._entries.get(name)
        if entry is None:
            return None
        text = entry.generator()
        digest = hash_text(text)
        previous = self._snapshots.get(name)
        if previous is not None and previous.digest != digest:
            self._logger.debug(
                "virtual-module-changed",
                module=name,
                previous=previous.digest[:12],
                current=digest[:12],
            )
        self._snapshots[name] = VirtualModuleSnapshot(
            name=name, text=text, digest=digest
        )
        return text

    def snapshot(self, module_id: str) -> VirtualModuleSnapshot | None:
        return self._snapshots.get(_strip_prefix(module_id))

    def diff(self, module_id: str, text: str) -> list[str]:
        """Return a unified diff between the last generated text and ``text``.

        The diff is empty when nothing was generated yet or nothing changed.
        """

        name = _strip_prefix(module_id)
        previous = self._snapshots.get(name)
        if previous is None:
            return []
        return list(
            difflib.unified_diff(
                previous.text.splitlines(),
                text.splitlines(),
                fromfile=f"{name} (previous)",
                tofile=f"{name} (current)",
                lineterm="",
            )
        )


def _strip_prefix(module_id: str) -> str:
    if module_id.startswith(VIRTUAL_PREFIX):
        return module_id[len(VIRTUAL_PREFIX):]
    return module_id
