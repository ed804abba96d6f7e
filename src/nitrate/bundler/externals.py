"""Inline-or-external decisions for every import edge of a bundle."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, Iterable, Protocol

from nitrate.core.logging import Logger, get_logger
from nitrate.core.paths import BuildPaths, normalize_id

from .aliases import ProjectModules
from .declarations import HandlerDeclaration
from .errors import UnresolvedModuleError
from .resolution import (
    FallbackResolver,
    ResolutionOptions,
    ResolvedModule,
    default_conditions,
    is_bare_specifier,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from nitrate.core.config import BuildConfig

__all__ = [
    "NODE_BUILTINS",
    "ExternalDecision",
    "ExternalsPolicy",
    "InlineRule",
    "LegacyExternalsPolicy",
    "ModuleDisposition",
    "PermissiveExternalsPolicy",
    "PrimaryResolver",
    "StrictExternalsPolicy",
    "build_externals_policy",
    "default_inline_rules",
    "is_builtin",
]


NODE_BUILTINS: frozenset[str] = frozenset(
    {
        "assert", "assert/strict", "async_hooks", "buffer", "child_process",
        "cluster", "console", "constants", "crypto", "dgram",
        "diagnostics_channel", "dns", "dns/promises", "domain", "events",
        "fs", "fs/promises", "http", "http2", "https", "inspector", "module",
        "net", "os", "path", "path/posix", "path/win32", "perf_hooks",
        "process", "punycode", "querystring", "readline",
        "readline/promises", "repl", "stream", "stream/consumers",
        "stream/promises", "stream/web", "string_decoder", "sys", "timers",
        "timers/promises", "tls", "trace_events", "tty", "url", "util",
        "util/types", "v8", "vm", "wasi", "worker_threads", "zlib",
    }
)

_INTERNAL_PREFIXES: tuple[str, ...] = (
    "#",
    "~",
    "@/",
    "~~",
    "@@/",
    "virtual:",
    "nitro/runtime",
    "nitrate/runtime",
)


class ExternalDecision(StrEnum):
    """Disposition of an imported module."""

    INLINE = "inline"
    EXTERNAL = "external"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True, slots=True)
class ModuleDisposition:
    """Decision for one import edge, with the path it resolved to."""

    module_id: str
    importer: str | None
    decision: ExternalDecision
    resolved: str | None = None


class PrimaryResolver(Protocol):
    """The bundler's own resolver."""

    def __call__(
        self, module_id: str, importer: str | None
    ) -> ResolvedModule | None: ...


class ExternalsPolicy(Protocol):
    def resolve(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ModuleDisposition: ...

    def classify(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ExternalDecision: ...


InlineRule = str | Callable[[str], bool]


def is_builtin(module_id: str, builtins: Iterable[str] = NODE_BUILTINS) -> bool:
    """Return ``True`` for runtime builtins such as ``fs`` or ``node:fs``.

    Example:
        >>> is_builtin("node:fs"), is_builtin("fs/promises"), is_builtin("h3")
        (True, True, False)
    """

    return module_id.startswith("node:") or module_id in builtins


def _matches(rule: InlineRule, module_id: str) -> bool:
    if callable(rule):
        return bool(rule(module_id))
    return module_id.startswith(rule)


def _no_resolver(module_id: str, importer: str | None) -> ResolvedModule | None:
    return None


class _PolicyBase:
    def __init__(
        self,
        *,
        builtins: Iterable[str] = NODE_BUILTINS,
        node: bool = True,
    ) -> None:
        self._builtins = frozenset(builtins)
        self._node = node

    def _builtin(self, module_id: str) -> bool:
        return self._node and is_builtin(module_id, self._builtins)

    def classify(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ExternalDecision:
        return self.resolve(module_id, importer, resolver).decision

    def resolve(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ModuleDisposition:  # pragma: no cover - abstract
        raise NotImplementedError


class StrictExternalsPolicy(_PolicyBase):
    """Every non-builtin import must be bundled.

    Imports the primary resolver misses are retried through the
    :class:`FallbackResolver`. When neither finds a module, or the only
    resolution is external and not a listed binary asset, the build fails
    with :class:`UnresolvedModuleError`.
    """

    def __init__(
        self,
        *,
        fallback: FallbackResolver,
        binary_asset_extensions: Iterable[str] = (".wasm",),
        builtins: Iterable[str] = NODE_BUILTINS,
        node: bool = True,
        logger: Logger | None = None,
    ) -> None:
        super().__init__(builtins=builtins, node=node)
        self._fallback = fallback
        self._binary_assets = tuple(binary_asset_extensions)
        self._logger = logger or get_logger(__name__, mode="strict")

    def resolve(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ModuleDisposition:
        if self._builtin(module_id):
            return ModuleDisposition(
                module_id, importer, ExternalDecision.EXTERNAL, module_id
            )

        resolved = (resolver or _no_resolver)(module_id, importer)
        if resolved is None:
            found = self._fallback.resolve(module_id, importer)
            if found is not None:
                return ModuleDisposition(
                    module_id,
                    importer,
                    ExternalDecision.INLINE,
                    normalize_id(found),
                )
        elif not resolved.external:
            return ModuleDisposition(
                module_id, importer, ExternalDecision.INLINE, resolved.id
            )
        elif module_id.endswith(self._binary_assets):
            return ModuleDisposition(
                module_id, importer, ExternalDecision.EXTERNAL, resolved.id
            )

        self._logger.error(
            "module-unresolved", module=module_id, importer=importer
        )
        raise UnresolvedModuleError(module_id, importer)


class PermissiveExternalsPolicy(_PolicyBase):
    """Inline the allow-list, leave installed packages external.

    Builtins are external and specifiers matching an inline rule are always
    inlined. Otherwise a resolved (or absolute) path goes to whichever of
    the inline rules and external directories matches it with the longest
    prefix, predicates beating any prefix. Unresolved bare package imports
    are external and everything else is inlined.
    """

    def __init__(
        self,
        *,
        inline: Iterable[InlineRule] = (),
        external: Iterable[str] = (),
        builtins: Iterable[str] = NODE_BUILTINS,
        node: bool = True,
    ) -> None:
        super().__init__(builtins=builtins, node=node)
        self._inline = tuple(inline)
        self._external = tuple(normalize_id(path) for path in external if path)

    def is_inline(self, module_id: str) -> bool:
        return any(_matches(rule, module_id) for rule in self._inline)

    def _decide_resolved(
        self,
        resolved_id: str,
        flagged_external: bool,
    ) -> ExternalDecision:
        inline_weight = max(
            (
                math.inf if callable(rule) else len(rule)
                for rule in self._inline
                if _matches(rule, resolved_id)
            ),
            default=-1,
        )
        external_weight = max(
            (
                len(directory)
                for directory in self._external
                if resolved_id.startswith(directory)
            ),
            default=-1,
        )
        if inline_weight > external_weight:
            return ExternalDecision.INLINE
        if external_weight >= 0 or flagged_external:
            return ExternalDecision.EXTERNAL
        return ExternalDecision.INLINE

    def resolve(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ModuleDisposition:
        if self._builtin(module_id):
            return ModuleDisposition(
                module_id, importer, ExternalDecision.EXTERNAL, module_id
            )
        resolved = (resolver or _no_resolver)(module_id, importer)
        resolved_id = normalize_id(resolved.id) if resolved else None
        if resolved_id is None and os.path.isabs(module_id):
            resolved_id = normalize_id(module_id)

        if resolved_id is not None:
            decision = self._decide_resolved(
                resolved_id, bool(resolved and resolved.external)
            )
            if decision is ExternalDecision.EXTERNAL and (
                not os.path.isabs(module_id) and self.is_inline(module_id)
            ):
                decision = ExternalDecision.INLINE
        elif self.is_inline(module_id):
            decision = ExternalDecision.INLINE
        elif is_bare_specifier(module_id):
            decision = ExternalDecision.EXTERNAL
        else:
            decision = ExternalDecision.INLINE
        return ModuleDisposition(module_id, importer, decision, resolved_id)


class LegacyExternalsPolicy(_PolicyBase):
    """Decide on the import specifier alone, without consulting a resolver."""

    def __init__(
        self,
        *,
        inline: Iterable[InlineRule] = (),
        builtins: Iterable[str] = NODE_BUILTINS,
        node: bool = True,
    ) -> None:
        super().__init__(builtins=builtins, node=node)
        self._inline = tuple(inline)

    def resolve(
        self,
        module_id: str,
        importer: str | None,
        resolver: PrimaryResolver | None = None,
    ) -> ModuleDisposition:
        if self._builtin(module_id):
            decision = ExternalDecision.EXTERNAL
        elif any(_matches(rule, module_id) for rule in self._inline):
            decision = ExternalDecision.INLINE
        elif is_bare_specifier(module_id):
            decision = ExternalDecision.EXTERNAL
        else:
            decision = ExternalDecision.INLINE
        return ModuleDisposition(module_id, importer, decision)


def _is_wasm(module_id: str) -> bool:
    return module_id.endswith(".wasm")


def default_inline_rules(
    config: "BuildConfig",
    paths: BuildPaths,
    *,
    handlers: Iterable[HandlerDeclaration] | None = None,
) -> tuple[InlineRule, ...]:
    """Return the inline allow-list for permissive builds.

    ``handlers`` are the configured handlers with expanded module ids; they
    are expanded from ``config`` when omitted.
    """

    if handlers is None:
        handlers = ProjectModules.from_config(config, paths).handlers(
            config.handlers
        )

    rules: list[InlineRule] = [*_INTERNAL_PREFIXES, paths.entry_dir]
    if config.experimental.wasm:
        rules.append(_is_wasm)
    rules.extend((paths.runtime_dir, paths.src_dir))
    rules.extend(declaration.handler for declaration in handlers)
    rules.extend(config.externals.inline)
    bundle_dependencies = not (
        config.dev
        or config.prerender
        or not config.experimental.bundle_runtime_dependencies
    )
    if bundle_dependencies:
        rules.extend(config.runtime_dependencies)
    return tuple(rule for rule in rules if rule)


def build_externals_policy(
    config: "BuildConfig",
    paths: BuildPaths,
    *,
    logger: Logger | None = None,
    handlers: Iterable[HandlerDeclaration] | None = None,
) -> ExternalsPolicy:
    """Select the externals strategy configured for this build."""

    if config.no_externals:
        fallback = FallbackResolver(
            paths.node_modules_dirs,
            ResolutionOptions(conditions=default_conditions(dev=config.dev)),
        )
        return StrictExternalsPolicy(
            fallback=fallback,
            binary_asset_extensions=config.externals.binary_asset_extensions,
            node=config.node,
            logger=logger,
        )
    inline = default_inline_rules(config, paths, handlers=handlers)
    if config.experimental.legacy_externals:
        return LegacyExternalsPolicy(inline=inline, node=config.node)
    external = [
        *([paths.build_dir] if config.dev else []),
        *paths.node_modules_dirs,
        *config.externals.external,
    ]
    return PermissiveExternalsPolicy(
        inline=inline,
        external=external,
        node=config.node,
    )
