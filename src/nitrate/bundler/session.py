"""Build session wiring the policy engines into a bundler configuration."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from nitrate.core.logging import Logger, get_logger
from nitrate.core.paths import resolve_build_paths

from .aliases import ProjectModules, resolve_aliases
from .chunks import (
    ChunkClassifier,
    build_chunk_classifier,
    chunk_name_for_modules,
    manual_chunk_group,
    module_side_effects,
)
from .declarations import HandlerDeclaration, declaration_from_mapping
from .diagnostics import HandlerTableDumpState
from .errors import NitrateError
from .externals import ExternalsPolicy, build_externals_policy
from .handlers import (
    HANDLERS_MODULE_ID,
    HandlersModule,
    HandlerTable,
    compose_handler_table,
)
from .hashing import ImportVariant, identifier
from .virtual import VirtualModuleRegistry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from nitrate.core.config import BuildConfig

__all__ = [
    "PLUGINS_MODULE_ID",
    "POLYFILLS_MODULE_ID",
    "BuildSession",
    "BundlerConfig",
    "build_replacements",
    "render_plugins_module",
    "render_polyfills_module",
    "resolve_aliases",
]


PLUGINS_MODULE_ID = "#internal/nitrate/virtual/plugins"
POLYFILLS_MODULE_ID = "#internal/nitrate/virtual/polyfills"


@dataclass(frozen=True, slots=True)
class BundlerConfig:
    """Everything the bundler needs from the policy layer for one build."""

    input: str
    output_dir: str
    virtual_modules: VirtualModuleRegistry
    chunks: ChunkClassifier
    chunk_file_names: Callable[[Sequence[str]], str]
    manual_chunks: Callable[[str], str | None] | None
    module_side_effects: Callable[[str], bool]
    externals: ExternalsPolicy
    aliases: Mapping[str, str]
    replacements: Mapping[str, str]
    source_map: bool
    inline_dynamic_imports: bool
    entry_file_names: str = "index.mjs"
    format: str = "esm"


def render_plugins_module(plugins: Iterable[str]) -> str:
    """Generate the module importing every runtime plugin once, in order."""

    unique = tuple(dict.fromkeys(plugin for plugin in plugins if plugin))
    imports = "\n".join(
        f"import {identifier(plugin, ImportVariant.EAGER)} "
        f"from {json.dumps(plugin)};"
        for plugin in unique
    )
    bindings = ",\n".join(
        f"  {identifier(plugin, ImportVariant.EAGER)}" for plugin in unique
    )
    body = f"export const plugins = [\n{bindings}\n];" if unique else (
        "export const plugins = [];"
    )
    return f"{imports}\n\n{body}" if imports else body


def render_polyfills_module(polyfills: Iterable[str]) -> str:
    """Generate side-effect imports for runtime polyfills.

    Example:
        >>> render_polyfills_module([])
        '/* No polyfills */'
    """

    lines = [f"import {json.dumps(p)};" for p in dict.fromkeys(polyfills) if p]
    return "\n".join(lines) or "/* No polyfills */"


# Delimiters after which ``import.meta`` and ``global.`` are rewritten.
_IMPORT_META_DELIMITERS = (".", ";", ")", "[", "]", "}", " ")
_GLOBAL_DELIMITERS = (";", "(", "{", "}", " ", "\t", "\n")


def build_replacements(config: "BuildConfig") -> dict[str, str]:
    """Return compile-time replacements for environment and build flags.

    Values are JavaScript expressions; user ``replace`` entries win.
    """

    if config.prerender:
        node_env = "prerender"
    else:
        node_env = "development" if config.dev else "production"

    env_vars: dict[str, Any] = {
        "NODE_ENV": node_env,
        "prerender": config.prerender,
        "server": True,
        "client": False,
        "dev": str(config.dev).lower(),
        "DEBUG": config.dev,
    }
    static_flags: dict[str, Any] = {
        "dev": config.dev,
        "preset": config.preset,
        "prerender": config.prerender,
        "server": True,
        "client": False,
        "nitro": True,
        "baseURL": config.base_url,
        "versions.nitro": "",
        "versions?.nitro": "",
        "_asyncContext": config.experimental.async_context,
        "_websocket": config.experimental.websocket,
        "_tasks": config.experimental.tasks,
    }

    replacements: dict[str, str] = {
        "typeof window": '"undefined"',
        "_import_meta_url_": "import.meta.url",
        "globalThis.process.": "process.",
        "process.env.RUNTIME_CONFIG": json.dumps(config.runtime_config, indent=2),
    }
    for delimiter in _IMPORT_META_DELIMITERS:
        replacements[f"import.meta{delimiter}"] = (
            f"globalThis._importMeta_{delimiter}"
        )
    for delimiter in _GLOBAL_DELIMITERS:
        replacements[f"{delimiter}global."] = f"{delimiter}globalThis."
    for key, value in env_vars.items():
        replacements[f"process.env.{key}"] = json.dumps(value)
        replacements[f"import.meta.env.{key}"] = json.dumps(value)
    for key, value in static_flags.items():
        replacements[f"process.{key}"] = json.dumps(value)
        replacements[f"import.meta.{key}"] = json.dumps(value)
    replacements.update(config.replace)
    return replacements


class BuildSession:
    """Owns the mutable state of one build process.

    :meth:`prepare` writes the handler table; everything handed out by
    :meth:`bundler_config` only reads it. A session may be prepared again for
    a rebuild, in which case the virtual modules pick up the new table.
    Configured handler, task and renderer ids are expanded once, through
    :class:`ProjectModules`, when the session is created.
    """

    def __init__(
        self,
        config: "BuildConfig",
        *,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.paths = resolve_build_paths(config)
        self._logger = logger or get_logger(__name__, preset=config.preset)
        self.registry = VirtualModuleRegistry(logger=self._logger)
        self.dump_state = HandlerTableDumpState()
        self._table: HandlerTable | None = None
        self.modules = ProjectModules.from_config(config, self.paths)
        self.handlers = self.modules.handlers(config.handlers)
        self.tasks = self.modules.tasks(config.tasks)
        self.renderer = self.modules.expand(config.renderer or "") or None
        self._scanned: tuple[HandlerDeclaration, ...] = ()
        self._registered = False

    @property
    def handler_table(self) -> HandlerTable:
        if self._table is None:
            raise NitrateError("Build session has not been prepared yet.")
        return self._table

    @property
    def scanned_handlers(self) -> tuple[HandlerDeclaration, ...]:
        return self._scanned

    def prepare(
        self,
        scanned: Iterable[HandlerDeclaration | Mapping[str, Any]] = (),
    ) -> HandlerTable:
        """Compose the handler table for the next bundle pass.

        Raises:
            HandlerConfigurationError: If a scanned declaration is malformed.
        """

        self._scanned = self.modules.handlers(
            item
            if isinstance(item, HandlerDeclaration)
            else declaration_from_mapping(item)
            for item in scanned
        )
        self._table = compose_handler_table(
            scanned=self._scanned,
            configured=self.handlers,
            serve_static=self.config.serve_static,
            renderer=self.renderer,
        )
        self._logger.info(
            "handlers-prepared",
            handlers=len(self._table),
            scanned=len(self._scanned),
            configured=len(self.handlers),
        )
        return self._table

    def _register_virtual_modules(self) -> None:
        if self._registered:
            return
        self.registry.register(
            HANDLERS_MODULE_ID,
            HandlersModule(
                lambda: self.handler_table,
                dump_state=self.dump_state,
                debug=self.config.debug,
                logger=self._logger,
                cwd=self.config.root_dir,
            ),
        )
        self.registry.register(
            PLUGINS_MODULE_ID, render_plugins_module(self.config.plugins)
        )
        self.registry.register(
            POLYFILLS_MODULE_ID, render_polyfills_module(self.config.polyfills)
        )
        self.registry.register_many(self.config.virtual)
        self._registered = True

    def bundler_config(self) -> BundlerConfig:
        """Return the bundler hooks for the prepared handler table."""

        table = self.handler_table
        self._register_virtual_modules()
        classifier = build_chunk_classifier(
            self.paths,
            configured=self.handlers,
            scanned=self._scanned,
            tasks=self.tasks,
        )
        inline_dynamic_imports = self.config.inline_dynamic_imports
        self._logger.debug(
            "bundler-config",
            handlers=len(table),
            virtual_modules=len(self.registry),
            strict_externals=self.config.no_externals,
        )
        return BundlerConfig(
            input=self.paths.entry,
            output_dir=self.paths.output_server_dir,
            virtual_modules=self.registry,
            chunks=classifier,
            chunk_file_names=partial(
                chunk_name_for_modules, classifier=classifier
            ),
            manual_chunks=None
            if inline_dynamic_imports
            else partial(manual_chunk_group, paths=self.paths),
            module_side_effects=partial(
                module_side_effects,
                paths=self.paths,
                extra_prefixes=self.config.module_side_effects,
            ),
            externals=build_externals_policy(
                self.config,
                self.paths,
                logger=self._logger,
                handlers=self.handlers,
            ),
            aliases=resolve_aliases(self.config, self.paths),
            replacements=build_replacements(self.config),
            source_map=self.config.source_map,
            inline_dynamic_imports=inline_dynamic_imports,
        )
