"""Configuration models and loaders for :mod:`nitrate`."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from pathlib import Path
from typing import Any, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, Field, field_validator, model_validator

from nitrate.bundler.declarations import (
    HandlerDeclaration,
    declaration_from_mapping,
)
from nitrate.resources import get_resource

CONFIG_FILENAME = "nitrate.toml"
DEFAULTS_RESOURCE_NAME = "nitrate.defaults.toml"
ENV_PREFIX = "NITRATE_"
PRERENDER_PRESET = "nitro-prerender"

# Tables merged key by key across layers; every other key is replaced whole.
MERGEABLE_TABLES: frozenset[str] = frozenset(
    {"output", "experimental", "externals", "tasks", "alias", "runtime_config"}
)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


class OutputSettings(BaseModel):
    """Locations receiving the compiled server bundle."""

    server_dir: Path = Field(
        default=Path(".output/server"),
        description="Directory the bundler writes server chunks into.",
    )

    model_config = {"frozen": True}


class TaskSettings(BaseModel):
    """A named background task handled by a dedicated module."""

    handler: str = Field(description="Module id implementing the task.")
    description: str = Field(default="", description="Human readable summary.")

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("handler")
    @classmethod
    def _require_handler(cls, value: str) -> str:
        if not value:
            raise ValueError("Task handler cannot be blank.")
        return value


class ExternalsSettings(BaseModel):
    """Overrides for the external dependency classifier."""

    inline: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Extra module id prefixes that are always inlined.",
    )
    external: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Extra directories whose modules stay external.",
    )
    binary_asset_extensions: tuple[str, ...] = Field(
        default=(".wasm",),
        description=(
            "Extensions allowed to stay external in strict mode when the "
            "bundler resolver flags them external."
        ),
    )

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("binary_asset_extensions")
    @classmethod
    def _normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        normalized = (
            ext if ext.startswith(".") else f".{ext}" for ext in value if ext
        )
        return tuple(dict.fromkeys(ext.lower() for ext in normalized))


class ExperimentalSettings(BaseModel):
    """Opt-in behaviours that may change between releases."""

    wasm: bool = Field(default=False, description="Enable wasm imports.")
    legacy_externals: bool = Field(
        default=False,
        description="Use the legacy id-based externals strategy.",
    )
    bundle_runtime_dependencies: bool = Field(
        default=True,
        description="Inline the known runtime dependencies in production.",
    )
    tasks: bool = Field(default=False, description="Enable background tasks.")
    async_context: bool = Field(
        default=False,
        description="Expose the per-request async context to the runtime.",
    )
    websocket: bool = Field(default=False, description="Enable websocket upgrades.")

    model_config = {"frozen": True}


class BuildConfig(BaseModel):
    """Root configuration for a :mod:`nitrate` build."""

    root_dir: Path = Field(
        default=Path("."),
        description="Project root; relative paths resolve against it.",
    )
    src_dir: Path | None = Field(
        default=None,
        description="Server source directory (defaults to the root).",
    )
    build_dir: Path = Field(
        default=Path(".nitrate"),
        description="Scratch directory for intermediate build output.",
    )
    runtime_dir: Path = Field(
        default=Path("node_modules/nitrate/runtime"),
        description="Directory holding the runtime library modules.",
    )
    entry: Path | None = Field(
        default=None,
        description="Bundle entry module (defaults to the node-server entry).",
    )
    output: OutputSettings = Field(default_factory=OutputSettings)
    node_modules_dirs: tuple[Path, ...] = Field(
        default=(Path("node_modules"),),
        description="Module search directories, in lookup order.",
    )
    log_level: str = Field(default="INFO")
    dev: bool = Field(default=False)
    debug: bool = Field(
        default=False,
        description="Emit the handler table whenever it changes.",
    )
    preset: str = Field(default="node-server")
    base_url: str = Field(
        default="/",
        description="Public base URL the server is mounted under.",
    )
    node: bool = Field(
        default=True,
        description="Whether the target runtime provides node builtins.",
    )
    no_externals: bool = Field(
        default=False,
        description="Strict mode: every import must be bundled.",
    )
    serve_static: bool = Field(default=True)
    renderer: str | None = Field(
        default=None,
        description="Catch-all renderer module appended after all handlers.",
    )
    handlers: tuple[HandlerDeclaration, ...] = Field(default_factory=tuple)
    tasks: dict[str, TaskSettings] = Field(default_factory=dict)
    plugins: tuple[str, ...] = Field(default_factory=tuple)
    polyfills: tuple[str, ...] = Field(default_factory=tuple)
    virtual: dict[str, str] = Field(
        default_factory=dict,
        description="User supplied virtual modules keyed by module id.",
    )
    alias: dict[str, str] = Field(default_factory=dict)
    replace: dict[str, str] = Field(default_factory=dict)
    runtime_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Serialized into ``process.env.RUNTIME_CONFIG``.",
    )
    module_side_effects: tuple[str, ...] = Field(default_factory=tuple)
    runtime_dependencies: tuple[str, ...] = Field(default_factory=tuple)
    inline_dynamic_imports: bool = Field(default=False)
    source_map: bool = Field(default=True)
    externals: ExternalsSettings = Field(default_factory=ExternalsSettings)
    experimental: ExperimentalSettings = Field(
        default_factory=ExperimentalSettings
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator("handlers", mode="before")
    @classmethod
    def _coerce_handlers(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(
                item
                if isinstance(item, HandlerDeclaration)
                else declaration_from_mapping(item)
                for item in value
            )
        return value

    @field_validator("renderer")
    @classmethod
    def _blank_renderer(cls, value: str | None) -> str | None:
        return value or None

    @model_validator(mode="after")
    def _resolve_paths(self) -> "BuildConfig":
        """Anchor relative paths to ``root_dir`` and fill derived defaults."""

        root = self.root_dir.expanduser()
        if not root.is_absolute():
            root = (Path.cwd() / root).resolve(strict=False)

        def _anchor(path: Path) -> Path:
            path = path.expanduser()
            if path.is_absolute():
                return path
            return (root / path).resolve(strict=False)

        runtime_dir = _anchor(self.runtime_dir)
        object.__setattr__(self, "root_dir", root)
        object.__setattr__(
            self, "src_dir", _anchor(self.src_dir) if self.src_dir else root
        )
        object.__setattr__(self, "build_dir", _anchor(self.build_dir))
        object.__setattr__(self, "runtime_dir", runtime_dir)
        object.__setattr__(
            self,
            "entry",
            _anchor(self.entry)
            if self.entry
            else runtime_dir / "entries" / "node-server.mjs",
        )
        object.__setattr__(
            self,
            "output",
            OutputSettings(server_dir=_anchor(self.output.server_dir)),
        )
        object.__setattr__(
            self,
            "node_modules_dirs",
            tuple(_anchor(path) for path in self.node_modules_dirs),
        )
        object.__setattr__(self, "log_level", self.log_level.upper())
        return self

    @property
    def prerender(self) -> bool:
        """Return ``True`` when building for the prerender preset."""

        return self.preset == PRERENDER_PRESET


def read_packaged_defaults_text() -> str:
    """Return the raw packaged defaults TOML content.

    Example:
        >>> read_packaged_defaults_text().startswith("#")
        True
    """

    return get_resource(DEFAULTS_RESOURCE_NAME).read_text(encoding="utf-8")


def load_packaged_defaults() -> dict[str, Any]:
    """Load the packaged defaults as a plain dictionary.

    Example:
        >>> load_packaged_defaults()["log_level"]
        'INFO'
    """

    return tomllib.loads(read_packaged_defaults_text())


def load_user_config(path: Path) -> dict[str, Any]:
    """Read a ``nitrate.toml`` file.

    A relative ``root_dir`` inside the file is anchored to the file's
    directory so configs behave the same from any working directory.
    """

    data = tomllib.loads(path.read_text(encoding="utf-8"))
    root = Path(data.get("root_dir", "."))
    if not root.is_absolute():
        data["root_dir"] = str((path.parent / root).resolve(strict=False))
    return data


def _parse_flag(name: str, raw: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUTHY:
        return True
    if normalized in _FALSY:
        return False
    raise ValueError(f"Invalid boolean for {name}: {raw!r}")


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Translate ``NITRATE_*`` environment variables into a config layer.

    ``DEBUG`` is honoured as an alias for ``NITRATE_DEBUG``.

    Example:
        >>> env_overrides({"NITRATE_DEV": "1", "NITRATE_PRESET": "bun"})
        {'dev': True, 'preset': 'bun'}
    """

    layer: dict[str, Any] = {}
    if "DEBUG" in environ:
        layer["debug"] = _parse_flag("DEBUG", environ["DEBUG"])
    for key in ("debug", "dev", "no_externals"):
        name = f"{ENV_PREFIX}{key.upper()}"
        if name in environ:
            layer[key] = _parse_flag(name, environ[name])
    for key in ("log_level", "preset"):
        name = f"{ENV_PREFIX}{key.upper()}"
        if environ.get(name):
            layer[key] = environ[name]
    return layer


def _merge_layer(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge ``overlay`` onto ``base``.

    Only :data:`MERGEABLE_TABLES` merge key by key (one level deep); all
    other keys, lists included, are replaced by the overlay value.
    """

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if (
            key in MERGEABLE_TABLES
            and isinstance(current, MappingABC)
            and isinstance(value, MappingABC)
        ):
            merged[key] = {**current, **value}
        else:
            merged[key] = value
    return merged


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> BuildConfig:
    """Load configuration according to the precedence stack.

    Args:
        defaults: Packaged defaults shipped with the application.
        user_config: Parsed user ``nitrate.toml`` content.
        env_config: Settings derived from environment variables.
        cli_overrides: Settings supplied via CLI flags.

    Returns:
        A validated :class:`BuildConfig` instance.

    Raises:
        pydantic.ValidationError: If a layer carries invalid values.
        HandlerConfigurationError: If a handler declaration is malformed.
    """

    stack = dict(defaults)
    for layer in (user_config, env_config, cli_overrides):
        if layer:
            stack = _merge_layer(stack, layer)
    return BuildConfig(**stack)


def load_build_config(
    config_file: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> BuildConfig:
    """Convenience loader stacking defaults, file, env and CLI layers."""

    user_config = load_user_config(config_file) if config_file else None
    return load_config(
        defaults=load_packaged_defaults(),
        user_config=user_config,
        env_config=env_overrides(environ or {}),
        cli_overrides=cli_overrides,
    )


def _handler_entry(declaration: HandlerDeclaration) -> tomlkit.items.InlineTable:
    entry = tomlkit.inline_table()
    if declaration.route:
        entry["route"] = declaration.route
    entry["handler"] = declaration.handler
    if declaration.method:
        entry["method"] = declaration.method
    if declaration.lazy:
        entry["lazy"] = True
    if declaration.middleware:
        entry["middleware"] = True
    return entry


def _table(values: Mapping[str, Any]) -> tomlkit.items.Table:
    table = tomlkit.table()
    # Plain values must precede sub-tables.
    for key, value in sorted(
        values.items(), key=lambda item: isinstance(item[1], MappingABC)
    ):
        table[key] = value
    return table


def render_user_config(config: BuildConfig) -> str:
    """Render a ``nitrate.toml`` document for users to customize.

    Every setting except ``root_dir`` is written, so loading the rendered file
    from the project root yields an equal :class:`BuildConfig`. Paths are
    written relative to ``root_dir`` where possible; the entry module is only
    written when it differs from the runtime's node-server entry.
    """

    def _rel(path: Path) -> str:
        try:
            return path.relative_to(config.root_dir).as_posix() or "."
        except ValueError:
            return path.as_posix()

    document = tomlkit.document()
    document.add(tomlkit.comment("Generated by nitrate"))
    document.add(
        tomlkit.comment("Precedence: CLI flags > env vars > nitrate.toml > defaults")
    )
    document.add(tomlkit.nl())

    document["src_dir"] = _rel(config.src_dir)
    document["build_dir"] = _rel(config.build_dir)
    document["runtime_dir"] = _rel(config.runtime_dir)
    if config.entry != config.runtime_dir / "entries" / "node-server.mjs":
        document["entry"] = _rel(config.entry)
    document["node_modules_dirs"] = [_rel(p) for p in config.node_modules_dirs]
    document.add(tomlkit.nl())

    document["preset"] = config.preset
    document["base_url"] = config.base_url
    document["log_level"] = config.log_level
    document["dev"] = config.dev
    document["debug"] = config.debug
    document["node"] = config.node
    document["no_externals"] = config.no_externals
    document["serve_static"] = config.serve_static
    document["inline_dynamic_imports"] = config.inline_dynamic_imports
    document["source_map"] = config.source_map
    document.add(tomlkit.nl())

    if config.renderer:
        document["renderer"] = config.renderer
    document["plugins"] = list(config.plugins)
    document["polyfills"] = list(config.polyfills)
    document["module_side_effects"] = list(config.module_side_effects)
    runtime_dependencies = tomlkit.array()
    runtime_dependencies.multiline(len(config.runtime_dependencies) > 3)
    for dependency in config.runtime_dependencies:
        runtime_dependencies.append(dependency)
    document["runtime_dependencies"] = runtime_dependencies

    if config.handlers:
        handlers = tomlkit.array()
        handlers.multiline(True)
        for declaration in config.handlers:
            handlers.append(_handler_entry(declaration))
        document["handlers"] = handlers

    document["output"] = _table({"server_dir": _rel(config.output.server_dir)})
    document["externals"] = _table(
        {
            "inline": list(config.externals.inline),
            "external": list(config.externals.external),
            "binary_asset_extensions": list(
                config.externals.binary_asset_extensions
            ),
        }
    )
    for name in ("alias", "replace", "virtual", "runtime_config"):
        values = getattr(config, name)
        if values:
            document[name] = _table(values)

    if config.tasks:
        tasks = tomlkit.table(is_super_table=True)
        for name in sorted(config.tasks):
            entry = tomlkit.table()
            entry["handler"] = config.tasks[name].handler
            if config.tasks[name].description:
                entry["description"] = config.tasks[name].description
            tasks.add(name, entry)
        document["tasks"] = tasks

    document["experimental"] = _table(config.experimental.model_dump())

    return tomlkit.dumps(document)


__all__ = [
    "BuildConfig",
    "CONFIG_FILENAME",
    "DEFAULTS_RESOURCE_NAME",
    "ENV_PREFIX",
    "ExperimentalSettings",
    "ExternalsSettings",
    "MERGEABLE_TABLES",
    "OutputSettings",
    "PRERENDER_PRESET",
    "TaskSettings",
    "env_overrides",
    "load_build_config",
    "load_config",
    "load_packaged_defaults",
    "load_user_config",
    "read_packaged_defaults_text",
    "render_user_config",
]
