"""Command-line interface primitives for :mod:`nitrate`.

This module exposes the Typer application behind the ``nitrate`` console
script. Commands inspect what the policy layer would hand to the bundler for
the project described by ``nitrate.toml``.

Example:
    >>> import typer
    >>> from nitrate.cli import create_app
    >>> app = create_app()
    >>> isinstance(app, typer.Typer)
    True
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from nitrate.bundler.diagnostics import dump_handler_table
from nitrate.bundler.errors import NitrateError, UnresolvedModuleError
from nitrate.bundler.handlers import HANDLERS_MODULE_ID
from nitrate.bundler.resolution import ResolvedModule
from nitrate.bundler.session import BuildSession
from nitrate.core.config import (
    CONFIG_FILENAME,
    BuildConfig,
    load_build_config,
    render_user_config,
)
from nitrate.core.logging import configure_logging, get_logger

_app_help = (
    "Build policy inspector for nitrate server bundles."
    "\n\n"
    "Use `nitrate init` to seed `nitrate.toml`, then `nitrate handlers`, "
    "`nitrate chunk` and `nitrate resolve` to see what the bundler receives."
)


@dataclass(slots=True)
class CLIContext:
    """Options shared by every command."""

    config_file: Path | None
    overrides: dict[str, Any]

    def load(self) -> BuildConfig:
        try:
            config = load_build_config(
                self.config_file,
                environ=os.environ,
                cli_overrides=self.overrides,
            )
        except (ValidationError, NitrateError, ValueError) as exc:
            typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        configure_logging(
            level=config.log_level,
            log_dir=config.build_dir if config.debug else None,
        )
        return config

    def session(self) -> BuildSession:
        session = BuildSession(self.load())
        try:
            session.prepare()
        except NitrateError as exc:
            typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        return session


def _default_config_file() -> Path | None:
    candidate = Path.cwd() / CONFIG_FILENAME
    return candidate if candidate.is_file() else None


def _filesystem_resolver(module_id: str, importer: str | None) -> ResolvedModule | None:
    """Treat existing absolute paths as resolved, mimicking a bare resolver."""

    if os.path.isabs(module_id) and Path(module_id).is_file():
        return ResolvedModule(id=module_id)
    return None


def create_app() -> "typer.Typer":
    """Return the Typer application powering the ``nitrate`` CLI."""

    app = typer.Typer(help=_app_help, no_args_is_help=True)

    @app.callback()
    def main(
        ctx: typer.Context,
        config: Path | None = typer.Option(
            None,
            "--config",
            "-c",
            help="Path to nitrate.toml (defaults to ./nitrate.toml if present).",
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            "-l",
            help="Override the logging level (DEBUG/INFO/WARNING/ERROR).",
        ),
        debug: bool = typer.Option(
            False,
            "--debug",
            help="Log the handler table whenever it changes.",
        ),
        strict: bool | None = typer.Option(
            None,
            "--strict/--permissive",
            help="Force strict (no externals) or permissive classification.",
        ),
    ) -> None:
        overrides: dict[str, Any] = {}
        if log_level:
            overrides["log_level"] = log_level
        if debug:
            overrides["debug"] = True
        if strict is not None:
            overrides["no_externals"] = strict
        ctx.obj = CLIContext(
            config_file=config or _default_config_file(),
            overrides=overrides,
        )

    @app.command("init", help="Write a nitrate.toml seeded with defaults.")
    def init_command(
        ctx: typer.Context,
        force: bool = typer.Option(
            False, "--force", help="Overwrite an existing nitrate.toml."
        ),
    ) -> None:
        state: CLIContext = ctx.obj
        target = state.config_file or Path.cwd() / CONFIG_FILENAME
        if target.exists() and not force:
            typer.secho(
                f"{target} already exists; pass --force to overwrite.",
                fg=typer.colors.YELLOW,
            )
            raise typer.Exit(code=1)
        config = state.load()
        target.write_text(render_user_config(config), encoding="utf-8")
        get_logger(__name__, command="init").info(
            "config-written", path=str(target)
        )
        typer.secho(f"Wrote {target}", fg=typer.colors.GREEN)

    @app.command("handlers", help="Show the merged handler table.")
    def handlers_command(
        ctx: typer.Context,
        source: bool = typer.Option(
            False, "--source", help="Also print the generated dispatch module."
        ),
    ) -> None:
        session: BuildSession = ctx.obj.session()
        table = session.handler_table
        if not len(table):
            typer.echo("No handlers registered.")
            return
        typer.echo(dump_handler_table(table, cwd=session.config.root_dir))
        if source:
            session.bundler_config()
            typer.echo("")
            typer.echo(session.registry.load(HANDLERS_MODULE_ID))

    @app.command("chunk", help="Show the output chunk for module paths.")
    def chunk_command(
        ctx: typer.Context,
        paths: list[str] = typer.Argument(..., help="Resolved module paths."),
    ) -> None:
        session: BuildSession = ctx.obj.session()
        classifier = session.bundler_config().chunks
        for path in paths:
            typer.echo(f"{path} -> {classifier.chunk_file_name(path)}")

    @app.command("resolve", help="Show whether an import is inlined.")
    def resolve_command(
        ctx: typer.Context,
        module_id: str = typer.Argument(..., help="Imported module id."),
        importer: str | None = typer.Option(
            None, "--importer", "-i", help="Module performing the import."
        ),
    ) -> None:
        session: BuildSession = ctx.obj.session()
        policy = session.bundler_config().externals
        try:
            disposition = policy.resolve(
                module_id, importer, _filesystem_resolver
            )
        except UnresolvedModuleError as exc:
            typer.secho(str(exc), fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        suffix = f" ({disposition.resolved})" if disposition.resolved else ""
        typer.echo(f"{module_id}: {disposition.decision.value}{suffix}")

    return app


__all__ = ["CLIContext", "create_app"]
