"""
Root Typer application for the schema-spine CLI.

Commands read the database URL from ``SCHEMASPINE_DATABASE_URL`` (or
``--database-url``) and log to stderr so ``--json`` output stays parseable.
"""

from __future__ import annotations

import sys
from pathlib import Path

import psycopg
import pydantic
import typer
from rich.markup import escape
from typer import Typer

from schemaspine.cli.utils import console, err_console, fail, open_manager, output, print_json
from schemaspine.core.errors import SchemaSpineError
from schemaspine.core.logging import configure_logging
from schemaspine.core.settings import get_settings
from schemaspine.evolution.builder import ConfigDrivenMigrationManager
from schemaspine.evolution.config import MigrationConfig
from schemaspine.evolution.manager import SchemaEvolutionManager
from schemaspine.evolution.transform import DataTransformationService
from schemaspine.evolution.versioning import MigrationVersioning

app = Typer(
    name="schemaspine",
    help="schema-spine: zero-downtime schema evolution for PostgreSQL.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_HANDLED = (SchemaSpineError, pydantic.ValidationError, ValueError, OSError, psycopg.Error)

DatabaseUrlOption = typer.Option(None, "--database-url", "-d", help="PostgreSQL URL (overrides settings)")
JsonOption = typer.Option(False, "--json", help="JSON output")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("schema-spine")
        except PackageNotFoundError:
            from schemaspine import __version__ as v
        typer.echo(f"schema-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """schema-spine CLI: plan, apply and roll back schema migrations."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service="schemaspine",
        stream=sys.stderr,
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _builder(manager: SchemaEvolutionManager) -> ConfigDrivenMigrationManager:
    return ConfigDrivenMigrationManager(manager, DataTransformationService(manager.transactions))


def _load(config: Path) -> MigrationConfig:
    return MigrationConfig.from_yaml_file(config)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def init(database_url: str | None = DatabaseUrlOption) -> None:
    """Create the bookkeeping tables (idempotent)."""
    try:
        with open_manager(database_url) as manager:
            manager.initialize()
    except _HANDLED as e:
        fail(e)
    console.print("[green]Schema evolution tables ready.[/green]")


@app.command()
def plan(
    config: Path = typer.Argument(..., exists=True, dir_okay=False, help="Migration config (YAML)"),
    json_out: bool = JsonOption,
) -> None:
    """Build a migration from CONFIG and report its risks without touching the database."""
    try:
        with open_manager() as manager:
            migration = _builder(manager).build_from_config(_load(config))
            result = manager.validate_evolution_plan(migration)
    except _HANDLED as e:
        fail(e)

    if json_out:
        print_json({"version": migration.version, "validation": result, "statements": migration.all_statements()})
    else:
        console.print(f"[bold]Migration {migration.version}[/bold]: {migration.description}")
        for stage in migration.stages:
            console.print(f"  [cyan]{stage.name}[/cyan] ({len(stage.steps)} steps)")
            for step in stage.steps:
                console.print(f"    {escape(step.sql)}")
        if migration.data_migration:
            for op in migration.data_migration.operations:
                console.print(f"  [cyan]data[/cyan] {op.description}")
        if result.issues:
            rows = [
                {"type": i.type.value, "severity": i.severity.value, "message": i.message}
                for i in result.issues
            ]
            output(rows, title="Issues")
        for warning in result.warnings:
            console.print(f"[yellow]warning[/yellow] {escape(warning)}")
        for rec in result.recommendations:
            console.print(f"[dim]recommendation[/dim] {rec}")
        verdict = "[green]valid[/green]" if result.is_valid else "[bold red]invalid[/bold red]"
        console.print(f"Plan is {verdict}")

    if not result.is_valid:
        raise typer.Exit(code=1)


@app.command()
def apply(
    config: Path = typer.Argument(..., exists=True, dir_okay=False, help="Migration config (YAML)"),
    force: bool = typer.Option(False, "--force", help="Skip plan validation"),
    database_url: str | None = DatabaseUrlOption,
    json_out: bool = JsonOption,
) -> None:
    """Validate and apply the migration described by CONFIG."""
    try:
        with open_manager(database_url) as manager:
            builder = _builder(manager)
            cfg = _load(config)
            if force:
                result = manager.execute_zero_downtime_migration(builder.build_from_config(cfg))
            else:
                result = builder.run(cfg)
    except _HANDLED as e:
        fail(e)

    if json_out:
        print_json(result)
        return
    output(result.stage_results, title=f"Applied {result.version}")
    console.print(
        f"[green]Migration {result.version} applied[/green] in {result.execution_time_ms} ms"
        f" ({result.rows_migrated} rows migrated)"
    )


@app.command()
def rollback(
    version: str = typer.Argument(..., help="Target version to roll back to"),
    database_url: str | None = DatabaseUrlOption,
    json_out: bool = JsonOption,
) -> None:
    """Roll back every migration applied after VERSION."""
    try:
        with open_manager(database_url) as manager:
            result = manager.rollback_to_version(version)
    except _HANDLED as e:
        fail(e)

    if json_out:
        print_json(result)
    elif result.success:
        console.print(
            f"[green]Rolled back to {version}[/green]: {result.steps_executed} steps, "
            f"versions {', '.join(result.rolled_back_versions) or 'none'}"
        )
    else:
        err_console.print(f"[bold red]Rollback failed[/bold red]: {result.error}")
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def history(
    database_url: str | None = DatabaseUrlOption,
    json_out: bool = JsonOption,
) -> None:
    """List applied migrations, newest first."""
    try:
        with open_manager(database_url) as manager:
            records = manager.get_migration_history()
    except _HANDLED as e:
        fail(e)
    output(records, as_json=json_out, title="Migration History")


@app.command()
def current(database_url: str | None = DatabaseUrlOption) -> None:
    """Print the most recently applied version."""
    try:
        with open_manager(database_url) as manager:
            version = manager.get_current_version()
    except _HANDLED as e:
        fail(e)
    typer.echo(version or "none")


@app.command()
def log(
    version: str | None = typer.Option(None, "--version", help="Only entries for this migration"),
    limit: int = typer.Option(50, "--limit", min=1),
    database_url: str | None = DatabaseUrlOption,
    json_out: bool = JsonOption,
) -> None:
    """Show the evolution log."""
    try:
        with open_manager(database_url) as manager:
            entries = manager.get_evolution_log(version, limit=limit)
    except _HANDLED as e:
        fail(e)
    output(entries, as_json=json_out, title="Evolution Log")


@app.command()
def cleanup(database_url: str | None = DatabaseUrlOption) -> None:
    """Drop compatibility views and functions whose cleanup delay has passed."""
    try:
        with open_manager(database_url) as manager:
            cleaned = manager.run_due_cleanups()
    except _HANDLED as e:
        fail(e)
    console.print(f"Cleaned up {len(cleaned)} migration(s)")


@app.command("new-version")
def new_version() -> None:
    """Print a fresh timestamp version (YYYY.MM.DD.HHMM)."""
    typer.echo(MigrationVersioning.generate_version())
