"""
CLI utility helpers: output formatting and manager construction.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from schemaspine.core.errors import SchemaSpineError
from schemaspine.core.settings import get_settings
from schemaspine.core.transactions import TransactionManager
from schemaspine.evolution.manager import SchemaEvolutionManager

console = Console()
err_console = Console(stderr=True)


# ── Manager helper ───────────────────────────────────────────────────────


@contextmanager
def open_manager(database_url: str | None = None) -> Iterator[SchemaEvolutionManager]:
    """Yield a :class:`SchemaEvolutionManager` over one connection, closed on exit."""
    settings = get_settings()
    if database_url:
        settings = settings.model_copy(update={"database_url": database_url})
    with TransactionManager.from_settings(settings) as transactions:
        yield SchemaEvolutionManager(transactions, settings=settings)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return asdict(value)
    return str(value)


def print_json(payload: Any) -> None:
    if isinstance(payload, list | tuple):
        payload = [_to_dict(p) for p in payload]
    elif not isinstance(payload, str | int | float | bool) and payload is not None:
        payload = _to_dict(payload)
    console.print_json(json.dumps(payload, default=_plain))


def fail(error: Exception) -> NoReturn:
    """Print an error and exit with status 1."""
    code = error.category.value if isinstance(error, SchemaSpineError) else type(error).__name__
    err_console.print(f"[bold red]Error[/bold red] ({code}): {error}")
    raise typer.Exit(code=1)


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of dataclasses/dicts as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    if as_json:
        print_json(data)
        return
    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title)
    else:
        _print_dict(_to_dict(data), title=title)
