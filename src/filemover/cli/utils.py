"""
CLI utility helpers: settings/runtime loading and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from enum import Enum
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from filemover.core.logging import configure_logging
from filemover.core.settings import FileMoverSettings, get_settings
from filemover.runtime import Runtime, build_runtime

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


# ── Settings / runtime ───────────────────────────────────────────────────


def load_settings(database: str | None = None) -> FileMoverSettings:
    """Process settings, with ``--database`` taking precedence."""
    if database:
        return FileMoverSettings(database_path=database)
    return get_settings()


def setup_logging(settings: FileMoverSettings) -> None:
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


def with_runtime(database: str | None, fn: Callable[[Runtime], Awaitable[T]]) -> T:
    """Build a runtime, run ``fn`` in a fresh event loop, always close it."""
    runtime = build_runtime(load_settings(database))

    async def _main() -> T:
        try:
            return await fn(runtime)
        finally:
            await runtime.aclose()

    return asyncio.run(_main())


def fail(message: str, code: str = "ERROR") -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return {k: _plain(v) for k, v in asdict(obj).items()}
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render one object or a list of them."""
    if as_json:
        payload = [to_dict(d) for d in data] if isinstance(data, list | tuple) else to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        print_table([to_dict(d) for d in data], title=title)
    else:
        print_dict(to_dict(data), title=title)


def print_table(rows: list[dict[str, Any]], *, title: str = "", columns: list[str] | None = None) -> None:
    columns = columns or list(rows[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, list):
            continue
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value
