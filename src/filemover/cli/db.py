"""
CLI: ``filemover db`` — database commands.
"""

from __future__ import annotations

import typer

from filemover.cli.utils import console, load_settings
from filemover.core.schema import TABLES
from filemover.runtime import open_database

app = typer.Typer(no_args_is_help=True)


@app.command("init")
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
) -> None:
    """Create the filemover tables (safe to re-run)."""
    settings = load_settings(database)
    conn = open_database(settings.database_path)  # type: ignore[arg-type]
    conn.close()
    console.print(f"[green]Initialized[/green] {settings.database_path} ({len(TABLES)} tables)")
