"""
CLI: ``filemover dlq`` — dead-letter commands.
"""

from __future__ import annotations

import typer

from filemover.cli.utils import console, fail, output, with_runtime
from filemover.core.models import DeadLetter
from filemover.core.timestamps import to_iso8601
from filemover.runtime import Runtime

app = typer.Typer(no_args_is_help=True)


def _row(entry: DeadLetter) -> dict:
    return {
        "id": entry.id,
        "job_id": entry.job_id,
        "target_id": entry.target_id,
        "operation": entry.operation,
        "reason": entry.reason,
        "attempts": entry.attempts,
        "error": entry.error,
        "created_at": to_iso8601(entry.created_at),
        "resolved_at": to_iso8601(entry.resolved_at),
    }


@app.command("list")
def list_dead_letters(
    all_entries: bool = typer.Option(False, "--all", help="Include resolved entries"),
    operation: str | None = typer.Option(None, "--operation", "-o"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List dead-letter entries (unresolved by default)."""

    async def _list(runtime: Runtime):
        return runtime.dead_letters.list_all(
            operation=operation, include_resolved=all_entries, limit=limit
        )

    entries = with_runtime(database, _list)
    output([_row(e) for e in entries], as_json=json_out, title="Dead Letters")


@app.command("resolve")
def resolve(
    dead_letter_id: str = typer.Argument(..., help="Dead-letter entry ID"),
    resolved_by: str = typer.Option("cli", "--by", help="Who resolved it"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Mark a dead-letter entry resolved."""

    async def _resolve(runtime: Runtime):
        return runtime.dead_letters.resolve(dead_letter_id, resolved_by=resolved_by)

    if not with_runtime(database, _resolve):
        fail(f"Dead letter {dead_letter_id} not found or already resolved", code="NotFound")
    console.print(f"[green]Resolved[/green] {dead_letter_id}")
