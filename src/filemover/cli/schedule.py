"""
CLI: ``filemover schedule`` — cron previews and schedule status.
"""

from __future__ import annotations

from datetime import datetime

import typer

from filemover.cli.utils import console, fail, output, with_runtime
from filemover.core.errors import SchedulingError
from filemover.core.timestamps import ensure_utc, utc_now
from filemover.runtime import Runtime
from filemover.scheduling.cron import TimeZoneCronCalculator, resolve_timezone

app = typer.Typer(no_args_is_help=True)


@app.command("preview")
def preview(
    cron: str = typer.Argument(..., help="5-field cron expression, quoted"),
    tz: str = typer.Option("UTC", "--tz", help="IANA timezone id"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=100),
    start: str | None = typer.Option(None, "--from", help="ISO-8601 reference instant (default: now)"),
) -> None:
    """Show the next occurrences of CRON in TZ, in UTC and local time.

    Example::

        filemover schedule preview "0 10 * * *" --tz Europe/Warsaw --count 3
    """
    try:
        reference = ensure_utc(datetime.fromisoformat(start)) if start else utc_now()
    except ValueError:
        fail(f"Invalid --from value: {start!r}", code="InvalidArgument")

    try:
        zone = resolve_timezone(tz)
        occurrences = TimeZoneCronCalculator().preview(cron, tz, reference, count)
    except SchedulingError as e:
        fail(e.message, code=e.code)

    for occurrence in occurrences:
        local = occurrence.astimezone(zone)
        console.print(f"  {occurrence.isoformat()}  [dim]{local.isoformat()}[/dim]")


@app.command("list")
def list_schedules(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List schedules with their last and next run."""

    async def _list(runtime: Runtime):
        return runtime.status.list_schedules()

    output(with_runtime(database, _list), as_json=json_out, title="Schedules")
