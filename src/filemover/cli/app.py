"""
Root Typer application for the filemover CLI.

    filemover run                          poller + both workers, one process
    filemover poll [--once]                trigger poller only
    filemover worker generation|transfer   one stage worker
    filemover job show|list|stalled|cancel
    filemover dlq list|resolve
    filemover schedule preview|list
    filemover db init
    filemover serve                        status API (uvicorn)
"""

from __future__ import annotations

import typer
from typer import Typer

from filemover.cli.utils import console, load_settings, print_table, setup_logging, with_runtime
from filemover.runtime import Runtime

app = Typer(
    name="filemover",
    help="filemover — scheduled file generation and multi-target transfer.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from filemover import __version__

        typer.echo(f"filemover {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """filemover CLI — run the poller and workers, inspect jobs and dead letters."""


# ── Process commands ─────────────────────────────────────────────────────


@app.command("run")
def run(
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Run the trigger poller and both stage workers in this process."""
    settings = load_settings(database)
    setup_logging(settings)
    console.print(
        f"[bold green]Starting filemover[/bold green] "
        f"(backend={'redis' if settings.redis_url else 'memory'}, poll={settings.poll_interval_seconds}s)"
    )

    async def _main(runtime: Runtime) -> None:
        await runtime.run_all()

    try:
        with_runtime(database, _main)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped by user[/yellow]")


@app.command("poll")
def poll(
    once: bool = typer.Option(False, "--once", help="Run a single cycle and print its results"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Run the trigger poller."""
    setup_logging(load_settings(database))

    async def _main(runtime: Runtime):
        poller = runtime.poller()
        if once:
            return await poller.poll_once()
        await poller.run()
        return None

    try:
        cycle = with_runtime(database, _main)
    except KeyboardInterrupt:
        console.print("\n[yellow]Poller stopped by user[/yellow]")
        return

    if cycle is None:
        return
    if not cycle.results:
        console.print("[dim]No schedules due.[/dim]")
        return
    print_table(
        [r.to_dict() for r in cycle.results],
        title="Poll cycle" + (" (degraded)" if cycle.degraded else ""),
    )


# ── Sub-command registration ─────────────────────────────────────────────

from filemover.cli.db import app as db_app  # noqa: E402
from filemover.cli.dlq import app as dlq_app  # noqa: E402
from filemover.cli.job import app as job_app  # noqa: E402
from filemover.cli.schedule import app as schedule_app  # noqa: E402
from filemover.cli.serve import serve  # noqa: E402
from filemover.cli.worker import app as worker_app  # noqa: E402

app.add_typer(worker_app, name="worker", help="Run one stage worker.")
app.add_typer(job_app, name="job", help="Inspect and cancel jobs.")
app.add_typer(dlq_app, name="dlq", help="Dead-letter entries.")
app.add_typer(schedule_app, name="schedule", help="Cron previews and schedule status.")
app.add_typer(db_app, name="db", help="Database operations.")
app.command("serve")(serve)
