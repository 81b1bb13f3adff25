"""
CLI: ``filemover worker`` — run one stage worker in this process.
"""

from __future__ import annotations

import typer

from filemover.cli.utils import console, load_settings, setup_logging, with_runtime
from filemover.execution.worker import StageWorker
from filemover.runtime import Runtime

app = typer.Typer(no_args_is_help=True)


def _run(stage: str, database: str | None, until_idle: bool) -> None:
    setup_logging(load_settings(database))

    async def _main(runtime: Runtime) -> int | None:
        await runtime.recover_in_flight()
        worker: StageWorker = (
            runtime.generation_worker() if stage == "generation" else runtime.transfer_worker()
        )
        if until_idle:
            return await worker.run_until_idle()
        await worker.run()
        return None

    console.print(f"[bold green]Starting {stage} worker[/bold green]")
    try:
        processed = with_runtime(database, _main)
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
        return
    if processed is not None:
        console.print(f"Processed {processed} message(s)")


@app.command("generation")
def generation(
    database: str | None = typer.Option(None, "--database", "-d"),
    until_idle: bool = typer.Option(False, "--until-idle", help="Exit once the channel is empty"),
) -> None:
    """Consume generation requests: admit, generate, fan out."""
    _run("generation", database, until_idle)


@app.command("transfer")
def transfer(
    database: str | None = typer.Option(None, "--database", "-d"),
    until_idle: bool = typer.Option(False, "--until-idle", help="Exit once the channel is empty"),
) -> None:
    """Consume transfer requests: push artifacts to targets."""
    _run("transfer", database, until_idle)
