"""
CLI: ``filemover job`` — inspect and cancel jobs.
"""

from __future__ import annotations

import typer

from filemover.cli.utils import console, fail, output, print_table, with_runtime
from filemover.runtime import Runtime

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(
    job_id: str = typer.Argument(..., help="Job ID"),
    attempts: bool = typer.Option(False, "--attempts", "-a", help="Include attempt history"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a job with its per-target outcomes."""

    async def _show(runtime: Runtime):
        job = runtime.status.get_job(job_id)
        history = runtime.status.attempt_history(job_id) if job and attempts else []
        return job, history

    job, history = with_runtime(database, _show)
    if job is None:
        fail(f"Job {job_id} not found", code="NotFound")

    if json_out:
        payload = job.to_dict()
        if attempts:
            payload["attempts"] = [r.to_dict() for r in history or []]
        output(payload, as_json=True)
        return

    output(job, title=f"Job {job.id}")
    if job.targets:
        print_table(
            [t.to_dict() for t in job.targets],
            title="Targets",
            columns=["target_id", "host_ref", "status", "reason", "attempts", "last_error"],
        )
    if history:
        print_table(
            [r.to_dict() for r in history],
            title="Attempts",
            columns=["operation", "target_id", "attempt", "error_code", "error_message", "finished_at"],
        )


@app.command("list")
def list_jobs(
    schedule_id: str | None = typer.Option(None, "--schedule", "-s"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List recent jobs."""

    async def _list(runtime: Runtime):
        return runtime.status.list_jobs(schedule_id, limit)

    jobs = with_runtime(database, _list)
    output([j.to_dict(include_targets=False) for j in jobs], as_json=json_out, title="Jobs")


@app.command("stalled")
def stalled(
    threshold: int | None = typer.Option(None, "--threshold", "-t", help="Seconds without progress"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List non-terminal jobs past the alert threshold."""

    async def _stalled(runtime: Runtime):
        return runtime.status.stalled_jobs(threshold)

    jobs = with_runtime(database, _stalled)
    output([j.to_dict(include_targets=False) for j in jobs], as_json=json_out, title="Stalled jobs")


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Cancel a job. Running transfers stop before their next attempt."""

    async def _cancel(runtime: Runtime):
        job = runtime.status.get_job(job_id)
        if job is None:
            return None
        if await runtime.status.cancel(job_id):
            return True
        return job.status.value

    result = with_runtime(database, _cancel)
    if result is None:
        fail(f"Job {job_id} not found", code="NotFound")
    if result is not True:
        fail(f"Job {job_id} is already {result}", code="NotCancellable")
    console.print(f"[yellow]Cancelled[/yellow] {job_id}")
