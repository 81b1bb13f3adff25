"""
CLI: ``filemover serve`` — start the status API server.
"""

from __future__ import annotations

import typer
import uvicorn

from filemover.cli.utils import console


def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind address"),
    port: int = typer.Option(8080, "--port", "-p", help="Bind port"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the read-only status API."""
    console.print(f"[bold green]Starting filemover API[/bold green] on {host}:{port}")
    uvicorn.run(
        "filemover.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
    )
