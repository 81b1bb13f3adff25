"""
CLI layer for filemover.

Typer sub-commands that wire a ``Runtime`` from settings and render results
with rich. Business logic lives in the stages, repositories and
``StatusService``.

Entry point::

    filemover --help
"""

from filemover.cli.app import app

__all__ = ["app"]
