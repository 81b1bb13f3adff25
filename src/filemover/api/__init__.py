"""Read-only status API (FastAPI)."""

from filemover.api.app import create_app
from filemover.api.status import create_status_router

__all__ = ["create_app", "create_status_router"]
