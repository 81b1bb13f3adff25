"""Settings for filemover processes.

Every knob the poller and the two stage workers read lives here, loaded
from ``FILEMOVER_*`` environment variables and an optional ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A poller with a zero-second lock TTL or a worker with unbounded
    concurrency should fail at startup, not at 3am.

    - **Pydantic validation:** Ranges checked at startup
    - **Environment-driven:** ``FILEMOVER_POLL_INTERVAL_SECONDS=15``
    - **Sensible defaults:** In-memory backends when no Redis URL is set

Examples:
    >>> from filemover.core.settings import FileMoverSettings
    >>> settings = FileMoverSettings(poll_interval_seconds=10)
    >>> settings.lock_ttl_seconds
    300

Tags:
    settings, configuration, pydantic, environment, filemover

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

import socket
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FileMoverSettings(BaseSettings):
    """Process settings shared by the poller and the stage workers.

    Fields
    ──────
    database_path     : SQLite file holding schedules, jobs and dead letters
    redis_url         : Coordinator + channel backend; in-memory when unset
    poll_interval_*   : TriggerPoller cycle length
    lock_ttl_seconds  : Per-schedule lock TTL (5-10 minutes recommended)
    retry_*           : RetryCoordinator policy
    *_timeout_seconds : Bounds for every external call
    """

    model_config = SettingsConfigDict(
        env_prefix="FILEMOVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────
    instance_id: str = Field(default_factory=lambda: f"{socket.gethostname()}")

    # ── Storage ──────────────────────────────────────────────────
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".filemover",
        description="Root for the database, artifacts and local targets",
    )
    database_path: Path | None = None
    artifact_dir: Path | None = None
    target_root: Path | None = None
    source_root: Path | None = None
    secrets_dir: Path = Path("/run/secrets")

    # ── Coordination / messaging ─────────────────────────────────
    redis_url: str | None = None
    channel_prefix: str = "filemover"
    status_ttl_seconds: int = Field(default=86_400, ge=60)
    allow_degraded: bool = True
    consumer_lease_seconds: int = Field(default=30, ge=3)

    # ── Scheduling ───────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    lock_ttl_seconds: int = Field(default=300, ge=60, le=600)
    cron_horizon_days: int = Field(default=730, ge=1)

    # ── Generation ───────────────────────────────────────────────
    max_artifact_bytes: int = Field(default=512 * 1024 * 1024, gt=0)
    chunk_size: int = Field(default=64 * 1024, gt=0)
    generation_concurrency: int = Field(default=2, ge=1)

    # ── Transfer ─────────────────────────────────────────────────
    transfer_concurrency: int = Field(default=8, ge=1)

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay_seconds: float = Field(default=60.0, ge=0)
    retry_jitter: float = Field(default=0.2, ge=0, lt=1)
    max_deliveries: int = Field(default=5, ge=1)

    # ── Timeouts ─────────────────────────────────────────────────
    call_timeout_seconds: float = Field(default=30.0, gt=0)
    transfer_timeout_seconds: float = Field(default=300.0, gt=0)
    generation_timeout_seconds: float = Field(default=600.0, gt=0)

    # ── Alerting ─────────────────────────────────────────────────
    alert_threshold_seconds: int = Field(default=3600, ge=60)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @model_validator(mode="after")
    def _derive_paths(self) -> FileMoverSettings:
        if self.database_path is None:
            self.database_path = self.data_dir / "filemover.db"
        if self.artifact_dir is None:
            self.artifact_dir = self.data_dir / "artifacts"
        if self.target_root is None:
            self.target_root = self.data_dir / "targets"
        if self.source_root is None:
            self.source_root = self.data_dir / "sources"
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        return self


@lru_cache(maxsize=1)
def get_settings() -> FileMoverSettings:
    """Return the process-wide settings (cached)."""
    return FileMoverSettings()
