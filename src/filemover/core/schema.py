"""
Durable tables for schedules, jobs, per-target outcomes and dead letters.

Architecture:
    ::

        fm_schedules      one row per schedule; targets stored as ordered JSON
        fm_jobs           one row per triggered execution (status machine)
        fm_job_targets    one TargetOutcome per (job_id, target_id)
        fm_attempts       append-only attempt records (generation + transfer)
        fm_dead_letters   operations that exhausted retries

    Timestamps are ISO 8601 UTC strings so lexical order is time order.

Guardrails:
    ❌ DON'T: UPDATE or DELETE rows in fm_attempts
    ✅ DO: Append one row per try and reduce with COUNT / ORDER BY

    ❌ DON'T: UPDATE fm_jobs.status without a ``status IN (...)`` guard
    ✅ DO: Go through JobRepository.transition()

Tags:
    schema, ddl, filemover, database
"""

from __future__ import annotations

from .protocols import Connection

TABLES = {
    "schedules": "fm_schedules",
    "jobs": "fm_jobs",
    "job_targets": "fm_job_targets",
    "attempts": "fm_attempts",
    "dead_letters": "fm_dead_letters",
}

DDL = {
    "schedules": """
        CREATE TABLE IF NOT EXISTS fm_schedules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            cron_expression TEXT NOT NULL,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            enabled INTEGER NOT NULL DEFAULT 1,
            source_path TEXT NOT NULL,
            destination_path TEXT NOT NULL DEFAULT '',
            targets TEXT NOT NULL DEFAULT '[]',     -- ordered JSON list
            next_run_at TEXT,
            last_run_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1
        )
    """,
    "schedules_due_idx": """
        CREATE INDEX IF NOT EXISTS idx_fm_schedules_due
            ON fm_schedules (enabled, next_run_at)
    """,
    "jobs": """
        CREATE TABLE IF NOT EXISTS fm_jobs (
            id TEXT PRIMARY KEY,
            schedule_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Pending',
            reason TEXT,
            error TEXT,
            source_path TEXT NOT NULL DEFAULT '',
            destination_path TEXT NOT NULL DEFAULT '',
            artifact_location TEXT,
            artifact_size INTEGER,
            content_hash TEXT,
            triggered_at TEXT,
            started_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            completed_at TEXT
        )
    """,
    "jobs_status_idx": """
        CREATE INDEX IF NOT EXISTS idx_fm_jobs_status
            ON fm_jobs (status, updated_at)
    """,
    "job_targets": """
        CREATE TABLE IF NOT EXISTS fm_job_targets (
            job_id TEXT NOT NULL,
            target_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            host_ref TEXT NOT NULL DEFAULT '',
            destination_path TEXT NOT NULL DEFAULT '',
            credential_reference TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'Pending',
            reason TEXT,
            last_error TEXT,
            content_hash TEXT,
            updated_at TEXT NOT NULL,
            completed_at TEXT,
            PRIMARY KEY (job_id, target_id)
        )
    """,
    "attempts": """
        CREATE TABLE IF NOT EXISTS fm_attempts (
            job_id TEXT NOT NULL,
            operation TEXT NOT NULL,             -- generation | transfer
            target_id TEXT NOT NULL DEFAULT '',  -- '' for generation
            attempt INTEGER NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT NOT NULL,
            error_code TEXT,
            error_message TEXT,
            retryable INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (job_id, operation, target_id, attempt)
        )
    """,
    "dead_letters": """
        CREATE TABLE IF NOT EXISTS fm_dead_letters (
            id TEXT PRIMARY KEY,
            job_id TEXT NOT NULL,
            target_id TEXT,
            operation TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            reason TEXT NOT NULL,
            error TEXT,
            attempts INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            resolved_at TEXT,
            resolved_by TEXT
        )
    """,
}


def create_tables(conn: Connection) -> None:
    """Create every filemover table and index if missing."""
    for statement in DDL.values():
        conn.execute(statement)
    conn.commit()
