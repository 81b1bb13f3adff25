"""Dead-letter store: operations that exhausted their retries.

WHY
───
A target that refused every one of five attempts, or a message that keeps
crashing its handler, must not vanish. The dead-letter store keeps the
payload, the last error and the attempt count so an operator can look at
it and mark it resolved.

ARCHITECTURE
────────────
::

    DeadLetterStore(conn, dialect, clock)
      ├── .add(job_id, operation, reason, ...)   ─ idempotent per open entry
      ├── .get(id)
      ├── .list_unresolved(operation=None)
      ├── .list_all(include_resolved=True)
      ├── .resolve(id, resolved_by)
      ├── .count_unresolved()
      └── .cleanup_resolved(days)

    An unresolved entry for the same (job, operation, target) is returned
    instead of creating a second one, so a redelivered message that hits
    the cap again does not duplicate the alert.

Example::

    store = DeadLetterStore(conn)
    entry = store.add(
        job_id="01J...",
        operation="transfer",
        target_id="sftp-a",
        reason="RetriesExhausted",
        error="connection refused",
        attempts=5,
    )
    store.resolve(entry.id, resolved_by="ops@example.com")
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any

from filemover.core.dialect import Dialect, SQLiteDialect
from filemover.core.logging import get_logger
from filemover.core.models import DeadLetter
from filemover.core.protocols import Connection
from filemover.core.timestamps import Clock, SystemClock, from_iso8601, generate_ulid, to_iso8601

logger = get_logger(__name__)

_COLUMNS = (
    "id, job_id, target_id, operation, payload, reason, error, "
    "attempts, created_at, resolved_at, resolved_by"
)


class DeadLetterStore:
    """Durable dead-letter channel on ``fm_dead_letters``."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._conn = conn
        self._dialect: Dialect = dialect or SQLiteDialect()
        self._clock: Clock = clock or SystemClock()

    def _ph(self, count: int = 1) -> str:
        return self._dialect.placeholders(count)

    def add(
        self,
        job_id: str,
        operation: str,
        reason: str,
        *,
        target_id: str | None = None,
        error: str | None = None,
        attempts: int = 0,
        payload: dict[str, Any] | None = None,
        dedupe: bool = True,
    ) -> DeadLetter:
        """Record a dead letter, or return the open one for the same work."""
        if dedupe:
            existing = self.find_open(job_id, operation, target_id)
            if existing is not None:
                return existing

        entry = DeadLetter(
            id=generate_ulid(),
            job_id=job_id,
            operation=operation,
            reason=reason,
            payload=payload or {},
            target_id=target_id,
            error=error,
            attempts=attempts,
            created_at=self._clock.now(),
        )
        self._conn.execute(
            f"""
            INSERT INTO fm_dead_letters (
                id, job_id, target_id, operation, payload, reason, error, attempts, created_at
            ) VALUES ({self._ph(9)})
            """,
            (
                entry.id,
                entry.job_id,
                entry.target_id,
                entry.operation,
                json.dumps(entry.payload, default=str),
                entry.reason,
                entry.error,
                entry.attempts,
                to_iso8601(entry.created_at),
            ),
        )
        self._conn.commit()
        logger.warning(
            "dead_letter_recorded",
            dead_letter_id=entry.id,
            job_id=job_id,
            target_id=target_id,
            operation=operation,
            reason=reason,
            attempts=attempts,
        )
        return entry

    def find_open(self, job_id: str, operation: str, target_id: str | None) -> DeadLetter | None:
        params: list[Any] = [job_id, operation]
        if target_id is None:
            target_clause = "target_id IS NULL"
        else:
            target_clause = f"target_id = {self._ph()}"
            params.append(target_id)
        cursor = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM fm_dead_letters
            WHERE job_id = {self._ph()} AND operation = {self._ph()} AND {target_clause}
              AND resolved_at IS NULL
            """,
            params,
        )
        row = cursor.fetchone()
        return self._row_to_dead_letter(row) if row else None

    def get(self, dead_letter_id: str) -> DeadLetter | None:
        cursor = self._conn.execute(
            f"SELECT {_COLUMNS} FROM fm_dead_letters WHERE id = {self._ph()}",
            (dead_letter_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_dead_letter(row)

    def list_unresolved(self, operation: str | None = None, limit: int = 100) -> list[DeadLetter]:
        return self.list_all(operation=operation, include_resolved=False, limit=limit)

    def list_all(
        self,
        operation: str | None = None,
        include_resolved: bool = True,
        limit: int = 100,
        job_id: str | None = None,
    ) -> list[DeadLetter]:
        query = f"SELECT {_COLUMNS} FROM fm_dead_letters WHERE 1=1"
        params: list[Any] = []

        if operation:
            query += f" AND operation = {self._ph()}"
            params.append(operation)
        if job_id:
            query += f" AND job_id = {self._ph()}"
            params.append(job_id)
        if not include_resolved:
            query += " AND resolved_at IS NULL"

        query += f" ORDER BY created_at DESC, id DESC LIMIT {self._ph()}"
        params.append(limit)

        cursor = self._conn.execute(query, params)
        return [self._row_to_dead_letter(row) for row in cursor.fetchall()]

    def resolve(self, dead_letter_id: str, resolved_by: str | None = None) -> bool:
        """Mark as handled. False if missing or already resolved."""
        cursor = self._conn.execute(
            f"""
            UPDATE fm_dead_letters
            SET resolved_at = {self._ph()}, resolved_by = {self._ph()}
            WHERE id = {self._ph()} AND resolved_at IS NULL
            """,
            (to_iso8601(self._clock.now()), resolved_by, dead_letter_id),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def count_unresolved(self, operation: str | None = None) -> int:
        if operation:
            cursor = self._conn.execute(
                f"SELECT COUNT(*) FROM fm_dead_letters WHERE resolved_at IS NULL AND operation = {self._ph()}",
                (operation,),
            )
        else:
            cursor = self._conn.execute(
                "SELECT COUNT(*) FROM fm_dead_letters WHERE resolved_at IS NULL"
            )
        row = cursor.fetchone()
        return row[0] if row else 0

    def cleanup_resolved(self, days: int = 90) -> int:
        """Delete entries resolved more than ``days`` ago."""
        cutoff = self._clock.now() - timedelta(days=days)
        cursor = self._conn.execute(
            f"DELETE FROM fm_dead_letters WHERE resolved_at IS NOT NULL AND resolved_at < {self._ph()}",
            (to_iso8601(cutoff),),
        )
        self._conn.commit()
        return cursor.rowcount

    def _row_to_dead_letter(self, row: Any) -> DeadLetter:
        return DeadLetter(
            id=row[0],
            job_id=row[1],
            target_id=row[2],
            operation=row[3],
            payload=json.loads(row[4]) if row[4] else {},
            reason=row[5],
            error=row[6],
            attempts=row[7] or 0,
            created_at=from_iso8601(row[8]),
            resolved_at=from_iso8601(row[9]),
            resolved_by=row[10],
        )
