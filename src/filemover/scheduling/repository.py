"""Schedule repository: durable schedules and the next-run compare-and-set.

Manifesto:
    ``next_run_utc`` is the only thing standing between one trigger and
    two. The poller holds a lock while it advances a schedule, but the
    lock has a TTL and the coordinator can be down, so the advance itself
    is a compare-and-set on the previous ``next_run_utc``. If another
    poller moved it first, the UPDATE touches zero rows and we know.

Tags:
    filemover, scheduling, repository, CRUD, cron, compare-and-set

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│   CRUD (owning layer):                                                        │
│   ├── create(spec) → Schedule            next_run computed from clock now    │
│   ├── get(id) / get_by_name(name)                                            │
│   ├── update(id, updates) → Schedule     recomputes next_run on cron change  │
│   ├── set_enabled(id, enabled)                                               │
│   ├── delete(id) → bool                                                      │
│   └── list_all() / list_enabled()                                            │
│                                                                               │
│   Poller:                                                                     │
│   ├── get_due_schedules(now) → list[Schedule]                                │
│   ├── advance(id, expected_next, last_run, next_run) → bool   (CAS)          │
│   └── clear_next_run(id, expected_next) → bool                (CAS)          │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from filemover.core.dialect import Dialect, SQLiteDialect
from filemover.core.errors import ConfigError
from filemover.core.logging import get_logger
from filemover.core.models import Schedule, TargetDescriptor, dump_targets, load_targets
from filemover.core.protocols import Connection
from filemover.core.timestamps import Clock, SystemClock, from_iso8601, to_iso8601
from filemover.scheduling.cron import TimeZoneCronCalculator

logger = get_logger(__name__)

_COLUMNS = [
    "id",
    "name",
    "description",
    "cron_expression",
    "timezone",
    "enabled",
    "source_path",
    "destination_path",
    "targets",
    "next_run_at",
    "last_run_at",
    "created_at",
    "updated_at",
    "version",
]
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM fm_schedules"


# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleCreate:
    """DTO for creating a new schedule."""

    name: str
    cron_expression: str
    source_path: str
    targets: list[TargetDescriptor] = field(default_factory=list)
    timezone: str = "UTC"
    destination_path: str = ""
    description: str = ""
    enabled: bool = True
    id: str | None = None


@dataclass
class ScheduleUpdate:
    """DTO for updating a schedule. ``None`` leaves a field unchanged."""

    cron_expression: str | None = None
    timezone: str | None = None
    source_path: str | None = None
    destination_path: str | None = None
    targets: list[TargetDescriptor] | None = None
    description: str | None = None


class ScheduleRepository:
    """Repository for schedules.

    Example:
        >>> repo = ScheduleRepository(conn, clock=FixedClock(now))
        >>> schedule = repo.create(ScheduleCreate(
        ...     name="nightly-export",
        ...     cron_expression="0 2 * * *",
        ...     timezone="Europe/Warsaw",
        ...     source_path="exports/nightly.csv",
        ...     targets=[TargetDescriptor("sftp-a", "sftp.example.com", "sftp-a-password")],
        ... ))
        >>> repo.get_due_schedules(now)
        []
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Clock | None = None,
        calculator: TimeZoneCronCalculator | None = None,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.clock: Clock = clock or SystemClock()
        self.calculator = calculator or TimeZoneCronCalculator()

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    # === CRUD Operations ===

    def create(self, spec: ScheduleCreate) -> Schedule:
        """Create a schedule with its first ``next_run_utc``.

        Raises:
            ConfigError: Enabled schedule without targets
            InvalidCronError / UnknownTimeZoneError: Expression does not evaluate
        """
        if spec.enabled and not spec.targets:
            raise ConfigError(f"Schedule {spec.name!r} is enabled but has no targets")
        self._check_unique_targets(spec.targets)

        now = self.clock.now()
        next_run = self.calculator.next_occurrence(spec.cron_expression, spec.timezone, now)
        schedule_id = spec.id or str(uuid4())
        now_iso = to_iso8601(now)

        self.conn.execute(
            f"""
            INSERT INTO fm_schedules (
                id, name, description, cron_expression, timezone, enabled,
                source_path, destination_path, targets,
                next_run_at, last_run_at, created_at, updated_at, version
            ) VALUES ({self._ph(14)})
            """,
            (
                schedule_id,
                spec.name,
                spec.description,
                spec.cron_expression,
                spec.timezone,
                1 if spec.enabled else 0,
                spec.source_path,
                spec.destination_path,
                dump_targets(spec.targets),
                to_iso8601(next_run) if spec.enabled else None,
                None,
                now_iso,
                now_iso,
                1,
            ),
        )
        self.conn.commit()
        logger.info("schedule_created", schedule_id=schedule_id, next_run_utc=to_iso8601(next_run))
        return self.get(schedule_id)  # type: ignore[return-value]

    def get(self, schedule_id: str) -> Schedule | None:
        cursor = self.conn.execute(f"{_SELECT} WHERE id = {self._ph(1)}", (schedule_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_schedule(row)

    def get_by_name(self, name: str) -> Schedule | None:
        cursor = self.conn.execute(f"{_SELECT} WHERE name = {self._ph(1)}", (name,))
        row = cursor.fetchone()
        if not row:
            return None
        return self._row_to_schedule(row)

    def update(self, schedule_id: str, updates: ScheduleUpdate) -> Schedule | None:
        """Update a schedule.

        Changing the expression or timezone recomputes ``next_run_utc`` from
        now. Jobs already admitted keep their own target snapshot.
        """
        current = self.get(schedule_id)
        if current is None:
            return None

        set_parts: list[str] = []
        params: list[Any] = []

        def put(column: str, value: Any) -> None:
            set_parts.append(f"{column} = {self._ph(1)}")
            params.append(value)

        if updates.targets is not None:
            if current.enabled and not updates.targets:
                raise ConfigError(f"Schedule {current.name!r} is enabled but has no targets")
            self._check_unique_targets(updates.targets)
            put("targets", dump_targets(updates.targets))
        if updates.source_path is not None:
            put("source_path", updates.source_path)
        if updates.destination_path is not None:
            put("destination_path", updates.destination_path)
        if updates.description is not None:
            put("description", updates.description)

        cron_changed = updates.cron_expression is not None or updates.timezone is not None
        if cron_changed:
            cron = updates.cron_expression or current.cron_expression
            tz = updates.timezone or current.timezone
            next_run = self.calculator.next_occurrence(cron, tz, self.clock.now())
            put("cron_expression", cron)
            put("timezone", tz)
            if current.enabled:
                put("next_run_at", to_iso8601(next_run))

        if not set_parts:
            return current

        put("updated_at", to_iso8601(self.clock.now()))
        set_parts.append("version = version + 1")
        params.append(schedule_id)

        self.conn.execute(
            f"UPDATE fm_schedules SET {', '.join(set_parts)} WHERE id = {self._ph(1)}",
            params,
        )
        self.conn.commit()
        return self.get(schedule_id)

    def set_enabled(self, schedule_id: str, enabled: bool) -> Schedule | None:
        """Enable (recomputing the next run from now) or disable a schedule."""
        current = self.get(schedule_id)
        if current is None:
            return None
        if enabled and not current.targets:
            raise ConfigError(f"Schedule {current.name!r} has no targets")

        next_run = None
        if enabled:
            next_run = self.calculator.next_occurrence(
                current.cron_expression, current.timezone, self.clock.now()
            )
        self.conn.execute(
            f"""
            UPDATE fm_schedules
            SET enabled = {self._ph(1)}, next_run_at = {self._ph(1)},
                updated_at = {self._ph(1)}, version = version + 1
            WHERE id = {self._ph(1)}
            """,
            (1 if enabled else 0, to_iso8601(next_run), to_iso8601(self.clock.now()), schedule_id),
        )
        self.conn.commit()
        return self.get(schedule_id)

    def delete(self, schedule_id: str) -> bool:
        cursor = self.conn.execute(
            f"DELETE FROM fm_schedules WHERE id = {self._ph(1)}", (schedule_id,)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_all(self) -> list[Schedule]:
        cursor = self.conn.execute(f"{_SELECT} ORDER BY name")
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    def list_enabled(self) -> list[Schedule]:
        cursor = self.conn.execute(f"{_SELECT} WHERE enabled = 1 ORDER BY name")
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    # === Poller Operations ===

    def get_due_schedules(self, now: datetime) -> list[Schedule]:
        """Enabled schedules with ``next_run_utc <= now``, oldest first."""
        cursor = self.conn.execute(
            f"""
            {_SELECT}
            WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= {self._ph(1)}
            ORDER BY next_run_at
            """,
            (to_iso8601(now),),
        )
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    def advance(
        self,
        schedule_id: str,
        expected_next_run: datetime | None,
        last_run: datetime | None,
        next_run: datetime | None,
    ) -> bool:
        """Compare-and-set ``(last_run_utc, next_run_utc)``.

        Only succeeds while the stored ``next_run_utc`` still equals
        ``expected_next_run``. Returns False when someone else moved it.
        """
        params: list[Any] = [
            to_iso8601(last_run),
            to_iso8601(next_run),
            to_iso8601(self.clock.now()),
            schedule_id,
        ]
        if expected_next_run is None:
            guard = "next_run_at IS NULL"
        else:
            guard = f"next_run_at = {self._ph(1)}"
            params.append(to_iso8601(expected_next_run))

        cursor = self.conn.execute(
            f"""
            UPDATE fm_schedules
            SET last_run_at = {self._ph(1)}, next_run_at = {self._ph(1)}, updated_at = {self._ph(1)}
            WHERE id = {self._ph(1)} AND {guard}
            """,
            params,
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def clear_next_run(self, schedule_id: str, expected_next_run: datetime | None) -> bool:
        """Park a schedule whose expression no longer evaluates."""
        current = self.get(schedule_id)
        last_run = current.last_run_utc if current else None
        return self.advance(schedule_id, expected_next_run, last_run, None)

    def compute_next_run(self, schedule: Schedule, after: datetime) -> datetime:
        """Next occurrence strictly after ``after``; scheduling errors propagate."""
        return self.calculator.next_occurrence(schedule.cron_expression, schedule.timezone, after)

    # === Private Helpers ===

    @staticmethod
    def _check_unique_targets(targets: list[TargetDescriptor]) -> None:
        ids = [t.target_id for t in targets]
        if len(ids) != len(set(ids)):
            raise ConfigError(f"Duplicate target ids: {ids}")

    def _row_to_schedule(self, row: Any) -> Schedule:
        data = dict(zip(_COLUMNS, row, strict=False))
        return Schedule(
            id=data["id"],
            name=data["name"],
            description=data["description"] or "",
            cron_expression=data["cron_expression"],
            timezone=data["timezone"],
            enabled=bool(data["enabled"]),
            source_path=data["source_path"],
            destination_path=data["destination_path"] or "",
            targets=load_targets(data["targets"]),
            next_run_utc=from_iso8601(data["next_run_at"]),
            last_run_utc=from_iso8601(data["last_run_at"]),
            created_at=from_iso8601(data["created_at"]),
            updated_at=from_iso8601(data["updated_at"]),
            version=data["version"],
        )


__all__ = ["ScheduleCreate", "ScheduleRepository", "ScheduleUpdate"]
