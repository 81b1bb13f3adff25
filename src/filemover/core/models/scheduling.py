"""Schedule and lock models (``fm_schedules``).

Tags:
    filemover, models, scheduling, dataclasses, cron
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any


@dataclass(frozen=True)
class TargetDescriptor:
    """A remote host plus the destination and credential to use there.

    ``destination_path`` overrides the schedule default when set.
    ``credential_reference`` is a lookup key, never the secret itself.
    """

    target_id: str
    host_ref: str
    credential_reference: str = ""
    destination_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TargetDescriptor:
        return cls(
            target_id=data["target_id"],
            host_ref=data["host_ref"],
            credential_reference=data.get("credential_reference", ""),
            destination_path=data.get("destination_path"),
        )


def dump_targets(targets: tuple[TargetDescriptor, ...] | list[TargetDescriptor]) -> str:
    """Serialize targets to the JSON column, order preserved."""
    return json.dumps([t.to_dict() for t in targets])


def load_targets(raw: str | None) -> tuple[TargetDescriptor, ...]:
    if not raw:
        return ()
    return tuple(TargetDescriptor.from_dict(item) for item in json.loads(raw))


@dataclass
class Schedule:
    """Schedule definition row (``fm_schedules``)."""

    id: str
    name: str
    cron_expression: str
    timezone: str = "UTC"
    source_path: str = ""
    destination_path: str = ""
    targets: tuple[TargetDescriptor, ...] = ()
    enabled: bool = True
    description: str = ""
    next_run_utc: datetime | None = None
    last_run_utc: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    def is_due(self, now: datetime) -> bool:
        return self.enabled and self.next_run_utc is not None and self.next_run_utc <= now

    def destination_for(self, target: TargetDescriptor) -> str:
        return target.destination_path or self.destination_path


@dataclass(frozen=True)
class LockLease:
    """A held lock: who holds ``key`` and until when.

    ``token`` is unique per acquisition. Renew and release only succeed
    when the stored token still matches.
    """

    key: str
    token: str
    acquired_at: datetime
    ttl_seconds: int = field(default=300)

    @property
    def expires_at(self) -> datetime:
        return self.acquired_at + timedelta(seconds=self.ttl_seconds)
