"""Wire messages for the generation and transfer channels.

Both are camelCase JSON on the wire and snake_case in Python::

    {"jobId": "...", "scheduleId": "...", "sourcePath": "...",
     "destinationPath": "...", "targets": [{"targetId": "...", ...}],
     "timestamp": "2025-11-10T09:00:00Z"}

Unknown fields are ignored so older workers keep consuming messages from
newer pollers.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from filemover.core.models import TargetDescriptor
from filemover.core.timestamps import ensure_utc


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes):
        return cls.model_validate_json(raw)


class TargetRef(WireModel):
    """Snapshot of one TargetDescriptor inside a generation request."""

    target_id: str = Field(min_length=1)
    host_ref: str
    credential_reference: str = ""
    destination_path: str | None = None

    @classmethod
    def from_descriptor(cls, target: TargetDescriptor) -> TargetRef:
        return cls(
            target_id=target.target_id,
            host_ref=target.host_ref,
            credential_reference=target.credential_reference,
            destination_path=target.destination_path,
        )

    def to_descriptor(self) -> TargetDescriptor:
        return TargetDescriptor(
            target_id=self.target_id,
            host_ref=self.host_ref,
            credential_reference=self.credential_reference,
            destination_path=self.destination_path,
        )


class GenerationRequest(WireModel):
    """Emitted by the poller, one per triggered schedule occurrence."""

    job_id: str = Field(min_length=1)
    schedule_id: str
    source_path: str
    destination_path: str = ""
    targets: tuple[TargetRef, ...] = Field(min_length=1)
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("targets")
    @classmethod
    def _unique_targets(cls, value: tuple[TargetRef, ...]) -> tuple[TargetRef, ...]:
        ids = [t.target_id for t in value]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate target ids: {ids}")
        return value


class TransferRequest(WireModel):
    """Emitted by the generation stage, one per target."""

    job_id: str = Field(min_length=1)
    schedule_id: str
    target_id: str = Field(min_length=1)
    host_ref: str
    artifact_location: str
    destination_path: str
    credential_reference: str = ""
    content_hash: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def target(self) -> TargetDescriptor:
        return TargetDescriptor(
            target_id=self.target_id,
            host_ref=self.host_ref,
            credential_reference=self.credential_reference,
            destination_path=self.destination_path,
        )
