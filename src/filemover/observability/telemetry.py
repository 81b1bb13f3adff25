"""Telemetry emission interface.

The pipeline reports metrics and trace events through a ``Telemetry``
object; where they end up (Prometheus, OpenTelemetry, a log stream) is
decided by whoever wires the runtime.

Example:
    >>> telemetry = InMemoryTelemetry()
    >>> telemetry.emit_metric("transfers_total", 1, outcome="sent")
    >>> telemetry.total("transfers_total", outcome="sent")
    1.0

Metric names used by the stages:
    - ``poller_emitted_total``         generation requests emitted
    - ``generation_duration_seconds``  per generation request
    - ``artifact_bytes``               size of each stored artifact
    - ``transfer_attempts_total``      tagged ``outcome``
    - ``jobs_finished_total``          tagged ``status``
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from filemover.core.logging import get_logger
from filemover.core.timestamps import utc_now

logger = get_logger(__name__)


@runtime_checkable
class Telemetry(Protocol):
    def emit_metric(self, name: str, value: float, **tags: Any) -> None: ...

    def emit_trace(self, name: str, **attrs: Any) -> None: ...


@dataclass(frozen=True)
class Tags:
    """Immutable, hashable tag set."""

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> Tags:
        if not d:
            return cls(())
        return cls(tuple(sorted((k, str(v)) for k, v in d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.items)

    def matches(self, subset: dict[str, Any]) -> bool:
        own = self.to_dict()
        return all(own.get(k) == str(v) for k, v in subset.items())


@dataclass
class MetricSample:
    name: str
    value: float
    tags: Tags
    timestamp: Any = field(default_factory=utc_now)


class LoggingTelemetry:
    """Writes every metric and trace as a structured log event."""

    def emit_metric(self, name: str, value: float, **tags: Any) -> None:
        logger.debug("metric", metric=name, value=value, **tags)

    def emit_trace(self, name: str, **attrs: Any) -> None:
        logger.debug("trace", span=name, **attrs)


class InMemoryTelemetry:
    """Keeps samples in memory for assertions in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.samples: list[MetricSample] = []
        self.traces: list[tuple[str, dict[str, Any]]] = []

    def emit_metric(self, name: str, value: float, **tags: Any) -> None:
        with self._lock:
            self.samples.append(MetricSample(name, float(value), Tags.from_dict(tags)))

    def emit_trace(self, name: str, **attrs: Any) -> None:
        with self._lock:
            self.traces.append((name, dict(attrs)))

    def total(self, name: str, **tags: Any) -> float:
        """Sum of samples named ``name`` whose tags include ``tags``."""
        with self._lock:
            return sum(s.value for s in self.samples if s.name == name and s.tags.matches(tags))

    def trace_names(self) -> list[str]:
        with self._lock:
            return [name for name, _ in self.traces]

    def reset(self) -> None:
        with self._lock:
            self.samples.clear()
            self.traces.clear()


class NullTelemetry:
    def emit_metric(self, name: str, value: float, **tags: Any) -> None:
        return None

    def emit_trace(self, name: str, **attrs: Any) -> None:
        return None
