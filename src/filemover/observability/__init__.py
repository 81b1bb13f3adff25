"""Observability for filemover: metric and trace emission.

Structured logging lives in ``filemover.core.logging``.
"""

from .telemetry import (
    InMemoryTelemetry,
    LoggingTelemetry,
    MetricSample,
    NullTelemetry,
    Tags,
    Telemetry,
)

__all__ = [
    "InMemoryTelemetry",
    "LoggingTelemetry",
    "MetricSample",
    "NullTelemetry",
    "Tags",
    "Telemetry",
]
