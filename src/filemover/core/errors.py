"""
Structured error types for filemover.

Every failure the pipeline can record carries a category, a retryable
flag, a stable ``code`` and an optional chained cause. The ``code`` is what
gets persisted as the failure reason on a Job or TargetOutcome, so the
status surface speaks the same vocabulary as the exception hierarchy.

Manifesto:
    - **Typed hierarchy:** One subclass per failure the stages distinguish
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Stable codes:** ``error.code`` is the persisted reason string
    - **Error chaining:** Original exceptions are kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       FileMoverError                            │
        │        (category, retryable, code, context, cause)              │
        ├─────────────────────────────────────────────────────────────────┤
        │  SchedulingError        CoordinationError     GenerationError   │
        │   InvalidCronError       LockUnavailableError  ArtifactTooLarge │
        │   UnknownTimeZoneError   CoordinatorUnavail.   GenerationFailed │
        │   NoOccurrenceInHorizon                        GenerationTrans. │
        │                                                                  │
        │  TransferError          CallTimeoutError      RetriesExhausted  │
        │   TransferTransient     (retryable)           (terminal)        │
        │   TransferAuthFailed                                            │
        │   TransferDestinationInvalid                                    │
        │   CredentialNotFound    ConfigError                             │
        └─────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Raise terminal errors across a stage boundary
    ✅ DO: Record ``error.code`` on the owning entity and return

    ❌ DON'T: Put secrets into ``context``
    ✅ DO: Store ids and references only

Tags:
    error-handling, exception-hierarchy, retry-logic, filemover

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    SCHEDULING = "SCHEDULING"        # Cron / timezone evaluation
    COORDINATION = "COORDINATION"    # Lock and status store
    GENERATION = "GENERATION"        # Artifact production
    TRANSFER = "TRANSFER"            # Pushing an artifact to a target
    AUTH = "AUTH"                    # Credentials rejected or missing
    NETWORK = "NETWORK"              # Timeouts, refused connections
    STORAGE = "STORAGE"              # Artifact store, durable store
    CONFIG = "CONFIG"                # Missing or invalid settings
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        schedule_id: Schedule that owns the failing work
        job_id: Job identifier
        target_id: Target identifier (transfer errors)
        operation: ``generation`` or ``transfer``
        attempt: Attempt number when the error occurred
        metadata: Additional key-value pairs
    """

    schedule_id: str | None = None
    job_id: str | None = None
    target_id: str | None = None
    operation: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["schedule_id", "job_id", "target_id", "operation", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FileMoverError(Exception):
    """
    Base exception for all filemover errors.

    Subclasses set ``default_category``, ``default_retryable`` and ``code``.
    ``code`` doubles as the failure reason persisted by the stages.

    Examples:
        >>> error = TransferTransientError("connection refused")
        >>> error.retryable
        True
        >>> error.code
        'TransferTransient'

        >>> error = ArtifactTooLargeError("artifact exceeds 10 bytes")
        >>> error.with_context(job_id="job-1").context.job_id
        'job-1'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False
    code: str = "InternalError"

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FileMoverError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TransferAuthFailedError("login rejected").with_context(
                job_id=job_id, target_id=target_id
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code!r})"


# =============================================================================
# SCHEDULING
# =============================================================================


class SchedulingError(FileMoverError):
    """Base for cron/timezone evaluation errors. Never retryable."""

    default_category = ErrorCategory.SCHEDULING
    code = "SchedulingError"


class InvalidCronError(SchedulingError):
    """Expression does not parse to a valid 5-field schedule."""

    code = "InvalidCron"


class UnknownTimeZoneError(SchedulingError):
    """Timezone id is not in the IANA database."""

    code = "UnknownTimeZone"


class NoOccurrenceInHorizonError(SchedulingError):
    """No occurrence exists within the lookahead window."""

    code = "NoOccurrenceInHorizon"


# =============================================================================
# COORDINATION
# =============================================================================


class CoordinationError(FileMoverError):
    default_category = ErrorCategory.COORDINATION
    code = "CoordinationError"


class LockUnavailableError(CoordinationError):
    """Lock is held elsewhere. Non-fatal: the caller skips."""

    code = "LockUnavailable"


class CoordinatorUnavailableError(CoordinationError):
    """The coordination store cannot be reached."""

    default_retryable = True
    code = "CoordinatorUnavailable"


class ChannelUnavailableError(CoordinationError):
    """A work channel could not be reached to publish or receive."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True
    code = "ChannelUnavailable"


# =============================================================================
# GENERATION
# =============================================================================


class GenerationError(FileMoverError):
    default_category = ErrorCategory.GENERATION
    code = "GenerationError"


class ArtifactTooLargeError(GenerationError):
    """Generated output crossed the configured size ceiling."""

    code = "ArtifactTooLarge"

    def __init__(self, message: str, *, limit_bytes: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.limit_bytes = limit_bytes


class GenerationFailedError(GenerationError):
    """The generation capability reported a permanent failure."""

    code = "GenerationFailed"


class GenerationTransientError(GenerationError):
    """The generation capability failed in a way worth retrying."""

    default_retryable = True
    code = "GenerationTransient"


# =============================================================================
# TRANSFER
# =============================================================================


class TransferError(FileMoverError):
    default_category = ErrorCategory.TRANSFER
    code = "TransferError"


class TransferTransientError(TransferError):
    """Connection refused, timeout or transient protocol error."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True
    code = "TransferTransient"


class TransferAuthFailedError(TransferError):
    """The remote target rejected the credentials."""

    default_category = ErrorCategory.AUTH
    code = "TransferAuthFailed"


class TransferDestinationInvalidError(TransferError):
    """Destination path is invalid or not writable on the target."""

    code = "TransferDestinationInvalid"


class CredentialNotFoundError(TransferError):
    """The credential reference did not resolve to a secret."""

    default_category = ErrorCategory.AUTH
    code = "CredentialNotFound"

    def __init__(self, reference: str, message: str | None = None):
        super().__init__(message or f"Credential not found: {reference}")
        self.reference = reference


# =============================================================================
# CROSS-CUTTING
# =============================================================================


class CallTimeoutError(FileMoverError):
    """An external call exceeded its timeout. Retryable."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True
    code = "CallTimeout"

    def __init__(self, operation: str, seconds: float):
        super().__init__(f"{operation} timed out after {seconds:g}s")
        self.operation = operation
        self.seconds = seconds


class RetriesExhaustedError(FileMoverError):
    """A retryable operation hit the attempt cap. Terminal."""

    code = "RetriesExhausted"

    def __init__(self, attempts: int, last_error: Exception | None = None):
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Gave up after {attempts} attempts{detail}", cause=last_error)
        self.attempts = attempts
        self.last_error = last_error


class ConfigError(FileMoverError):
    default_category = ErrorCategory.CONFIG
    code = "ConfigError"


class JobCancelledError(FileMoverError):
    """Work stopped because the owning Job was cancelled."""

    code = "Cancelled"


# =============================================================================
# UTILITIES
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable.

    Plain ``TimeoutError`` and ``ConnectionError`` count as retryable so
    capability implementations don't have to wrap every stdlib exception.
    """
    if isinstance(error, FileMoverError):
        return error.retryable
    return isinstance(error, (TimeoutError, ConnectionError))


def error_code(error: Exception) -> str:
    """Return the persisted reason code for any exception."""
    if isinstance(error, FileMoverError):
        return error.code
    return type(error).__name__
