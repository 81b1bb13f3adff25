"""Credential lookup for transfer targets.

Targets never carry secrets. A ``TargetDescriptor`` holds a
``credential_reference`` and the TransferStage resolves it at the start of
each attempt through a ``SecretsResolver``. The resolved value travels as a
``SecretValue`` so it renders as ``[REDACTED]`` in logs, reprs and errors.

Reference syntax:
    ::

        sftp-prod-password          try every backend in order
        secret:env:SFTP_PASSWORD    environment variable only
        secret:file:/run/secrets/k  file contents only
        secret:dict:key             registered backend by name

Architecture:
    ::

        SecretsResolver
          backends (in order):
            EnvSecretBackend   FILEMOVER_SECRET_{KEY}, {KEY}
            FileSecretBackend  {secrets_dir}/{key}   (Docker / Kubernetes)
            DictSecretBackend  in-memory, tests only
                  │
                  ▼
            SecretValue("[REDACTED]")

Guardrails:
    ❌ DON'T: Put a resolved value into a log call, a message or a table
    ✅ DO: Pass ``SecretValue`` down to the TransferClient and call
       ``get_secret()`` only at the wire

Tags:
    secrets, credentials, security, filemover
"""

from __future__ import annotations

import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import ConfigError, CredentialNotFoundError


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    Example:
        >>> secret = SecretValue("hunter2")
        >>> str(secret)
        '[REDACTED]'
        >>> secret.get_secret()
        'hunter2'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


class SecretBackend(ABC):
    """A single source of secrets."""

    name: str = "backend"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the secret for ``key`` or None if this backend lacks it."""
        ...


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    ``FILEMOVER_SECRET_{KEY}`` wins over ``{KEY}``. Dashes and dots in the
    key become underscores so ``sftp-prod.password`` maps to
    ``SFTP_PROD_PASSWORD``.
    """

    name = "env"

    def get(self, key: str) -> str | None:
        normalized = re.sub(r"[^A-Za-z0-9]", "_", key).upper()
        for variable in (f"FILEMOVER_SECRET_{normalized}", normalized):
            value = os.environ.get(variable)
            if value is not None:
                return value
        return None


class FileSecretBackend(SecretBackend):
    """Resolve secrets from files under a directory (``/run/secrets``).

    Contents are cached after the first read.
    """

    name = "file"

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        secret_path = self.secrets_dir / key
        # Keys are file names, not paths.
        if secret_path.parent != self.secrets_dir or not secret_path.is_file():
            return None

        try:
            content = secret_path.read_text().strip()
        except OSError:
            return None
        with self._lock:
            self._cache[key] = content
        return content

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


class DictSecretBackend(SecretBackend):
    """In-memory secret backend for tests. Not for production use."""

    name = "dict"

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, key: str) -> str | None:
        return self._secrets.get(key)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def remove(self, key: str) -> None:
        self._secrets.pop(key, None)


# secret:backend:key
_FULL_REFERENCE_RE = re.compile(r"^secret:(\w+):(.+)$")


class SecretsResolver:
    """Multi-backend resolver: tries backends in order until one answers."""

    def __init__(self, backends: list[SecretBackend] | None = None):
        self._backends: list[SecretBackend] = list(backends) if backends is not None else []

    @property
    def backends(self) -> list[SecretBackend]:
        return list(self._backends)

    def add_backend(self, backend: SecretBackend, priority: int = -1) -> None:
        if priority < 0:
            self._backends.append(backend)
        else:
            self._backends.insert(priority, backend)

    def resolve(self, reference: str) -> SecretValue:
        """Resolve ``reference`` to a ``SecretValue``.

        Raises:
            CredentialNotFoundError: No backend has the secret
            ConfigError: Malformed ``secret:`` reference or unknown backend
        """
        match = _FULL_REFERENCE_RE.match(reference)
        if match:
            value = self._resolve_with_backend(match.group(1), match.group(2))
        elif reference.startswith("secret:"):
            raise ConfigError(
                f"Invalid secret reference format: '{reference}'. "
                "Expected 'secret:<backend>:<key>'."
            )
        else:
            value = None
            for backend in self._backends:
                value = backend.get(reference)
                if value is not None:
                    break

        if value is None:
            raise CredentialNotFoundError(reference)
        return SecretValue(value)

    def _resolve_with_backend(self, backend_name: str, key: str) -> str | None:
        if backend_name == "env":
            return os.environ.get(key)
        if backend_name == "file":
            path = Path(key)
            if path.is_file():
                try:
                    return path.read_text().strip()
                except OSError:
                    return None
            return None

        for backend in self._backends:
            if backend.name == backend_name:
                return backend.get(key)

        raise ConfigError(f"Unknown secret backend '{backend_name}'")


def default_resolver(secrets_dir: str | Path = "/run/secrets") -> SecretsResolver:
    """Environment first, then mounted secret files."""
    return SecretsResolver([EnvSecretBackend(), FileSecretBackend(secrets_dir)])
