"""Pluggable capabilities the pipeline stages call out to.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ArtifactGenerator.generate(source_path) → AsyncIterator[bytes]              │
│      Produce the artifact as a stream of chunks. Raise                       │
│      GenerationTransientError for retryable problems and                     │
│      GenerationFailedError for permanent ones.                               │
│                                                                               │
│  CredentialResolver.resolve(reference) → SecretValue                         │
│      Raise CredentialNotFoundError when the reference is unknown.            │
│                                                                               │
│  TransferClient.send(target, credential, destination_path, chunks)           │
│      Push the stream to one target. Raise PermissionError for rejected       │
│      credentials, FileNotFoundError / NotADirectoryError for a bad          │
│      destination and ConnectionError / TimeoutError for transient           │
│      trouble, or the filemover Transfer* errors directly.                   │
└──────────────────────────────────────────────────────────────────────────────┘

Local-filesystem implementations live in ``filemover.pipeline.local``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from filemover.core.models import TargetDescriptor
from filemover.core.secrets import SecretsResolver, SecretValue


@runtime_checkable
class ArtifactGenerator(Protocol):
    def generate(self, source_path: str) -> AsyncIterator[bytes]: ...


@runtime_checkable
class CredentialResolver(Protocol):
    async def resolve(self, reference: str) -> SecretValue: ...


@runtime_checkable
class TransferClient(Protocol):
    async def send(
        self,
        target: TargetDescriptor,
        credential: SecretValue,
        destination_path: str,
        chunks: AsyncIterator[bytes],
    ) -> None: ...


class SecretsCredentialResolver:
    """``CredentialResolver`` over the environment / file / dict backends."""

    def __init__(self, resolver: SecretsResolver):
        self._resolver = resolver

    async def resolve(self, reference: str) -> SecretValue:
        return self._resolver.resolve(reference)
