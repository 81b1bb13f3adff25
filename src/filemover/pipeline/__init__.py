"""Two-stage pipeline: generation (admit + artifact + fan-out) and transfer.

Capabilities (``ArtifactGenerator``, ``CredentialResolver``,
``TransferClient``) are protocols; ``filemover.pipeline.local`` ships
local-filesystem implementations.
"""

from .artifacts import LocalArtifactStore, StoredArtifact
from .capabilities import (
    ArtifactGenerator,
    CredentialResolver,
    SecretsCredentialResolver,
    TransferClient,
)
from .generation import GenerationStage, classify_generation_error
from .local import FileSourceGenerator, LocalDirectoryTransferClient
from .transfer import TransferStage, classify_transfer_error

__all__ = [
    "ArtifactGenerator",
    "CredentialResolver",
    "FileSourceGenerator",
    "GenerationStage",
    "LocalArtifactStore",
    "LocalDirectoryTransferClient",
    "SecretsCredentialResolver",
    "StoredArtifact",
    "TransferClient",
    "TransferStage",
    "classify_generation_error",
    "classify_transfer_error",
]
