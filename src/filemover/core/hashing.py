"""
Content hashing for artifacts.

The content hash is computed while an artifact is streamed, once when it is
generated and again on every transfer. A replayed transfer request compares
the recorded hash with the request's hash to decide whether the target
already holds this exact artifact.

Examples:
    >>> h = StreamingHash()
    >>> h.update(b"hello ")
    >>> h.update(b"world")
    >>> h.size
    11
    >>> h.hexdigest() == compute_hash(b"hello world")
    True

Tags:
    hashing, sha256, idempotency, filemover
"""

import hashlib


class StreamingHash:
    """SHA-256 accumulator that also counts bytes."""

    algorithm = "sha256"

    def __init__(self):
        self._digest = hashlib.sha256()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._digest.update(chunk)
        self.size += len(chunk)

    def hexdigest(self) -> str:
        return self._digest.hexdigest()


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()
