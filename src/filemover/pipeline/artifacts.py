"""Artifact store: where generated artifacts live between the two stages.

Artifacts are written to ``{root}/{job_id}/artifact`` through a ``.part``
file and renamed into place only after the whole stream fit under the size
ceiling. A crashed or oversized write never leaves a readable artifact.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os

from filemover.core.errors import ArtifactTooLargeError, GenerationFailedError
from filemover.core.hashing import StreamingHash
from filemover.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredArtifact:
    location: str
    size: int
    content_hash: str


class LocalArtifactStore:
    """Artifacts on a local (or shared, mounted) directory."""

    def __init__(self, root: str | Path, max_bytes: int, chunk_size: int = 64 * 1024):
        self.root = Path(root)
        self.max_bytes = max_bytes
        self.chunk_size = chunk_size

    def location_for(self, job_id: str) -> Path:
        if not job_id or "/" in job_id or job_id in (".", ".."):
            raise GenerationFailedError(f"Unusable job id for artifact path: {job_id!r}")
        return self.root / job_id / "artifact"

    async def write(self, job_id: str, chunks: AsyncIterable[bytes]) -> StoredArtifact:
        """Stream ``chunks`` to disk, hashing as we go.

        Raises:
            ArtifactTooLargeError: The stream crossed ``max_bytes``
        """
        final = self.location_for(job_id)
        await aiofiles.os.makedirs(final.parent, exist_ok=True)
        partial = final.with_name(final.name + ".part")
        digest = StreamingHash()

        try:
            async with aiofiles.open(partial, "wb") as fh:
                async for chunk in chunks:
                    if not chunk:
                        continue
                    if digest.size + len(chunk) > self.max_bytes:
                        raise ArtifactTooLargeError(
                            f"Artifact for job {job_id} exceeds {self.max_bytes} bytes",
                            limit_bytes=self.max_bytes,
                        ).with_context(job_id=job_id)
                    await fh.write(chunk)
                    digest.update(chunk)
                await fh.flush()
                await asyncio.to_thread(os.fsync, fh.fileno())
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        await aiofiles.os.replace(partial, final)
        logger.debug("artifact_stored", job_id=job_id, size=digest.size, location=str(final))
        return StoredArtifact(location=str(final), size=digest.size, content_hash=digest.hexdigest())

    async def read(self, location: str) -> AsyncIterator[bytes]:
        """Yield the artifact in ``chunk_size`` pieces."""
        async with aiofiles.open(location, "rb") as fh:
            while True:
                chunk = await fh.read(self.chunk_size)
                if not chunk:
                    return
                yield chunk

    async def exists(self, location: str) -> bool:
        return await aiofiles.os.path.isfile(location)

    async def delete(self, job_id: str) -> bool:
        """Remove the artifact (and any partial write) for ``job_id``."""
        path = self.location_for(job_id)
        existed = await aiofiles.os.path.exists(path)
        for candidate in (path, path.with_name(path.name + ".part")):
            try:
                await aiofiles.os.remove(candidate)
            except FileNotFoundError:
                pass
        try:
            await aiofiles.os.rmdir(path.parent)
        except OSError:
            pass
        if existed:
            logger.debug("artifact_deleted", job_id=job_id)
        return existed
