"""Local-filesystem capabilities for development, tests and single-host use.

``FileSourceGenerator`` streams a file from ``source_root`` as the
artifact. ``LocalDirectoryTransferClient`` treats each ``host_ref`` as a
directory under ``target_root`` and writes the artifact there, so the whole
pipeline can run without a network.

Layout::

    {source_root}/{source_path}                    ← generated from
    {target_root}/{host_ref}/{destination_path}    ← transferred to
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from filemover.core.errors import (
    GenerationFailedError,
    GenerationTransientError,
    TransferDestinationInvalidError,
)
from filemover.core.models import TargetDescriptor
from filemover.core.secrets import SecretValue


def _safe_join(root: Path, relative: str) -> Path:
    """Join without letting ``relative`` escape ``root`` (ValueError if it tries)."""
    pure = PurePosixPath(relative)
    if not relative or pure.is_absolute() or ".." in pure.parts:
        raise ValueError(f"Path must be relative and stay inside its root: {relative!r}")
    return root.joinpath(*pure.parts)


class FileSourceGenerator:
    """Generate an artifact by streaming a file from ``source_root``."""

    def __init__(self, source_root: str | Path, chunk_size: int = 64 * 1024):
        self.source_root = Path(source_root)
        self.chunk_size = chunk_size

    async def generate(self, source_path: str) -> AsyncIterator[bytes]:
        try:
            path = _safe_join(self.source_root, source_path)
        except ValueError as e:
            raise GenerationFailedError(str(e)) from e

        if not await aiofiles.os.path.isfile(path):
            raise GenerationFailedError(f"Source not found: {source_path}")

        try:
            async with aiofiles.open(path, "rb") as fh:
                while True:
                    chunk = await fh.read(self.chunk_size)
                    if not chunk:
                        return
                    yield chunk
        except PermissionError as e:
            raise GenerationFailedError(f"Source not readable: {source_path}", cause=e) from e
        except OSError as e:
            raise GenerationTransientError(f"Reading {source_path} failed: {e}", cause=e) from e


class LocalDirectoryTransferClient:
    """Transfer by writing into ``{target_root}/{host_ref}/``.

    ``expected_credentials`` maps a host ref to the secret it accepts. Hosts
    not listed accept any credential. Writes go to a temporary name and are
    renamed into place, so a failed attempt leaves nothing half-written.
    """

    def __init__(
        self,
        target_root: str | Path,
        expected_credentials: dict[str, str] | None = None,
        create_hosts: bool = True,
    ):
        self.target_root = Path(target_root)
        self.expected_credentials = dict(expected_credentials or {})
        self.create_hosts = create_hosts

    def host_dir(self, host_ref: str) -> Path:
        try:
            return _safe_join(self.target_root, host_ref)
        except ValueError as e:
            raise TransferDestinationInvalidError(f"Invalid host ref {host_ref!r}") from e

    async def send(
        self,
        target: TargetDescriptor,
        credential: SecretValue,
        destination_path: str,
        chunks: AsyncIterator[bytes],
    ) -> None:
        expected = self.expected_credentials.get(target.host_ref)
        if expected is not None and credential.get_secret() != expected:
            raise PermissionError(f"Credential rejected by {target.host_ref}")

        host = self.host_dir(target.host_ref)
        if not await aiofiles.os.path.isdir(host):
            if not self.create_hosts:
                raise ConnectionRefusedError(f"Host {target.host_ref} is not reachable")
            await aiofiles.os.makedirs(host, exist_ok=True)

        try:
            destination = _safe_join(host, destination_path)
        except ValueError as e:
            raise TransferDestinationInvalidError(str(e)) from e
        if await aiofiles.os.path.isdir(destination):
            raise IsADirectoryError(f"Destination is a directory: {destination_path}")

        await aiofiles.os.makedirs(destination.parent, exist_ok=True)
        temporary = destination.with_name(f".{destination.name}.{os.getpid()}.tmp")
        try:
            async with aiofiles.open(temporary, "wb") as fh:
                async for chunk in chunks:
                    await fh.write(chunk)
            await aiofiles.os.replace(temporary, destination)
        except BaseException:
            temporary.unlink(missing_ok=True)
            raise
