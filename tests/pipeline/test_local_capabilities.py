"""Tests for the artifact store and the local-filesystem capabilities."""

import asyncio

import pytest

from filemover.core.errors import ArtifactTooLargeError, GenerationFailedError, TransferDestinationInvalidError
from filemover.core.hashing import StreamingHash, compute_hash
from filemover.core.secrets import SecretValue
from filemover.pipeline.artifacts import LocalArtifactStore
from filemover.pipeline.capabilities import ArtifactGenerator, TransferClient
from filemover.pipeline.local import FileSourceGenerator, LocalDirectoryTransferClient
from tests._support.fakes import target


async def stream(*parts):
    for part in parts:
        yield part


async def collect(chunks):
    return b"".join([c async for c in chunks])


# ── Artifact store ───────────────────────────────────────────────────────


class TestLocalArtifactStore:
    @pytest.mark.asyncio
    async def test_write_read_round_trip(self, artifacts):
        stored = await artifacts.write("job-1", stream(b"hello ", b"", b"world"))

        assert stored.size == 11
        assert stored.content_hash == compute_hash(b"hello world")
        assert stored.location.endswith("job-1/artifact")
        assert await artifacts.exists(stored.location)
        assert await collect(artifacts.read(stored.location)) == b"hello world"

    @pytest.mark.asyncio
    async def test_read_uses_chunk_size(self, artifacts):
        stored = await artifacts.write("job-1", stream(b"x" * 40))
        sizes = [len(c) async for c in artifacts.read(stored.location)]
        assert sizes == [16, 16, 8]

    @pytest.mark.asyncio
    async def test_size_ceiling(self, tmp_path):
        store = LocalArtifactStore(tmp_path, max_bytes=10)
        with pytest.raises(ArtifactTooLargeError) as exc:
            await store.write("job-1", stream(b"123456", b"789012"))
        assert exc.value.retryable is False
        assert list((tmp_path / "job-1").iterdir()) == []

    @pytest.mark.asyncio
    async def test_exactly_at_ceiling(self, tmp_path):
        store = LocalArtifactStore(tmp_path, max_bytes=10)
        stored = await store.write("job-1", stream(b"12345", b"67890"))
        assert stored.size == 10

    @pytest.mark.asyncio
    async def test_failed_stream_leaves_nothing(self, artifacts):
        async def broken():
            yield b"partial"
            raise OSError("source vanished")

        with pytest.raises(OSError):
            await artifacts.write("job-1", broken())
        assert not await artifacts.exists(str(artifacts.location_for("job-1")))
        assert not artifacts.location_for("job-1").with_name("artifact.part").exists()

    @pytest.mark.asyncio
    async def test_delete(self, artifacts):
        stored = await artifacts.write("job-1", stream(b"data"))
        assert await artifacts.delete("job-1") is True
        assert not await artifacts.exists(stored.location)
        assert await artifacts.delete("job-1") is False

    @pytest.mark.asyncio
    async def test_write_does_not_block_the_loop(self, artifacts):
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0)

        async def eager():
            for _ in range(5):
                yield b"x" * 8

        task = asyncio.create_task(ticker())
        try:
            stored = await artifacts.write("job-1", eager())
            assert await collect(artifacts.read(stored.location)) == b"x" * 40
        finally:
            task.cancel()
        assert ticks >= 5

    @pytest.mark.parametrize("job_id", ["", "..", "a/b"])
    def test_rejects_unusable_job_ids(self, artifacts, job_id):
        with pytest.raises(GenerationFailedError):
            artifacts.location_for(job_id)


def test_streaming_hash_counts_bytes():
    digest = StreamingHash()
    digest.update(b"hello ")
    digest.update(b"world")
    assert digest.size == 11
    assert digest.hexdigest() == compute_hash(b"hello world")


# ── FileSourceGenerator ──────────────────────────────────────────────────


class TestFileSourceGenerator:
    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(FileSourceGenerator(tmp_path), ArtifactGenerator)

    @pytest.mark.asyncio
    async def test_streams_file(self, tmp_path):
        (tmp_path / "exports").mkdir()
        (tmp_path / "exports" / "daily.csv").write_bytes(b"a" * 10)
        generator = FileSourceGenerator(tmp_path, chunk_size=4)

        chunks = [c async for c in generator.generate("exports/daily.csv")]
        assert [len(c) for c in chunks] == [4, 4, 2]

    @pytest.mark.asyncio
    async def test_missing_source_is_permanent(self, tmp_path):
        with pytest.raises(GenerationFailedError):
            await collect(FileSourceGenerator(tmp_path).generate("nope.csv"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["../etc/passwd", "/etc/passwd", ""])
    async def test_escaping_paths_rejected(self, tmp_path, path):
        with pytest.raises(GenerationFailedError):
            await collect(FileSourceGenerator(tmp_path).generate(path))


# ── LocalDirectoryTransferClient ─────────────────────────────────────────


class TestLocalDirectoryTransferClient:
    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(LocalDirectoryTransferClient(tmp_path), TransferClient)

    @pytest.mark.asyncio
    async def test_writes_under_host_dir(self, tmp_path):
        client = LocalDirectoryTransferClient(tmp_path)
        await client.send(target("a"), SecretValue("x"), "inbox/daily.csv", stream(b"one,", b"two"))

        written = tmp_path / "a.example.com" / "inbox" / "daily.csv"
        assert written.read_bytes() == b"one,two"
        assert [p.name for p in written.parent.iterdir()] == ["daily.csv"]

    @pytest.mark.asyncio
    async def test_overwrites_existing_file(self, tmp_path):
        client = LocalDirectoryTransferClient(tmp_path)
        await client.send(target("a"), SecretValue("x"), "daily.csv", stream(b"old"))
        await client.send(target("a"), SecretValue("x"), "daily.csv", stream(b"new"))
        assert (tmp_path / "a.example.com" / "daily.csv").read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_wrong_credential(self, tmp_path):
        client = LocalDirectoryTransferClient(tmp_path, expected_credentials={"a.example.com": "right"})
        with pytest.raises(PermissionError):
            await client.send(target("a"), SecretValue("wrong"), "daily.csv", stream(b"x"))

    @pytest.mark.asyncio
    async def test_unreachable_host(self, tmp_path):
        client = LocalDirectoryTransferClient(tmp_path, create_hosts=False)
        with pytest.raises(ConnectionRefusedError):
            await client.send(target("a"), SecretValue("x"), "daily.csv", stream(b"x"))

    @pytest.mark.asyncio
    async def test_destination_is_directory(self, tmp_path):
        (tmp_path / "a.example.com" / "inbox").mkdir(parents=True)
        client = LocalDirectoryTransferClient(tmp_path)
        with pytest.raises(IsADirectoryError):
            await client.send(target("a"), SecretValue("x"), "inbox", stream(b"x"))

    @pytest.mark.asyncio
    async def test_escaping_destination(self, tmp_path):
        client = LocalDirectoryTransferClient(tmp_path)
        with pytest.raises(TransferDestinationInvalidError):
            await client.send(target("a"), SecretValue("x"), "../escape.csv", stream(b"x"))
