"""
Unit tests for ChunkUploader.

Tests cover:
- Upload of sealed content under a partition-scoped key
- Empty chunks are never uploaded
- Key collision handling
- Staging file retention
- Error propagation
"""

import asyncio
import tempfile
import time
from unittest.mock import AsyncMock

import pytest

from logvault.blobstore.memory import InMemoryBlobStore
from logvault.chunk.buffer import ChunkBuffer
from logvault.chunk.keys import archive_key
from logvault.chunk.rotation import RotationPolicy
from logvault.chunk.uploader import ChunkUploader
from logvault.errors import BlobStoreError
from logvault.source.base import StreamRecord

BASE_NANOS = 1_714_521_600_000_000_000  # 2024-05-01T00:00:00Z


class SequenceClock:
    """Nanosecond clock returning successive values."""

    def __init__(self, start=BASE_NANOS, step=1_000):
        self.value = start - step
        self.step = step
        self.calls = []

    def __call__(self):
        self.value += self.step
        self.calls.append(self.value)
        return self.value


@pytest.fixture
def staging_dir():
    """Create temporary staging directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store():
    return InMemoryBlobStore()


def make_buffer(staging_dir, payloads=(), start_offset=0):
    policy = RotationPolicy(max_size_bytes=1024, max_age_seconds=3600)
    buffer = ChunkBuffer.create("orders", 0, start_offset, staging_dir, policy)
    for i, payload in enumerate(payloads):
        buffer.append(
            StreamRecord(topic="orders", partition=0, offset=start_offset + i, payload=payload)
        )
    return buffer


class TestChunkUploader:
    """Tests for ChunkUploader."""

    @pytest.mark.asyncio
    async def test_upload_stores_content(self, staging_dir, store):
        """Sealed contents are stored under the archive key."""
        clock = SequenceClock()
        uploader = ChunkUploader(store, clock_ns=clock)
        buffer = make_buffer(staging_dir, [b"a", b"b"], start_offset=5)

        chunk = await uploader.seal_and_upload(buffer)

        assert chunk.key == archive_key("orders", 0, BASE_NANOS)
        assert chunk.key.startswith("orders/p0/2024/05/01/")
        assert chunk.record_count == 2
        assert chunk.first_offset == 5
        assert chunk.last_offset == 6
        assert store.objects[chunk.key].body == b"t_orders-p_0-o_5|a\nt_orders-p_0-o_6|b\n"
        assert chunk.size_bytes == len(store.objects[chunk.key].body)

    @pytest.mark.asyncio
    async def test_upload_is_private_with_content_type(self, staging_dir, store):
        """Objects get the staging extension's content type and a private ACL."""
        uploader = ChunkUploader(store)
        chunk = await uploader.seal_and_upload(make_buffer(staging_dir, [b"a"]))

        stored = store.objects[chunk.key]
        assert stored.content_type == "text/plain"
        assert stored.acl == "private"

    @pytest.mark.asyncio
    async def test_empty_chunk_not_uploaded(self, staging_dir, store):
        """An empty buffer produces no object and is cleaned up."""
        uploader = ChunkUploader(store)
        buffer = make_buffer(staging_dir)

        chunk = await uploader.seal_and_upload(buffer)

        assert chunk is None
        assert store.objects == {}
        assert not buffer.path.exists()

    @pytest.mark.asyncio
    async def test_collision_draws_new_key(self, staging_dir, store):
        """With N existing candidates, the (N+1)-th candidate is used."""
        clock = SequenceClock()
        uploader = ChunkUploader(store, clock_ns=clock)
        store.exists = AsyncMock(side_effect=[True, True, True, False])

        chunk = await uploader.seal_and_upload(make_buffer(staging_dir, [b"a"]))

        assert store.exists.await_count == 4
        assert chunk.collisions == 3
        assert chunk.key == archive_key("orders", 0, clock.calls[3])
        assert list(store.objects) == [chunk.key]

    @pytest.mark.asyncio
    async def test_keys_strictly_increase_with_frozen_clock(self, staging_dir, store):
        """Candidates never repeat even if the clock does not advance."""
        uploader = ChunkUploader(store, clock_ns=lambda: BASE_NANOS)

        first = await uploader.seal_and_upload(make_buffer(staging_dir, [b"a"]))
        second = await uploader.seal_and_upload(make_buffer(staging_dir, [b"b"]))

        assert first.key < second.key

    @pytest.mark.asyncio
    async def test_staging_file_deleted_after_upload(self, staging_dir, store):
        uploader = ChunkUploader(store)
        buffer = make_buffer(staging_dir, [b"a"])

        await uploader.seal_and_upload(buffer)

        assert not buffer.path.exists()

    @pytest.mark.asyncio
    async def test_staging_file_retained_when_configured(self, staging_dir, store):
        uploader = ChunkUploader(store, retain_staging_files=True)
        buffer = make_buffer(staging_dir, [b"a"])

        chunk = await uploader.seal_and_upload(buffer)

        assert buffer.path.exists()
        assert buffer.path.read_bytes() == store.objects[chunk.key].body

    @pytest.mark.asyncio
    async def test_put_failure_propagates(self, staging_dir, store):
        """A failed put is raised and the staging file is kept."""
        uploader = ChunkUploader(store)
        store.put = AsyncMock(side_effect=BlobStoreError("access denied"))
        buffer = make_buffer(staging_dir, [b"a"])

        with pytest.raises(BlobStoreError):
            await uploader.seal_and_upload(buffer)

        assert buffer.path.exists()

    @pytest.mark.asyncio
    async def test_exists_failure_propagates(self, staging_dir, store):
        """A failed existence probe is raised before any put."""
        uploader = ChunkUploader(store)
        store.exists = AsyncMock(side_effect=BlobStoreError("timeout"))
        store.put = AsyncMock()

        with pytest.raises(BlobStoreError):
            await uploader.seal_and_upload(make_buffer(staging_dir, [b"a"]))

        store.put.assert_not_called()

    @pytest.mark.asyncio
    async def test_slow_fsync_does_not_stall_other_partitions(self, staging_dir, store, monkeypatch):
        """Sealing runs in the executor while other coroutines keep running."""
        monkeypatch.setattr("logvault.chunk.buffer.os.fsync", lambda fd: time.sleep(0.5))
        uploader = ChunkUploader(store, clock_ns=SequenceClock())
        buffer = make_buffer(staging_dir, [b"a"])
        ticks = []

        async def other_partition():
            for _ in range(12):
                ticks.append(time.monotonic())
                await asyncio.sleep(0.05)

        chunk, _ = await asyncio.gather(uploader.seal_and_upload(buffer), other_partition())

        gaps = [later - earlier for earlier, later in zip(ticks, ticks[1:])]
        assert chunk.key in store.objects
        assert max(gaps) < 0.2
