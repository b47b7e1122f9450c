"""
Unit tests for offset recovery.

Tests cover:
- Empty archive resumes at offset 0
- Round trip from an uploaded chunk
- Backward scan past malformed trailing lines
- Integrity failure on chunks without markers
- Day narrowing and pagination
"""

import tempfile
from datetime import datetime, timezone

import pytest

from logvault.blobstore.memory import InMemoryBlobStore
from logvault.chunk.buffer import ChunkBuffer
from logvault.chunk.keys import archive_key, day_prefix, partition_prefix
from logvault.chunk.rotation import RotationPolicy
from logvault.chunk.uploader import ChunkUploader
from logvault.errors import RecoveryIntegrityError
from logvault.recovery import OffsetRecovery, last_marker_offset
from logvault.source.base import StreamRecord

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def nanos_on(day, extra_ns=0):
    dt = datetime(2024, 5, day, 8, 0, tzinfo=timezone.utc)
    return int(dt.timestamp()) * 1_000_000_000 + extra_ns


@pytest.fixture
def store():
    return InMemoryBlobStore()


@pytest.fixture
def recovery(store):
    return OffsetRecovery(store, rewind_days=14, clock=NOW.timestamp)


class TestLastMarkerOffset:
    """Tests for the backward line scan."""

    def test_last_line_wins(self):
        content = b"t_orders-p_0-o_1|a\nt_orders-p_0-o_2|b\n"
        assert last_marker_offset(content, "orders", 0) == 2

    def test_skips_malformed_trailing_lines(self):
        content = (
            b"t_orders-p_0-o_3|a\n"
            b"t_orders-p_0-o_4|b\n"
            b"garbage from a torn write\n"
            b"t_orders-p_0-o_5"
        )
        assert last_marker_offset(content, "orders", 0) == 4

    def test_skips_payload_continuation_lines(self):
        """Payload lines after an embedded newline are not markers."""
        content = b"t_orders-p_0-o_8|first\nsecond half\n"
        assert last_marker_offset(content, "orders", 0) == 8

    def test_ignores_other_partitions(self):
        content = b"t_orders-p_0-o_3|a\nt_orders-p_1-o_99|b\n"
        assert last_marker_offset(content, "orders", 0) == 3

    def test_no_marker(self):
        assert last_marker_offset(b"no markers here\n", "orders", 0) is None


class TestOffsetRecovery:
    """Tests for OffsetRecovery."""

    @pytest.mark.asyncio
    async def test_empty_archive_returns_zero(self, recovery):
        """A partition that was never archived resumes at offset 0."""
        position = await recovery.locate("orders", 0)

        assert position.offset == 0
        assert position.key is None

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        """Recovery returns the offset of the last record uploaded."""
        with tempfile.TemporaryDirectory() as staging_dir:
            policy = RotationPolicy(max_size_bytes=1024, max_age_seconds=3600)
            buffer = ChunkBuffer.create("orders", 0, 0, staging_dir, policy)
            buffer.append(StreamRecord(topic="orders", partition=0, offset=12, payload=b"x"))
            buffer.append(StreamRecord(topic="orders", partition=0, offset=31, payload=b"y|z"))
            await ChunkUploader(store).seal_and_upload(buffer)

        assert await OffsetRecovery(store).recover("orders", 0) == 31

    @pytest.mark.asyncio
    async def test_malformed_trailing_line(self, store, recovery):
        """A torn last line does not hide the last valid marker."""
        await store.put(
            archive_key("orders", 0, nanos_on(10)),
            b"t_orders-p_0-o_3|a\nt_orders-p_0-o_4|b\nt_orders-p_0-o_",
        )

        assert await recovery.recover("orders", 0) == 4

    @pytest.mark.asyncio
    async def test_chunk_without_marker_is_integrity_error(self, store, recovery):
        """A non-empty chunk without any marker fails loudly."""
        key = archive_key("orders", 0, nanos_on(10))
        await store.put(key, b"something that is not a chunk\n")

        with pytest.raises(RecoveryIntegrityError) as exc_info:
            await recovery.recover("orders", 0)

        assert exc_info.value.key == key

    @pytest.mark.asyncio
    async def test_uses_latest_chunk(self, store, recovery):
        """The lexicographically last key decides the offset."""
        await store.put(archive_key("orders", 0, nanos_on(10, 1)), b"t_orders-p_0-o_10|a\n")
        await store.put(archive_key("orders", 0, nanos_on(10, 3)), b"t_orders-p_0-o_30|c\n")
        await store.put(archive_key("orders", 0, nanos_on(10, 2)), b"t_orders-p_0-o_20|b\n")

        position = await recovery.locate("orders", 0)

        assert position.offset == 30
        assert position.key == archive_key("orders", 0, nanos_on(10, 3))

    @pytest.mark.asyncio
    async def test_paginates_to_last_key(self):
        """Listing follows continuation markers until the last page."""
        store = InMemoryBlobStore(page_size=2)
        recovery = OffsetRecovery(store, clock=NOW.timestamp)
        for i in range(5):
            await store.put(
                archive_key("orders", 0, nanos_on(10, i)),
                f"t_orders-p_0-o_{i}|x\n".encode(),
            )

        assert await recovery.recover("orders", 0) == 4
        # one narrowing probe, then pages of 2, 2 and 1 keys
        assert store.list_calls.count(day_prefix("orders", 0, NOW.date())) == 4

    @pytest.mark.asyncio
    async def test_narrows_to_most_recent_day(self, store, recovery):
        """Walks back day by day and stops at the newest day with chunks."""
        await store.put(archive_key("orders", 0, nanos_on(1)), b"t_orders-p_0-o_5|old\n")
        await store.put(archive_key("orders", 0, nanos_on(7)), b"t_orders-p_0-o_9|new\n")

        assert await recovery.recover("orders", 0) == 9

        probed = store.list_calls[:4]
        assert probed == [
            "orders/p0/2024/05/10/",
            "orders/p0/2024/05/09/",
            "orders/p0/2024/05/08/",
            "orders/p0/2024/05/07/",
        ]
        assert partition_prefix("orders", 0) not in store.list_calls

    @pytest.mark.asyncio
    async def test_falls_back_beyond_rewind_window(self, store):
        """Chunks older than the rewind window are still found."""
        recovery = OffsetRecovery(store, rewind_days=3, clock=NOW.timestamp)
        await store.put(archive_key("orders", 0, nanos_on(1)), b"t_orders-p_0-o_77|x\n")

        assert await recovery.recover("orders", 0) == 77
        assert store.list_calls[:3] == [
            "orders/p0/2024/05/10/",
            "orders/p0/2024/05/09/",
            "orders/p0/2024/05/08/",
        ]
        assert store.list_calls[3] == partition_prefix("orders", 0)

    @pytest.mark.asyncio
    async def test_partitions_are_isolated(self, store, recovery):
        """Chunks of partition 10 never count for partition 1."""
        await store.put(archive_key("orders", 10, nanos_on(10)), b"t_orders-p_10-o_500|x\n")

        assert await recovery.recover("orders", 1) == 0
        assert await recovery.recover("orders", 10) == 500
