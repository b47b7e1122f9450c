"""
Unit tests for the archive key scheme and offset markers.

Tests cover:
- Key layout and zero padding
- Lexicographic ordering by upload time
- Marker construction and parsing
"""

from datetime import date, datetime, timezone

from logvault.chunk.keys import (
    archive_key,
    day_prefix,
    marker_prefix,
    offset_marker,
    parse_marker_offset,
    partition_prefix,
)


def nanos_at(year, month, day, hour=0, extra_ns=0):
    dt = datetime(year, month, day, hour, tzinfo=timezone.utc)
    return int(dt.timestamp()) * 1_000_000_000 + extra_ns


class TestArchiveKey:
    """Tests for archive key generation."""

    def test_key_layout(self):
        """Key is topic/p<partition>/YYYY/MM/DD/<nanos>."""
        nanos = nanos_at(2024, 3, 7, extra_ns=42)
        key = archive_key("orders", 3, nanos)

        assert key == f"orders/p3/2024/03/07/{nanos:020d}"

    def test_key_starts_with_day_and_partition_prefix(self):
        """Key falls under its partition and day prefixes."""
        nanos = nanos_at(2024, 12, 31, hour=23)
        key = archive_key("orders", 0, nanos)

        assert key.startswith(partition_prefix("orders", 0))
        assert key.startswith(day_prefix("orders", 0, date(2024, 12, 31)))

    def test_keys_sort_by_time(self):
        """Later uploads sort after earlier ones, across day and month boundaries."""
        times = [
            nanos_at(2024, 1, 9, hour=23),
            nanos_at(2024, 1, 10),
            nanos_at(2024, 1, 10, extra_ns=1),
            nanos_at(2024, 2, 1),
            nanos_at(2025, 1, 1),
        ]
        keys = [archive_key("orders", 0, t) for t in times]

        assert keys == sorted(keys)

    def test_partition_prefixes_do_not_overlap(self):
        """Partition 1 prefix does not match partition 10 keys."""
        key = archive_key("orders", 10, nanos_at(2024, 1, 1))

        assert not key.startswith(partition_prefix("orders", 1))


class TestOffsetMarker:
    """Tests for offset markers."""

    def test_marker_format(self):
        """Marker is t_<topic>-p_<partition>-o_<offset>|."""
        assert offset_marker("orders", 0, 17) == b"t_orders-p_0-o_17|"

    def test_marker_shares_partition_prefix(self):
        """Every marker of a partition starts with the same prefix."""
        prefix = marker_prefix("orders", 2)
        for offset in (0, 9, 10, 123456789):
            assert offset_marker("orders", 2, offset).startswith(prefix)

    def test_parse_valid_line(self):
        """Offset is extracted from a full chunk line."""
        prefix = marker_prefix("orders", 0)
        assert parse_marker_offset(b"t_orders-p_0-o_42|payload|with|pipes", prefix) == 42

    def test_parse_rejects_other_partition(self):
        """Lines of another partition do not match."""
        prefix = marker_prefix("orders", 1)
        assert parse_marker_offset(b"t_orders-p_10-o_42|x", prefix) is None

    def test_parse_rejects_partial_marker(self):
        """A marker cut off before its separator does not match."""
        prefix = marker_prefix("orders", 0)
        assert parse_marker_offset(b"t_orders-p_0-o_42", prefix) is None
        assert parse_marker_offset(b"t_orders-p_0-o_", prefix) is None

    def test_parse_rejects_non_numeric_offset(self):
        """Offsets must be unsigned decimal integers."""
        prefix = marker_prefix("orders", 0)
        assert parse_marker_offset(b"t_orders-p_0-o_-1|x", prefix) is None
        assert parse_marker_offset(b"t_orders-p_0-o_4a|x", prefix) is None
        assert parse_marker_offset(b"t_orders-p_0-o_|x", prefix) is None
