"""
Archive key scheme and offset markers.

Archive key:
    <topic>/p<partition>/<YYYY>/<MM>/<DD>/<nanos>

    Date components are the UTC upload date, month and day zero-padded to
    two digits and the nanosecond timestamp to twenty, so the last key in
    an ordered listing is the most recently sealed chunk.

Chunk line:
    t_<topic>-p_<partition>-o_<offset>|<payload>\\n

    The marker is a fixed template per (topic, partition) parameterised
    only by offset, so recovery can find it with a prefix match.

How to change safely:
    - Existing archives must stay recoverable; never change either format
      in place
"""

from __future__ import annotations

from datetime import date, datetime, timezone

MARKER_SEPARATOR = b"|"
RECORD_SEPARATOR = b"\n"

NANOS_PER_SECOND = 1_000_000_000


def partition_prefix(topic: str, partition: int) -> str:
    """Key prefix shared by every chunk of a partition."""
    return f"{topic}/p{partition}/"


def day_prefix(topic: str, partition: int, day: date) -> str:
    """Key prefix of the chunks uploaded on day (UTC)."""
    return f"{partition_prefix(topic, partition)}{day.year:04d}/{day.month:02d}/{day.day:02d}/"


def archive_key(topic: str, partition: int, nanos: int) -> str:
    """Archive key for a chunk uploaded at nanos since the epoch."""
    day = datetime.fromtimestamp(nanos // NANOS_PER_SECOND, tz=timezone.utc).date()
    return f"{day_prefix(topic, partition, day)}{nanos:020d}"


def marker_prefix(topic: str, partition: int) -> bytes:
    """Offset-independent start of every marker for a partition."""
    return f"t_{topic}-p_{partition}-o_".encode("utf-8")


def offset_marker(topic: str, partition: int, offset: int) -> bytes:
    """Marker written before the payload of the record at offset."""
    return marker_prefix(topic, partition) + str(offset).encode("ascii") + MARKER_SEPARATOR


def parse_marker_offset(line: bytes, prefix: bytes) -> int | None:
    """Extract the offset from a chunk line.

    Returns None unless line starts with prefix followed by an unsigned
    decimal offset and the marker separator.
    """
    if not line.startswith(prefix):
        return None
    digits, separator, _ = line[len(prefix):].partition(MARKER_SEPARATOR)
    if not separator or not digits.isdigit():
        return None
    return int(digits)
