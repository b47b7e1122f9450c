"""
In-memory record source for testing.

InMemoryRecordLog stores records per (topic, partition) and hands out
InMemoryRecordSource readers. Useful for:
- Unit tests
- Integration tests of the full pipeline
- Local development without a Kafka cluster

Invariants:
    - All data is lost on process exit
    - Offsets are assigned in increasing order; explicit offsets may leave gaps
    - Readers see the same ordering guarantees as the Kafka source

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with RecordSource protocol
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Dict, List, Optional, Tuple
import logging

from ..errors import RecordSourceError
from .base import StreamRecord

logger = logging.getLogger(__name__)


class InMemoryRecordLog:
    """In-memory partitioned log.

    Example:
        >>> log = InMemoryRecordLog()
        >>> log.append("orders", 0, b"hello")
        >>> source = log.source("orders", 0)
        >>> await source.start(offset=0)
        >>> (await source.poll(1.0)).payload
        b'hello'
    """

    def __init__(self) -> None:
        self._partitions: Dict[Tuple[str, int], List[StreamRecord]] = defaultdict(list)
        self._new_record_events: Dict[Tuple[str, int], asyncio.Event] = defaultdict(asyncio.Event)

    def append(
        self,
        topic: str,
        partition: int,
        payload: Optional[bytes],
        offset: Optional[int] = None,
    ) -> StreamRecord:
        """Append a record, assigning the next offset unless one is given.

        Args:
            topic: Topic name
            partition: Partition number
            payload: Record value, None for a malformed record
            offset: Explicit offset, must be greater than the last one

        Returns:
            The stored record

        Raises:
            ValueError: If offset does not increase
        """
        records = self._partitions[(topic, partition)]
        next_offset = records[-1].offset + 1 if records else 0
        if offset is None:
            offset = next_offset
        elif offset < next_offset:
            raise ValueError(f"Offset {offset} is behind partition head {next_offset}")

        record = StreamRecord(
            topic=topic,
            partition=partition,
            offset=offset,
            payload=payload,
            timestamp_ms=int(time.time() * 1000),
        )
        records.append(record)
        self._new_record_events[(topic, partition)].set()
        return record

    def records(self, topic: str, partition: int) -> List[StreamRecord]:
        """All records of a partition (testing helper)."""
        return list(self._partitions.get((topic, partition), []))

    def source(self, topic: str, partition: int) -> "InMemoryRecordSource":
        """Create a reader; usable directly as a SourceFactory."""
        return InMemoryRecordSource(self, topic, partition)


class InMemoryRecordSource:
    """Reader over one partition of an InMemoryRecordLog."""

    def __init__(self, log: InMemoryRecordLog, topic: str, partition: int) -> None:
        self.topic = topic
        self.partition = partition
        self.start_offset: Optional[int] = None
        self._log = log
        self._key = (topic, partition)
        self._position = 0
        self._closed = False

    async def start(self, offset: int) -> None:
        """Position the reader at the first record with offset >= offset."""
        records = self._log._partitions[self._key]
        self._position = next(
            (i for i, r in enumerate(records) if r.offset >= offset), len(records)
        )
        self.start_offset = offset
        self._closed = False
        logger.debug(
            "In-memory source started",
            extra={"topic": self.topic, "partition": self.partition, "offset": offset},
        )

    async def poll(self, timeout: float) -> Optional[StreamRecord]:
        """Return the next record or None after timeout seconds."""
        if self._closed or self.start_offset is None:
            raise RecordSourceError("Source not started")

        record = self._next()
        if record is not None:
            return record

        event = self._log._new_record_events[self._key]
        event.clear()
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._next()

    async def close(self) -> None:
        self._closed = True

    def _next(self) -> Optional[StreamRecord]:
        records = self._log._partitions[self._key]
        if self._position < len(records):
            record = records[self._position]
            self._position += 1
            return record
        return None
