"""
Base protocol and types for the record source abstraction.

A record source delivers the records of exactly one (topic, partition)
in offset order, starting from an explicit offset. Sources never commit
offsets anywhere: the resume point is recovered from the archive.

Invariants:
    - Records are delivered in offset order within a partition
    - Offsets may have gaps, never go backwards
    - poll() never blocks longer than the given timeout

How to change safely:
    - Protocol changes require updating all implementations
    - Keep poll() bounded, shutdown is only observed between polls
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamRecord:
    """A record read from one partition.

    Attributes:
        topic: Topic name
        partition: Partition number
        offset: Offset within the partition
        payload: Record value, None when the record is malformed (tombstone,
            undecodable message) and must be skipped
        timestamp_ms: Broker timestamp in milliseconds
    """
    topic: str
    partition: int
    offset: int
    payload: Optional[bytes]
    timestamp_ms: int = 0

    @property
    def is_malformed(self) -> bool:
        return self.payload is None

    def __str__(self) -> str:
        return f"{self.topic}:{self.partition}:{self.offset}"


@runtime_checkable
class RecordSource(Protocol):
    """Protocol for per-partition record sources.

    Example:
        >>> source = factory("orders", 0)
        >>> await source.start(offset=42)
        >>> record = await source.poll(timeout=1.0)
        >>> await source.close()
    """

    topic: str
    partition: int

    @abstractmethod
    async def start(self, offset: int) -> None:
        """Connect and position the source at offset.

        The record at offset (if it still exists) is the first one returned.

        Raises:
            RecordSourceConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def poll(self, timeout: float) -> Optional[StreamRecord]:
        """Return the next record, or None if none arrived within timeout.

        Raises:
            RecordSourceError: For unrecoverable source errors
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections. Safe to call more than once."""
        ...


# Builds an unstarted source for (topic, partition).
SourceFactory = Callable[[str, int], RecordSource]
