"""
Offset recovery from the archive.

On startup each pipeline asks where its partition's archive ends. The
answer comes from the archive alone:

1. Narrow the listing to the most recent day (UTC) that has chunks,
   walking back at most rewind_days days from today.
2. Page through that prefix to find its lexicographically last key,
   which by the key scheme is the most recently sealed chunk.
3. Fetch that chunk and scan its lines backward for the last well-formed
   offset marker.

No archived chunk means the partition was never archived and consumption
starts at offset 0. A chunk without any valid marker is corruption or a
format mismatch and raises RecoveryIntegrityError.

Invariants:
    - The recovered offset is the highest offset durably archived
    - Resuming at that offset re-delivers it; readers dedupe by marker

How to change safely:
    - The rewind window assumes every active partition uploads at least
      one chunk per window; raise it for very quiet topics
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .blobstore.base import BlobStore
from .chunk.keys import RECORD_SEPARATOR, day_prefix, marker_prefix, parse_marker_offset, partition_prefix
from .errors import RecoveryIntegrityError

logger = logging.getLogger(__name__)

DEFAULT_REWIND_DAYS = 14


@dataclass(frozen=True)
class RecoveredPosition:
    """Where a partition's archive ends.

    Attributes:
        topic: Topic name
        partition: Partition number
        offset: Offset to resume consuming from
        key: Last archived chunk key, None if nothing was archived
    """
    topic: str
    partition: int
    offset: int
    key: Optional[str] = None


def last_marker_offset(content: bytes, topic: str, partition: int) -> Optional[int]:
    """Offset of the last well-formed marker line in a chunk, scanning backward."""
    prefix = marker_prefix(topic, partition)
    for line in reversed(content.split(RECORD_SEPARATOR)):
        offset = parse_marker_offset(line, prefix)
        if offset is not None:
            return offset
    return None


class OffsetRecovery:
    """Recovers per-partition resume offsets from archived chunks.

    Attributes:
        blob_store: Store holding the archive
        rewind_days: Days to walk back while narrowing the listing

    Example:
        >>> recovery = OffsetRecovery(store)
        >>> await recovery.recover("orders", 0)
        4
    """

    def __init__(
        self,
        blob_store: BlobStore,
        rewind_days: int = DEFAULT_REWIND_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.blob_store = blob_store
        self.rewind_days = rewind_days
        self._clock = clock

    async def recover(self, topic: str, partition: int) -> int:
        """Offset to resume consuming topic/partition from.

        Raises:
            BlobStoreError: If listing or fetching fails
            RecoveryIntegrityError: If the last chunk has no valid marker
        """
        position = await self.locate(topic, partition)
        return position.offset

    async def locate(self, topic: str, partition: int) -> RecoveredPosition:
        """Find the last archived chunk and the offset it ends at."""
        key = await self.find_last_key(topic, partition)
        if key is None:
            logger.info(
                "No archived chunks, starting from offset 0",
                extra={"topic": topic, "partition": partition},
            )
            return RecoveredPosition(topic=topic, partition=partition, offset=0)

        content = await self.blob_store.get(key)
        offset = last_marker_offset(content, topic, partition)
        if offset is None:
            raise RecoveryIntegrityError(
                key,
                f"No offset marker for {topic}:{partition} in {len(content)} byte chunk",
            )

        logger.info(
            "Recovered offset from archive",
            extra={"topic": topic, "partition": partition, "offset": offset, "key": key},
        )
        return RecoveredPosition(topic=topic, partition=partition, offset=offset, key=key)

    async def find_last_key(self, topic: str, partition: int) -> Optional[str]:
        """Lexicographically last archive key of a partition, or None."""
        prefix = await self._narrow_prefix(topic, partition)

        last_key: Optional[str] = None
        marker: Optional[str] = None
        while True:
            page = await self.blob_store.list(prefix, marker=marker)
            if not page.keys:
                break
            last_key = page.last_key
            marker = last_key
            if not page.truncated:
                break

        return last_key

    async def _narrow_prefix(self, topic: str, partition: int) -> str:
        """Most recent day prefix with chunks, or the partition prefix."""
        today = datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()
        for days_back in range(self.rewind_days):
            prefix = day_prefix(topic, partition, today - timedelta(days=days_back))
            page = await self.blob_store.list(prefix, max_keys=1)
            if page.keys:
                logger.debug(
                    "Narrowed recovery listing",
                    extra={"topic": topic, "partition": partition, "prefix": prefix},
                )
                return prefix

        logger.warning(
            "No chunks within rewind window, listing whole partition",
            extra={"topic": topic, "partition": partition, "rewind_days": self.rewind_days},
        )
        return partition_prefix(topic, partition)
