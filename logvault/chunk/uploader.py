"""
Chunk uploader for logvault.

Seals a ChunkBuffer, picks a free archive key for it and uploads its
bytes to the blob store.

Invariants:
    - Empty chunks are never uploaded; an empty object would break the
      "last key holds the last offset" recovery rule
    - A chunk is uploaded whole or not at all
    - Archive keys drawn by one uploader strictly increase
    - Blob store and staging failures propagate to the pipeline; a
      skipped upload would let recovery regress

How to change safely:
    - Never retry-and-continue past a failed put; crash and let recovery
      resume from the archive instead
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import time
from dataclasses import dataclass
from typing import Callable

from ..blobstore.base import BlobStore
from .buffer import ChunkBuffer
from .keys import archive_key

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_ACL = "private"


@dataclass(frozen=True)
class ArchivedChunk:
    """An uploaded chunk.

    Attributes:
        topic: Topic of the chunk
        partition: Partition of the chunk
        key: Archive key the chunk was stored under
        size_bytes: Uploaded size in bytes
        record_count: Number of records in the chunk
        first_offset: First record offset in the chunk
        last_offset: Last record offset in the chunk
        collisions: Candidate keys rejected because they already existed
    """

    topic: str
    partition: int
    key: str
    size_bytes: int
    record_count: int
    first_offset: int | None
    last_offset: int | None
    collisions: int = 0


def content_type_for(buffer: ChunkBuffer) -> str:
    """Content type derived from the staging file extension."""
    content_type, _ = mimetypes.guess_type(buffer.path.name)
    return content_type or DEFAULT_CONTENT_TYPE


class ChunkUploader:
    """Uploads sealed chunks to the blob store.

    Attributes:
        blob_store: Destination store
        retain_staging_files: Keep staging files after upload for inspection

    Example:
        >>> uploader = ChunkUploader(store)
        >>> chunk = await uploader.seal_and_upload(buffer)
        >>> chunk.key
        'orders/p0/2024/05/01/01714521600000000000'
    """

    def __init__(
        self,
        blob_store: BlobStore,
        retain_staging_files: bool = False,
        clock_ns: Callable[[], int] = time.time_ns,
    ) -> None:
        self.blob_store = blob_store
        self.retain_staging_files = retain_staging_files
        self._clock_ns = clock_ns
        self._last_nanos = 0

    def _next_nanos(self) -> int:
        nanos = max(self._clock_ns(), self._last_nanos + 1)
        self._last_nanos = nanos
        return nanos

    async def _free_key(self, topic: str, partition: int) -> tuple[str, int]:
        collisions = 0
        key = archive_key(topic, partition, self._next_nanos())
        while await self.blob_store.exists(key):
            collisions += 1
            logger.warning(
                "Archive key already exists, drawing a new one",
                extra={"key": key, "topic": topic, "partition": partition},
            )
            key = archive_key(topic, partition, self._next_nanos())
        return key, collisions

    async def seal_and_upload(self, buffer: ChunkBuffer) -> ArchivedChunk | None:
        """Seal buffer and upload its contents.

        Args:
            buffer: The chunk to archive; must not be appended to afterwards

        Returns:
            ArchivedChunk, or None if the chunk was empty and nothing was uploaded

        Raises:
            StagingError: If the staging file cannot be sealed, read or deleted
            BlobStoreError: If the existence probe or the put fails
        """
        # Staging file I/O runs in the executor, never on the event loop
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, buffer.seal)
        content = await loop.run_in_executor(None, buffer.read_contents)

        if not content:
            logger.debug(
                "Skipping upload of empty chunk",
                extra={"topic": buffer.topic, "partition": buffer.partition},
            )
            await self._release(buffer)
            return None

        key, collisions = await self._free_key(buffer.topic, buffer.partition)
        await self.blob_store.put(
            key,
            content,
            content_type=content_type_for(buffer),
            acl=DEFAULT_ACL,
        )

        chunk = ArchivedChunk(
            topic=buffer.topic,
            partition=buffer.partition,
            key=key,
            size_bytes=len(content),
            record_count=buffer.record_count,
            first_offset=buffer.first_offset,
            last_offset=buffer.last_offset,
            collisions=collisions,
        )

        logger.info(
            "Uploaded chunk",
            extra={
                "topic": chunk.topic,
                "partition": chunk.partition,
                "key": chunk.key,
                "records": chunk.record_count,
                "size_bytes": chunk.size_bytes,
                "first_offset": chunk.first_offset,
                "last_offset": chunk.last_offset,
            },
        )

        await self._release(buffer)
        return chunk

    async def _release(self, buffer: ChunkBuffer) -> None:
        if self.retain_staging_files:
            logger.info("Keeping buffer file", extra={"path": str(buffer.path)})
            return
        await asyncio.get_event_loop().run_in_executor(None, buffer.discard)
