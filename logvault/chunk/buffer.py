"""
Local staging buffer for one open chunk.

A ChunkBuffer owns a single staging file and accumulates the records of
one partition in it, each line prefixed with its offset marker. The
buffer tracks its own byte length so size checks never stat the file.

Invariants:
    - Owned by exactly one pipeline; no other task reads or writes it
    - size_bytes equals the exact number of bytes written
    - Once sealed, the buffer rejects further appends
    - Every OSError surfaces as StagingError

How to change safely:
    - The staging file name carries topic, partition and start offset to
      help operators; tooling may rely on the prefix
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Callable

from ..errors import StagingError
from ..source.base import StreamRecord
from .keys import RECORD_SEPARATOR, offset_marker
from .rotation import RotationPolicy

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".txt"


class ChunkBuffer:
    """An open chunk staged in a local file.

    Attributes:
        topic: Topic of the chunk
        partition: Partition of the chunk
        start_offset: Offset the chunk was seeded at
        path: Staging file path
        created_at: Creation time (clock seconds)
        deadline: Time at which the chunk becomes too old
        size_bytes: Bytes written so far
        record_count: Records written so far
        first_offset: Offset of the first record written, None if empty
        last_offset: Offset of the last record written, None if empty

    Example:
        >>> buffer = ChunkBuffer.create("orders", 0, 42, "/tmp/staging", policy)
        >>> buffer.append(record)
        >>> buffer.needs_rotation()
        False
    """

    def __init__(
        self,
        topic: str,
        partition: int,
        start_offset: int,
        path: Path,
        file: BinaryIO,
        policy: RotationPolicy,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.topic = topic
        self.partition = partition
        self.start_offset = start_offset
        self.path = path
        self.policy = policy
        self.created_at = clock()
        self.deadline = policy.deadline(self.created_at)
        self.size_bytes = 0
        self.record_count = 0
        self.first_offset: int | None = None
        self.last_offset: int | None = None
        self._file = file
        self._clock = clock
        self._sealed = False

    @classmethod
    def create(
        cls,
        topic: str,
        partition: int,
        start_offset: int,
        staging_dir: str | Path,
        policy: RotationPolicy,
        clock: Callable[[], float] = time.time,
    ) -> ChunkBuffer:
        """Open a new staging file in staging_dir.

        Raises:
            StagingError: If the file cannot be created
        """
        prefix = f"logvault-buffer-topic_{topic}-partition_{partition}-offset_{start_offset}-"
        try:
            fd, name = tempfile.mkstemp(prefix=prefix, suffix=STAGING_SUFFIX, dir=str(staging_dir))
            file = os.fdopen(fd, "wb")
        except OSError as e:
            raise StagingError(f"Cannot create buffer file in {staging_dir}: {e}") from e

        logger.debug(
            "Opened buffer file",
            extra={"topic": topic, "partition": partition, "offset": start_offset, "path": name},
        )
        return cls(topic, partition, start_offset, Path(name), file, policy, clock)

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def is_empty(self) -> bool:
        return self.record_count == 0

    def append(self, record: StreamRecord) -> int:
        """Write marker, payload and separator for record.

        Returns:
            Number of bytes written

        Raises:
            ValueError: If the record belongs to another partition or has no payload
            StagingError: If the buffer is sealed or the write fails
        """
        if (record.topic, record.partition) != (self.topic, self.partition):
            raise ValueError(f"Record {record} does not belong to {self.topic}:{self.partition}")
        if record.payload is None:
            raise ValueError(f"Record {record} has no payload")
        if self._sealed:
            raise StagingError(f"Buffer {self.path} is sealed")

        line = offset_marker(self.topic, self.partition, record.offset) + record.payload + RECORD_SEPARATOR
        try:
            self._file.write(line)
            self._file.flush()
        except OSError as e:
            raise StagingError(f"Cannot write buffer file {self.path}: {e}") from e

        self.size_bytes += len(line)
        self.record_count += 1
        if self.first_offset is None:
            self.first_offset = record.offset
        self.last_offset = record.offset
        return len(line)

    def too_big(self) -> bool:
        return self.policy.is_too_big(self.size_bytes)

    def too_old(self) -> bool:
        return self._clock() >= self.deadline

    def needs_rotation(self) -> bool:
        return self.too_big() or self.too_old()

    def seal(self) -> None:
        """Flush to disk and close the staging file for writing."""
        if self._sealed:
            return
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
        except OSError as e:
            raise StagingError(f"Cannot seal buffer file {self.path}: {e}") from e
        self._sealed = True

    def read_contents(self) -> bytes:
        """Read back the sealed staging file."""
        if not self._sealed:
            raise StagingError(f"Buffer {self.path} must be sealed before reading")
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise StagingError(f"Cannot read buffer file {self.path}: {e}") from e

    def discard(self) -> None:
        """Delete the staging file."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StagingError(f"Cannot delete buffer file {self.path}: {e}") from e
        logger.debug("Deleted buffer file", extra={"path": str(self.path)})

    def __str__(self) -> str:
        return f"ChunkBuffer({self.topic}:{self.partition}, {self.record_count} records, {self.size_bytes} bytes)"
