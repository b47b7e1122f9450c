"""
Per-partition archive pipelines and their supervisor.

A PartitionPipeline drains one partition into chunks:

    RECOVERING -> STREAMING -> ROTATING -> STREAMING ... -> DRAINING -> STOPPED

The PipelineSupervisor runs one pipeline per configured partition as an
asyncio task and joins on all of them.

Invariants:
    - Records are appended in the order the source delivers them
    - The replacement chunk exists before the old chunk's upload starts
    - At most one upload is in flight per pipeline
    - Staging file creation, fsync, reads and deletes run in the default
      executor; the event loop only awaits them
    - Shutdown is observed at poll boundaries; the open chunk is always
      uploaded before the pipeline stops, so no pipeline dies mid-upload
    - Malformed records are counted and skipped, never fatal
    - Any other error ends the pipeline and, through the supervisor, the
      process; restart is safe because recovery reads the archive

How to change safely:
    - Keep the source poll bounded, it is the only place shutdown is seen
    - Age rotation is traffic gated: an idle partition is not rotated
      until its next record arrives
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from .blobstore.base import BlobStore
from .chunk.buffer import ChunkBuffer
from .chunk.rotation import RotationPolicy
from .chunk.uploader import ChunkUploader
from .config import ArchiverConfig, ChunkConfig, PartitionAssignment
from .errors import PipelineFailedError, StagingError
from .recovery import OffsetRecovery
from .source.base import RecordSource, SourceFactory, StreamRecord

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Lifecycle states of a partition pipeline."""

    CREATED = "created"
    RECOVERING = "recovering"
    STREAMING = "streaming"
    ROTATING = "rotating"
    DRAINING = "draining"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class PipelineStats:
    """Counters reported by a pipeline.

    Attributes:
        topic: Topic name
        partition: Partition number
        start_offset: Offset recovered at startup
        last_offset: Offset of the last record appended
        consumed: Records appended to chunks
        skipped: Malformed records skipped
        chunks_uploaded: Chunks uploaded to the blob store
        bytes_uploaded: Bytes uploaded to the blob store
        last_key: Archive key of the most recent upload
    """

    topic: str
    partition: int
    start_offset: int | None = None
    last_offset: int | None = None
    consumed: int = 0
    skipped: int = 0
    chunks_uploaded: int = 0
    bytes_uploaded: int = 0
    last_key: str | None = None

    def to_dict(self) -> dict[str, int | str | None]:
        return {
            "topic": self.topic,
            "partition": self.partition,
            "start_offset": self.start_offset,
            "last_offset": self.last_offset,
            "consumed": self.consumed,
            "skipped": self.skipped,
            "chunks_uploaded": self.chunks_uploaded,
            "bytes_uploaded": self.bytes_uploaded,
            "last_key": self.last_key,
        }


class PartitionPipeline:
    """Archives one partition until shutdown.

    Attributes:
        topic: Topic name
        partition: Partition number
        state: Current lifecycle state
        stats: Live counters

    Example:
        >>> pipeline = PartitionPipeline("orders", 0, source, store, config.chunk, shutdown)
        >>> stats = await pipeline.run()
    """

    def __init__(
        self,
        topic: str,
        partition: int,
        source: RecordSource,
        blob_store: BlobStore,
        config: ChunkConfig,
        shutdown: asyncio.Event,
        clock: Callable[[], float] = time.time,
        clock_ns: Callable[[], int] = time.time_ns,
    ) -> None:
        self.topic = topic
        self.partition = partition
        self.source = source
        self.config = config
        self.state = PipelineState.CREATED
        self.stats = PipelineStats(topic=topic, partition=partition)

        self._shutdown = shutdown
        self._clock = clock
        self._policy = RotationPolicy.from_config(config)
        self._recovery = OffsetRecovery(blob_store, config.recovery_rewind_days, clock)
        self._uploader = ChunkUploader(blob_store, config.retain_staging_files, clock_ns)
        self._buffer: ChunkBuffer | None = None

    def _transition(self, state: PipelineState) -> None:
        logger.debug(
            "Pipeline state change",
            extra={
                "topic": self.topic,
                "partition": self.partition,
                "from": self.state.value,
                "to": state.value,
            },
        )
        self.state = state

    async def _new_buffer(self, start_offset: int) -> ChunkBuffer:
        return await asyncio.get_event_loop().run_in_executor(
            None,
            ChunkBuffer.create,
            self.topic,
            self.partition,
            start_offset,
            self.config.staging_dir,
            self._policy,
            self._clock,
        )

    async def run(self) -> PipelineStats:
        """Recover, stream until shutdown, drain, and report counters.

        Raises:
            BlobStoreError, StagingError, RecoveryIntegrityError, RecordSourceError:
                Fatal errors, after the source is closed
        """
        try:
            await self._recover()
            await self._stream()
            await self._drain()
        except BaseException:
            self._transition(PipelineState.FAILED)
            self._abandon_buffer()
            raise
        finally:
            await self.source.close()

        self._transition(PipelineState.STOPPED)
        logger.info("Pipeline stopped", extra=self.stats.to_dict())
        return self.stats

    async def _recover(self) -> None:
        self._transition(PipelineState.RECOVERING)
        offset = await self._recovery.recover(self.topic, self.partition)
        self.stats.start_offset = offset
        await self.source.start(offset)
        self._buffer = await self._new_buffer(offset)
        logger.info(
            "Pipeline resuming",
            extra={"topic": self.topic, "partition": self.partition, "offset": offset},
        )

    async def _stream(self) -> None:
        self._transition(PipelineState.STREAMING)
        while not self._shutdown.is_set():
            record = await self.source.poll(self.config.poll_interval_seconds)
            if record is None:
                continue
            await self._handle(record)

    async def _handle(self, record: StreamRecord) -> None:
        if record.is_malformed:
            self.stats.skipped += 1
            logger.warning(
                "Skipping malformed record",
                extra={"topic": self.topic, "partition": self.partition, "offset": record.offset},
            )
            return

        self._buffer.append(record)
        self.stats.consumed += 1
        self.stats.last_offset = record.offset

        if self._buffer.needs_rotation():
            await self._rotate(record.offset)

    async def _rotate(self, offset: int) -> None:
        self._transition(PipelineState.ROTATING)
        sealed, self._buffer = self._buffer, await self._new_buffer(offset)
        await self._upload(sealed)
        self._transition(PipelineState.STREAMING)

    async def _drain(self) -> None:
        self._transition(PipelineState.DRAINING)
        buffer, self._buffer = self._buffer, None
        if buffer is not None:
            await self._upload(buffer)

    async def _upload(self, buffer: ChunkBuffer) -> None:
        chunk = await self._uploader.seal_and_upload(buffer)
        if chunk is None:
            return
        self.stats.chunks_uploaded += 1
        self.stats.bytes_uploaded += chunk.size_bytes
        self.stats.last_key = chunk.key

    def _abandon_buffer(self) -> None:
        # Leave the staging file on disk; recovery resumes from the archive.
        buffer, self._buffer = self._buffer, None
        if buffer is None:
            return
        try:
            buffer.seal()
            if buffer.is_empty:
                buffer.discard()
                return
        except StagingError as e:
            logger.warning(f"Could not release abandoned buffer {buffer.path}: {e}")
            return
        logger.warning(
            "Abandoned open buffer",
            extra={
                "topic": self.topic,
                "partition": self.partition,
                "path": str(buffer.path),
                "records": buffer.record_count,
            },
        )


class PipelineSupervisor:
    """Runs one PartitionPipeline per configured partition.

    Attributes:
        config: Archiver configuration
        pipelines: Pipelines of the current run, in configuration order

    Example:
        >>> supervisor = PipelineSupervisor(config, kafka_source_factory(config.kafka), store)
        >>> stats = await supervisor.run(shutdown_event)
    """

    def __init__(
        self,
        config: ArchiverConfig,
        source_factory: SourceFactory,
        blob_store: BlobStore,
        clock: Callable[[], float] = time.time,
        clock_ns: Callable[[], int] = time.time_ns,
    ) -> None:
        self.config = config
        self.source_factory = source_factory
        self.blob_store = blob_store
        self.pipelines: list[PartitionPipeline] = []
        self._clock = clock
        self._clock_ns = clock_ns

    @property
    def stats(self) -> list[PipelineStats]:
        """Live counters of every pipeline."""
        return [pipeline.stats for pipeline in self.pipelines]

    def _prepare_staging_dir(self) -> None:
        staging_dir = Path(self.config.chunk.staging_dir)
        try:
            staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StagingError(f"Cannot create staging directory {staging_dir}: {e}") from e

    def _build(self, assignment: PartitionAssignment, shutdown: asyncio.Event) -> PartitionPipeline:
        return PartitionPipeline(
            topic=assignment.topic,
            partition=assignment.partition,
            source=self.source_factory(assignment.topic, assignment.partition),
            blob_store=self.blob_store,
            config=self.config.chunk,
            shutdown=shutdown,
            clock=self._clock,
            clock_ns=self._clock_ns,
        )

    async def run(self, shutdown: asyncio.Event) -> list[PipelineStats]:
        """Run every pipeline until shutdown is set and all have drained.

        Returns:
            Stats of every pipeline in configuration order

        Raises:
            StagingError: If the staging directory cannot be created
            PipelineFailedError: If any pipeline fails; the others are
                asked to drain first
        """
        self._prepare_staging_dir()
        self.pipelines = [self._build(a, shutdown) for a in self.config.assignments]
        if not self.pipelines:
            return []

        tasks: dict[asyncio.Task, PartitionPipeline] = {
            asyncio.create_task(p.run(), name=f"pipeline-{p.topic}-{p.partition}"): p
            for p in self.pipelines
        }
        logger.info("Started pipelines", extra={"count": len(tasks)})

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        failures = [
            (pipeline, task.exception())
            for task, pipeline in tasks.items()
            if task in done and not task.cancelled() and task.exception() is not None
        ]
        if not failures:
            return [pipeline.stats for pipeline in self.pipelines]

        for pipeline, error in failures:
            logger.error(
                "Pipeline failed, draining the others",
                extra={"topic": pipeline.topic, "partition": pipeline.partition, "error": str(error)},
            )
        shutdown.set()
        if pending:
            draining = [(task, pipeline) for task, pipeline in tasks.items() if task in pending]
            results = await asyncio.gather(*(task for task, _ in draining), return_exceptions=True)
            for (_, pipeline), result in zip(draining, results):
                if isinstance(result, BaseException):
                    logger.error(
                        "Pipeline failed while draining",
                        extra={
                            "topic": pipeline.topic,
                            "partition": pipeline.partition,
                            "error": str(result),
                        },
                    )

        pipeline, error = failures[0]
        raise PipelineFailedError(pipeline.topic, pipeline.partition, error) from error
