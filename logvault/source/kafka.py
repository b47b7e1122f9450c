"""
Kafka/Redpanda record source.

Each source owns a group-less aiokafka consumer that is manually assigned
a single partition and seeked to the recovered offset. Offsets are never
committed to Kafka; the archive is the only record of progress.

Invariants:
    - One consumer per (topic, partition), no consumer group rebalancing
    - auto_offset_reset applies when the recovered offset has been
      removed by retention
    - Tombstones (null values) surface as malformed records

How to change safely:
    - Test with actual Kafka/Redpanda cluster before deploying
    - Keep poll() bounded by its timeout
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaConnectionError, KafkaError
from aiokafka.structs import TopicPartition

from ..config import KafkaConfig
from ..errors import RecordSourceConnectionError, RecordSourceError
from .base import SourceFactory, StreamRecord

logger = logging.getLogger(__name__)

MAX_RECORDS_PER_FETCH = 500


class KafkaRecordSource:
    """Kafka implementation of the RecordSource protocol.

    Attributes:
        config: Kafka configuration
        topic: Topic name
        partition: Partition number

    Example:
        >>> source = KafkaRecordSource(KafkaConfig(brokers="localhost:9092"), "orders", 0)
        >>> await source.start(offset=0)
        >>> record = await source.poll(timeout=1.0)
    """

    def __init__(self, config: KafkaConfig, topic: str, partition: int) -> None:
        self.config = config
        self.topic = topic
        self.partition = partition
        self._tp = TopicPartition(topic, partition)
        self._consumer: AIOKafkaConsumer | None = None
        self._pending: deque[StreamRecord] = deque()

    def _consumer_config(self) -> dict[str, Any]:
        consumer_config: dict[str, Any] = {
            "bootstrap_servers": self.config.brokers,
            "client_id": self.config.client_id,
            "group_id": None,
            "enable_auto_commit": False,
            "auto_offset_reset": self.config.auto_offset_reset,
            "max_partition_fetch_bytes": self.config.max_fetch_bytes,
        }

        if self.config.security_protocol != "PLAINTEXT":
            consumer_config["security_protocol"] = self.config.security_protocol

        if self.config.sasl_mechanism:
            consumer_config["sasl_mechanism"] = self.config.sasl_mechanism
            consumer_config["sasl_plain_username"] = self.config.sasl_username
            consumer_config["sasl_plain_password"] = self.config.sasl_password

        if self.config.ssl_cafile:
            consumer_config["ssl_cafile"] = self.config.ssl_cafile

        return consumer_config

    async def start(self, offset: int) -> None:
        """Connect, assign the partition and seek to offset.

        Raises:
            RecordSourceConnectionError: If the consumer cannot start
        """
        try:
            self._consumer = AIOKafkaConsumer(**self._consumer_config())
            await self._consumer.start()
            self._consumer.assign([self._tp])
            self._consumer.seek(self._tp, offset)
        except KafkaError as e:
            await self.close()
            raise RecordSourceConnectionError(
                f"Failed to start consumer for {self.topic}:{self.partition}: {e}"
            ) from e

        logger.info(
            "Kafka consumer started",
            extra={
                "brokers": self.config.brokers,
                "topic": self.topic,
                "partition": self.partition,
                "offset": offset,
            },
        )

    async def poll(self, timeout: float) -> StreamRecord | None:
        """Return the next record, fetching a batch when none is buffered.

        Raises:
            RecordSourceError: If the consumer is not started or the fetch fails
        """
        if self._pending:
            return self._pending.popleft()

        if not self._consumer:
            raise RecordSourceError("Consumer not started")

        try:
            batches = await self._consumer.getmany(
                self._tp,
                timeout_ms=int(timeout * 1000),
                max_records=MAX_RECORDS_PER_FETCH,
            )
        except KafkaConnectionError as e:
            raise RecordSourceConnectionError(f"Kafka connection lost: {e}") from e
        except KafkaError as e:
            raise RecordSourceError(f"Consumer error: {e}") from e

        for msg in batches.get(self._tp, []):
            self._pending.append(
                StreamRecord(
                    topic=msg.topic,
                    partition=msg.partition,
                    offset=msg.offset,
                    payload=msg.value,
                    timestamp_ms=msg.timestamp or int(time.time() * 1000),
                )
            )

        if self._pending:
            return self._pending.popleft()
        return None

    async def close(self) -> None:
        """Stop the consumer."""
        if self._consumer:
            try:
                await self._consumer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing consumer: {e}")
            self._consumer = None
        self._pending.clear()


def kafka_source_factory(config: KafkaConfig) -> SourceFactory:
    """Return a factory building one KafkaRecordSource per partition."""

    def factory(topic: str, partition: int) -> KafkaRecordSource:
        return KafkaRecordSource(config, topic, partition)

    return factory
