"""
Record source abstraction for logvault.

A record source reads one partition of the message log in offset order,
starting from an offset chosen by recovery. Backends:
- Kafka/Redpanda (production)
- In-memory (for testing)

Invariants:
    - Records are delivered in offset order within a partition
    - Sources never track or commit offsets themselves
    - poll() is bounded, so shutdown is observed promptly
"""

from .base import RecordSource, SourceFactory, StreamRecord
from .kafka import KafkaRecordSource, kafka_source_factory
from .memory import InMemoryRecordLog, InMemoryRecordSource

__all__ = [
    # Protocol and types
    "RecordSource",
    "SourceFactory",
    "StreamRecord",
    # Implementations
    "KafkaRecordSource",
    "kafka_source_factory",
    "InMemoryRecordLog",
    "InMemoryRecordSource",
]
