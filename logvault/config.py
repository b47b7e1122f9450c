"""
Configuration management for logvault.

All configuration is done via environment variables - no config files inside containers.
This module provides typed, immutable configuration classes with validation.
ArchiverConfig is built once at startup and passed into every component.

Invariants:
    - All settings have sensible defaults for local development
    - Topics and partitions are parallel lists of the same length
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never change the recovery rewind default without checking archive
      upload frequency for the slowest topic
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_STAGING_DIR = "/var/lib/logvault/staging"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class PartitionAssignment:
    """One (topic, partition) pair to archive."""

    topic: str
    partition: int

    def __str__(self) -> str:
        return f"{self.topic}:{self.partition}"


@dataclass(frozen=True)
class KafkaConfig:
    """Kafka record source configuration.

    Attributes:
        brokers: Comma-separated list of broker addresses
        client_id: Client ID reported to the brokers
        max_fetch_bytes: Maximum bytes fetched per partition request
        auto_offset_reset: Where to start when the requested offset is out of range
        sasl_mechanism: SASL authentication mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username (if authentication enabled)
        sasl_password: SASL password (if authentication enabled)
        security_protocol: Security protocol (PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL)
        ssl_cafile: Path to CA certificate file
    """

    brokers: str = "localhost:9092"
    client_id: str = "logvault"
    max_fetch_bytes: int = 1024 * 1024  # 1MB
    auto_offset_reset: str = "earliest"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"
    ssl_cafile: str | None = None

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Load configuration from environment variables."""
        return cls(
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            client_id=os.getenv("KAFKA_CLIENT_ID", "logvault"),
            max_fetch_bytes=_env_int("KAFKA_MAX_FETCH_BYTES", 1024 * 1024),
            auto_offset_reset=os.getenv("KAFKA_AUTO_OFFSET_RESET", "earliest"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            ssl_cafile=os.getenv("KAFKA_SSL_CAFILE"),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for the chunk archive.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        endpoint_url: Custom endpoint URL (for MinIO)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        list_page_size: MaxKeys for each list request
    """

    bucket: str = "logvault-archive"
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    list_page_size: int = 1000

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "logvault-archive"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-1")),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            list_page_size=_env_int("S3_LIST_PAGE_SIZE", 1000),
        )


@dataclass(frozen=True)
class ChunkConfig:
    """Chunk buffering and rotation configuration.

    Attributes:
        max_size_bytes: Rotate once a chunk holds at least this many bytes
        max_age_minutes: Rotate once a chunk is at least this old (checked on record arrival)
        poll_interval_seconds: Maximum wait for the next record before re-checking shutdown
        staging_dir: Directory for open chunk files
        retain_staging_files: Keep staging files after upload for inspection
        recovery_rewind_days: Days to walk back when narrowing the recovery listing
    """

    max_size_bytes: int = 100 * 1024 * 1024  # 100MB
    max_age_minutes: float = 60
    poll_interval_seconds: float = 1.0
    staging_dir: str = DEFAULT_STAGING_DIR
    retain_staging_files: bool = False
    recovery_rewind_days: int = 14

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_minutes * 60

    @classmethod
    def from_env(cls) -> ChunkConfig:
        """Load configuration from environment variables."""
        return cls(
            max_size_bytes=_env_int("CHUNK_MAX_BYTES", 100 * 1024 * 1024),
            max_age_minutes=_env_float("CHUNK_MAX_AGE_MINUTES", 60),
            poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 1.0),
            staging_dir=os.getenv("STAGING_DIR", DEFAULT_STAGING_DIR),
            retain_staging_files=_env_bool("RETAIN_STAGING_FILES", False),
            recovery_rewind_days=_env_int("RECOVERY_REWIND_DAYS", 14),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass(frozen=True)
class ArchiverConfig:
    """Complete archiver configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        assignments: Partitions to archive, one pipeline each
        kafka: Kafka configuration
        s3: S3 configuration
        chunk: Chunk buffering configuration
        observability: Logging configuration
    """

    assignments: tuple[PartitionAssignment, ...] = ()
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    s3: S3Config = field(default_factory=S3Config)
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @staticmethod
    def parse_assignments(topics_raw: str, partitions_raw: str) -> tuple[PartitionAssignment, ...]:
        """Zip comma-separated topic and partition lists.

        Raises:
            ConfigError: If the lists differ in length or a partition is not an integer.
        """
        topics = _split_list(topics_raw)
        partition_strings = _split_list(partitions_raw)

        if len(topics) != len(partition_strings):
            raise ConfigError(
                f"ARCHIVER_TOPICS has {len(topics)} entries but "
                f"ARCHIVER_PARTITIONS has {len(partition_strings)}"
            )

        assignments = []
        for topic, raw in zip(topics, partition_strings):
            try:
                partition = int(raw)
            except ValueError:
                raise ConfigError(f"Invalid partition '{raw}' for topic '{topic}'")
            assignments.append(PartitionAssignment(topic=topic, partition=partition))
        return tuple(assignments)

    @classmethod
    def from_env(cls) -> ArchiverConfig:
        """Load complete configuration from environment variables.

        Returns:
            ArchiverConfig with all sections populated from environment.

        Raises:
            ConfigError: If required configuration is missing or invalid.
        """
        config = cls(
            assignments=cls.parse_assignments(
                os.getenv("ARCHIVER_TOPICS", ""),
                os.getenv("ARCHIVER_PARTITIONS", ""),
            ),
            kafka=KafkaConfig.from_env(),
            s3=S3Config.from_env(),
            chunk=ChunkConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if not self.assignments:
            raise ConfigError("ARCHIVER_TOPICS and ARCHIVER_PARTITIONS are required")

        seen = set()
        for assignment in self.assignments:
            if assignment.partition < 0:
                raise ConfigError(f"Partition must be non-negative: {assignment}")
            if assignment in seen:
                raise ConfigError(f"Partition configured twice: {assignment}")
            seen.add(assignment)

        if not self.kafka.brokers:
            raise ConfigError("KAFKA_BROKERS is required")
        if not self.s3.bucket:
            raise ConfigError("S3_BUCKET is required")
        if self.s3.list_page_size <= 0:
            raise ConfigError("S3_LIST_PAGE_SIZE must be positive")

        if self.chunk.max_size_bytes <= 0:
            raise ConfigError("CHUNK_MAX_BYTES must be positive")
        if self.chunk.max_age_minutes <= 0:
            raise ConfigError("CHUNK_MAX_AGE_MINUTES must be positive")
        if self.chunk.poll_interval_seconds <= 0:
            raise ConfigError("POLL_INTERVAL_SECONDS must be positive")
        if self.chunk.recovery_rewind_days < 1:
            raise ConfigError("RECOVERY_REWIND_DAYS must be at least 1")
        if not self.chunk.staging_dir:
            raise ConfigError("STAGING_DIR is required")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Archiver configuration loaded",
            extra={
                "partitions": [str(a) for a in self.assignments],
                "kafka_brokers": self.kafka.brokers,
                "s3_bucket": self.s3.bucket,
                "s3_endpoint": self.s3.endpoint_url,
                "chunk_max_bytes": self.chunk.max_size_bytes,
                "chunk_max_age_minutes": self.chunk.max_age_minutes,
                "staging_dir": self.chunk.staging_dir,
                "retain_staging_files": self.chunk.retain_staging_files,
                "log_level": self.observability.log_level,
            },
        )
