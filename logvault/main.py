"""
logvault - Main entry point.

This module starts one archive pipeline per configured partition:
- Kafka partition -> local staging chunk -> S3

Usage:
    python -m logvault.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - SIGINT/SIGTERM drain every pipeline before the process exits
    - Any fatal error exits non-zero; restart resumes from the archive
    - A per-partition summary is printed on clean shutdown

How to change safely:
    - Test shutdown sequence thoroughly; a pipeline must never be killed
      mid-upload
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .blobstore import S3BlobStore
from .config import ArchiverConfig, ObservabilityConfig
from .errors import ArchiverError, ConfigError
from .pipeline import PipelineStats, PipelineSupervisor
from .source import kafka_source_factory

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


def format_summary(stats: list[PipelineStats]) -> str:
    """One line per partition with consumed/skipped counts."""
    lines = []
    for s in stats:
        lines.append(
            f"{s.topic}:{s.partition} consumed={s.consumed} skipped={s.skipped} "
            f"chunks={s.chunks_uploaded} bytes={s.bytes_uploaded} "
            f"offsets={s.start_offset}..{s.last_offset}"
        )
    return "\n".join(lines)


class Archiver:
    """logvault process orchestrator.

    Owns the S3 client and the pipeline supervisor for one run.

    Example:
        >>> archiver = Archiver(config)
        >>> stats = await archiver.run()  # until request_shutdown()
    """

    def __init__(self, config: ArchiverConfig) -> None:
        self.config = config
        self._shutdown_event = asyncio.Event()
        self.supervisor: PipelineSupervisor | None = None

    async def run(self) -> list[PipelineStats]:
        """Run all pipelines until shutdown is requested and they have drained.

        Raises:
            ArchiverError: On any fatal error
        """
        logger.info("Starting logvault")
        self.config.log_config()

        async with S3BlobStore(self.config.s3) as blob_store:
            self.supervisor = PipelineSupervisor(
                self.config,
                kafka_source_factory(self.config.kafka),
                blob_store,
            )
            stats = await self.supervisor.run(self._shutdown_event)

        logger.info("logvault stopped")
        return stats

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ArchiverConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    archiver = Archiver(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        archiver.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        stats = loop.run_until_complete(archiver.run())
    except ArchiverError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        print(f"logvault failed: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        loop.close()

    print(format_summary(stats))
    sys.exit(0)


if __name__ == "__main__":
    main()
