"""
Offsets CLI tool for logvault.

Runs offset recovery against the S3 archive and prints, for each
partition, the last archived chunk key and the offset a pipeline would
resume from. Nothing is consumed or written.

Usage:
    python -m logvault.tools.offsets --s3-bucket <bucket> orders:0 orders:1
    python -m logvault.tools.offsets   # partitions from ARCHIVER_TOPICS/ARCHIVER_PARTITIONS

Invariants:
    - Read-only: only list/get calls are issued
    - Exits non-zero if any partition fails to recover
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace

from ..blobstore import S3BlobStore
from ..config import ArchiverConfig, PartitionAssignment, S3Config
from ..errors import ArchiverError, ConfigError
from ..recovery import DEFAULT_REWIND_DAYS, OffsetRecovery, RecoveredPosition

logger = logging.getLogger(__name__)


def parse_partition(raw: str) -> PartitionAssignment:
    """Parse a topic:partition argument."""
    topic, sep, partition = raw.rpartition(":")
    if not sep or not topic or not partition.isdigit():
        raise argparse.ArgumentTypeError(f"expected topic:partition, got '{raw}'")
    return PartitionAssignment(topic=topic, partition=int(partition))


async def recover_all(
    s3_config: S3Config,
    assignments: list[PartitionAssignment],
    rewind_days: int = DEFAULT_REWIND_DAYS,
) -> list[RecoveredPosition]:
    """Recover the resume position of every assignment."""
    async with S3BlobStore(s3_config) as store:
        recovery = OffsetRecovery(store, rewind_days=rewind_days)
        return [await recovery.locate(a.topic, a.partition) for a in assignments]


def main() -> None:
    """CLI entry point for the offsets tool."""
    parser = argparse.ArgumentParser(
        description="Show the offsets logvault would resume from, recovered from the S3 archive"
    )
    parser.add_argument(
        "partitions",
        nargs="*",
        type=parse_partition,
        help="topic:partition pairs (default: ARCHIVER_TOPICS/ARCHIVER_PARTITIONS)",
    )
    parser.add_argument("--s3-bucket", help="S3 bucket name (default: S3_BUCKET)")
    parser.add_argument("--s3-region", help="AWS region (default: S3_REGION)")
    parser.add_argument("--s3-endpoint", help="S3 endpoint URL (for MinIO)")
    parser.add_argument(
        "--rewind-days",
        type=int,
        default=DEFAULT_REWIND_DAYS,
        help="Days to walk back when narrowing the listing",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    s3_config = S3Config.from_env()
    overrides = {
        "bucket": args.s3_bucket,
        "region": args.s3_region,
        "endpoint_url": args.s3_endpoint,
    }
    s3_config = replace(s3_config, **{k: v for k, v in overrides.items() if v})

    assignments = list(args.partitions)
    if not assignments:
        try:
            assignments = list(
                ArchiverConfig.parse_assignments(
                    os.getenv("ARCHIVER_TOPICS", ""),
                    os.getenv("ARCHIVER_PARTITIONS", ""),
                )
            )
        except ConfigError as e:
            parser.error(str(e))
    if not assignments:
        parser.error("no partitions given")

    try:
        positions = asyncio.run(recover_all(s3_config, assignments, args.rewind_days))
    except ArchiverError as e:
        print(f"Recovery failed: {e}", file=sys.stderr)
        sys.exit(1)

    for position in positions:
        print(
            f"{position.topic}:{position.partition}\t"
            f"offset={position.offset}\tkey={position.key or 'none'}"
        )
    sys.exit(0)


if __name__ == "__main__":
    main()
