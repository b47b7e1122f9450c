"""
logvault - Archive Kafka partitions to S3 without an offset store.

Each configured partition gets its own pipeline that buffers consumed
records into a local staging file, rotates the file by size or age,
and uploads the sealed chunk to S3. Every line in a chunk carries an
offset marker, so on restart a pipeline finds its resume point by
reading the most recently archived chunk.

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────┐
    │   Kafka     │────▶│ Chunk Buffer │────▶│   Uploader   │────▶ S3
    │ (partition) │     │  (staging)   │     │ (key scheme) │
    └─────────────┘     └──────────────┘     └──────────────┘
           ▲                                                    │
           │              ┌──────────────┐                      │
           └──────────────│   Recovery   │◀─────────────────────┘
                          └──────────────┘

Invariants:
    - Archive keys sort lexicographically by seal time within a partition
    - Every archived line starts with t_<topic>-p_<partition>-o_<offset>|
    - Empty chunks are never uploaded
    - Delivery is at-least-once; readers dedupe by marker offset

How to change safely:
    - Never change the marker or key format without a migration plan,
      recovery of existing archives depends on both
    - Test recovery against real archives before deploying

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
