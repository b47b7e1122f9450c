"""
Chunk buffering, rotation and upload.

Invariants:
    - A chunk belongs to one partition and one pipeline
    - Sealed chunks are immutable and uploaded whole
    - Empty chunks are never uploaded
"""

from .buffer import ChunkBuffer
from .keys import archive_key, day_prefix, marker_prefix, offset_marker, partition_prefix
from .rotation import RotationPolicy
from .uploader import ArchivedChunk, ChunkUploader

__all__ = [
    "ChunkBuffer",
    "RotationPolicy",
    "ChunkUploader",
    "ArchivedChunk",
    "archive_key",
    "day_prefix",
    "marker_prefix",
    "offset_marker",
    "partition_prefix",
]
