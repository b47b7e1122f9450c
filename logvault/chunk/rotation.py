"""
Chunk rotation policy.

A pure decision over a chunk's size and age. Pipelines evaluate it after
every appended record, never on a timer: an idle partition keeps its
chunk open past the age threshold until the next record arrives.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..config import ChunkConfig


@dataclass(frozen=True)
class RotationPolicy:
    """Size and age thresholds for sealing a chunk.

    Attributes:
        max_size_bytes: Rotate once a chunk holds at least this many bytes
        max_age_seconds: Rotate once a chunk is at least this old
    """

    max_size_bytes: int
    max_age_seconds: float

    @classmethod
    def from_config(cls, config: ChunkConfig) -> RotationPolicy:
        return cls(max_size_bytes=config.max_size_bytes, max_age_seconds=config.max_age_seconds)

    def is_too_big(self, size_bytes: int) -> bool:
        return size_bytes >= self.max_size_bytes

    def deadline(self, created_at: float) -> float:
        return created_at + self.max_age_seconds

    def is_too_old(self, created_at: float, now: float) -> bool:
        return now >= self.deadline(created_at)

    def should_rotate(self, size_bytes: int, created_at: float, now: float) -> bool:
        return self.is_too_big(size_bytes) or self.is_too_old(created_at, now)
