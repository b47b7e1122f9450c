"""
Exception hierarchy for logvault.

Every failure that could compromise the recovery invariant is fatal and
propagates to the top-level handler in main.py, which logs it and exits
non-zero. A restart is always safe because offsets are recovered from
the archive itself.

Malformed records are not errors: pipelines count them as skipped.
"""

from __future__ import annotations


class ArchiverError(Exception):
    """Base exception for all logvault errors."""
    pass


class ConfigError(ArchiverError, ValueError):
    """Configuration is missing or malformed."""
    pass


class StagingError(ArchiverError):
    """Local staging storage could not be created, written or removed."""
    pass


class BlobStoreError(ArchiverError):
    """A blob store operation (list/get/exists/put) failed."""
    pass


class BlobNotFoundError(BlobStoreError):
    """The requested object does not exist."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}")
        self.key = key


class RecoveryIntegrityError(ArchiverError):
    """An archived chunk contains no valid offset marker.

    Raised instead of defaulting to offset 0, which would either re-deliver
    the whole partition or hide real corruption.
    """

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{message} (key={key})")
        self.key = key


class RecordSourceError(ArchiverError):
    """The record source failed."""
    pass


class RecordSourceConnectionError(RecordSourceError):
    """Connection to the record source failed."""
    pass


class PipelineFailedError(ArchiverError):
    """A partition pipeline terminated with an error.

    Attributes:
        topic: Topic of the failed pipeline
        partition: Partition of the failed pipeline
    """

    def __init__(self, topic: str, partition: int, cause: BaseException) -> None:
        super().__init__(f"Pipeline {topic}:{partition} failed: {cause}")
        self.topic = topic
        self.partition = partition
