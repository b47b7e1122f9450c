"""
Base protocol and types for the blob store abstraction.

The archive needs four operations from an object store: put, get,
exists and an ordered, paginated list. Keys are partition scoped, so
concurrent pipelines never touch the same key and no locking is needed.

Invariants:
    - list() returns keys in lexicographic order
    - list() only returns keys strictly greater than the marker
    - put() returns only after the object is durably stored

How to change safely:
    - Protocol changes require updating all implementations
    - Recovery depends on list ordering; verify it for any new backend
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ListPage:
    """One page of a prefix listing.

    Attributes:
        keys: Keys in lexicographic order
        truncated: Whether more keys follow after the last one
    """
    keys: List[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def last_key(self) -> Optional[str]:
        return self.keys[-1] if self.keys else None


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for blob store backends.

    All methods raise BlobStoreError on backend failure.
    """

    @abstractmethod
    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
        acl: str = "private",
    ) -> None:
        """Store body under key."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Fetch the object at key.

        Raises:
            BlobNotFoundError: If no object exists at key
        """
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an object exists at key."""
        ...

    @abstractmethod
    async def list(
        self,
        prefix: str,
        marker: Optional[str] = None,
        max_keys: Optional[int] = None,
    ) -> ListPage:
        """List keys under prefix that sort after marker."""
        ...
