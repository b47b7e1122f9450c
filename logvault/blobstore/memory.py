"""
In-memory blob store for testing.

Mirrors the S3 semantics the archive relies on: lexicographic listing,
StartAfter-style markers, bounded pages and a truncation flag.

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with BlobStore protocol
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import BlobNotFoundError
from .base import ListPage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """An object held by InMemoryBlobStore."""
    body: bytes
    content_type: str
    acl: str


class InMemoryBlobStore:
    """In-memory implementation of the BlobStore protocol.

    Attributes:
        page_size: Default MaxKeys for list()
        list_calls: Prefixes passed to list(), in call order (testing helper)
    """

    def __init__(self, page_size: int = 1000) -> None:
        self.page_size = page_size
        self.objects: Dict[str, StoredObject] = {}
        self.list_calls: List[str] = []

    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
        acl: str = "private",
    ) -> None:
        self.objects[key] = StoredObject(body=bytes(body), content_type=content_type, acl=acl)
        logger.debug("Object stored in memory", extra={"key": key, "size_bytes": len(body)})

    async def get(self, key: str) -> bytes:
        try:
            return self.objects[key].body
        except KeyError:
            raise BlobNotFoundError(key)

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def list(
        self,
        prefix: str,
        marker: Optional[str] = None,
        max_keys: Optional[int] = None,
    ) -> ListPage:
        self.list_calls.append(prefix)
        limit = max_keys or self.page_size
        matching = sorted(
            key for key in self.objects
            if key.startswith(prefix) and (marker is None or key > marker)
        )
        return ListPage(keys=matching[:limit], truncated=len(matching) > limit)

    # Testing helpers

    def keys(self, prefix: str = "") -> List[str]:
        """All keys under prefix in sorted order."""
        return sorted(key for key in self.objects if key.startswith(prefix))
