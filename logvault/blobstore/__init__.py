"""
Blob store abstraction for logvault.

Archived chunks live in an object store under partition-scoped keys.
Backends:
- S3 and S3-compatible stores (production)
- In-memory (for testing)

Invariants:
    - Listing is lexicographic, which recovery relies on
    - All backend failures surface as BlobStoreError
"""

from .base import BlobStore, ListPage
from .memory import InMemoryBlobStore, StoredObject
from .s3 import S3BlobStore

__all__ = [
    "BlobStore",
    "ListPage",
    "S3BlobStore",
    "InMemoryBlobStore",
    "StoredObject",
]
