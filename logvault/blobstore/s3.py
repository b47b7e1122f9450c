"""
S3 blob store backed by aiobotocore.

Works with AWS S3 and S3-compatible stores (MinIO, LocalStack) through
the optional endpoint URL.

Invariants:
    - One client per store, opened by connect() and released by close()
    - Every botocore failure surfaces as BlobStoreError
    - Objects are written with a private ACL unless told otherwise

How to change safely:
    - Test listing order and StartAfter semantics against MinIO before deploying
    - Keep error wrapping at this boundary; callers only know BlobStoreError
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import BlobNotFoundError, BlobStoreError
from .base import ListPage

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES


class S3BlobStore:
    """S3 implementation of the BlobStore protocol.

    Example:
        >>> async with S3BlobStore(S3Config(bucket="archive")) as store:
        ...     await store.put("orders/p0/2024/01/02/00000000000000000001", b"...")
    """

    def __init__(self, config: S3Config) -> None:
        self.config = config
        self._session = None
        self._s3_ctx = None
        self._s3_client = None

    async def __aenter__(self) -> S3BlobStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Initialize S3 client."""
        if self._s3_client:
            return

        self._session = get_session()

        client_kwargs = {
            "region_name": self.config.region,
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        try:
            self._s3_ctx = self._session.create_client("s3", **client_kwargs)
            self._s3_client = await self._s3_ctx.__aenter__()
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to create S3 client: {e}") from e

        logger.info(
            "S3 client connected",
            extra={"bucket": self.config.bucket, "endpoint": self.config.endpoint_url},
        )

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None

    @property
    def _client(self) -> Any:
        if not self._s3_client:
            raise BlobStoreError("S3 client not connected")
        return self._s3_client

    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str = "application/octet-stream",
        acl: str = "private",
    ) -> None:
        try:
            await self._client.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                ACL=acl,
            )
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Failed to put {key}: {e}") from e

    async def get(self, key: str) -> bytes:
        try:
            response = await self._client.get_object(Bucket=self.config.bucket, Key=key)
            return await response["Body"].read()
        except ClientError as e:
            if _is_not_found(e):
                raise BlobNotFoundError(key) from e
            raise BlobStoreError(f"Failed to get {key}: {e}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to get {key}: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            await self._client.head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise BlobStoreError(f"Failed to probe {key}: {e}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to probe {key}: {e}") from e

    async def list(
        self,
        prefix: str,
        marker: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        params: dict[str, Any] = {
            "Bucket": self.config.bucket,
            "Prefix": prefix,
            "MaxKeys": max_keys or self.config.list_page_size,
        }
        if marker:
            params["StartAfter"] = marker

        try:
            response = await self._client.list_objects_v2(**params)
        except (BotoCoreError, ClientError) as e:
            raise BlobStoreError(f"Failed to list {prefix}: {e}") from e

        return ListPage(
            keys=[obj["Key"] for obj in response.get("Contents", [])],
            truncated=bool(response.get("IsTruncated", False)),
        )
