"""S3 blob store via boto3. Imported only when STORAGE_BACKEND=s3 (avoids boto3 in local mode)."""
from __future__ import annotations

import asyncio
from typing import BinaryIO
from urllib.parse import quote

from storage_service.services.storage.base import BlobStore, write_in_thread


def _get_client(region: str, endpoint_url: str | None = None):
    import boto3
    return boto3.client("s3", region_name=region, endpoint_url=endpoint_url)


def _error_code(exc: Exception) -> str | None:
    resp = getattr(exc, "response", None)
    return resp.get("Error", {}).get("Code") if isinstance(resp, dict) else None


_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound", "NoSuchBucket")


class S3BlobStore(BlobStore):
    """S3 backend: upload_fileobj (multipart for large bodies), head_object, delete_object."""

    backend_name = "S3Storage"

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        base_url: str = "",
    ) -> None:
        super().__init__(base_url)
        if not bucket:
            raise ValueError("S3 storage requires storage_container (bucket) to be set")
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url
        self._client = _get_client(region, endpoint_url)

    @property
    def container(self) -> str:
        return self._bucket

    def _ensure_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self._bucket)
            return
        except Exception as e:
            if _error_code(e) not in _NOT_FOUND_CODES:
                raise
        params = {"Bucket": self._bucket}
        if self._region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        self._client.create_bucket(**params)

    async def ensure_container(self) -> None:
        await asyncio.to_thread(self._ensure_bucket)

    async def put_object(
        self,
        key: str,
        source: BinaryIO,
        content_type: str | None,
        metadata: dict[str, str],
    ) -> str:
        extra = {"Metadata": metadata}
        if content_type:
            extra["ContentType"] = content_type
        await write_in_thread(
            self._client.upload_fileobj,
            source,
            self._bucket,
            key,
            ExtraArgs=extra,
        )
        return f"s3://{self._bucket}/{key}"

    def _head(self, key: str) -> dict:
        try:
            resp = self._client.head_object(Bucket=self._bucket, Key=key)
        except Exception as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise FileNotFoundError(f"Object not found: {key}") from e
            raise
        return {
            "content_length": resp.get("ContentLength") or 0,
            "content_type": resp.get("ContentType"),
            "metadata": resp.get("Metadata") or {},
        }

    async def head_object(self, key: str) -> dict:
        return await asyncio.to_thread(self._head, key)

    async def exists(self, key: str) -> bool:
        try:
            await self.head_object(key)
        except FileNotFoundError:
            return False
        return True

    async def delete_if_exists(self, key: str) -> bool:
        existed = await self.exists(key)
        # DeleteObject succeeds for absent keys
        await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        return existed

    def backend_url(self, key: str) -> str:
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{quote(key)}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{quote(key)}"
