"""Blob store interface: put, exists, idempotent delete, public URL. Implementations: local (dev disk) or S3."""
import asyncio
from abc import ABC, abstractmethod
from typing import BinaryIO


async def write_in_thread(func, /, *args, **kwargs):
    """asyncio.to_thread for blob writes: a cancelled caller still waits for the thread to finish.

    Threads cannot be interrupted, so the write settles (and can be rolled back) before
    the cancellation propagates.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled():
            task.exception()
        raise


class BlobStore(ABC):
    """Abstract key-addressed object store. Errors propagate as the backend's own exceptions."""

    # Recorded as the StorageType property of every StoredFile
    backend_name: str = ""

    def __init__(self, base_url: str = "") -> None:
        self._base_url = base_url

    @property
    @abstractmethod
    def container(self) -> str:
        """Bucket / container identifier."""
        ...

    @abstractmethod
    async def ensure_container(self) -> None:
        """Create the container if it does not exist yet."""
        ...

    @abstractmethod
    async def put_object(
        self,
        key: str,
        source: BinaryIO,
        content_type: str | None,
        metadata: dict[str, str],
    ) -> str:
        """Write source (from its current position to EOF) under key. Returns the backend locator."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def head_object(self, key: str) -> dict:
        """Return content_length, content_type, metadata. Raise FileNotFoundError if missing."""
        ...

    @abstractmethod
    async def delete_if_exists(self, key: str) -> bool:
        """Delete key. Returns False (no error) when it was already absent."""
        ...

    @abstractmethod
    def backend_url(self, key: str) -> str:
        """Locator derived by the backend itself when no public base URL is configured."""
        ...

    def resolve_public_url(self, key: str) -> str:
        """{base_url}/{container}/{key} when a public base URL is configured, else the backend's own."""
        if self._base_url:
            return f"{self._base_url.rstrip('/')}/{self.container}/{key}"
        return self.backend_url(key)
