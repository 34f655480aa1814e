"""Local (dev disk) blob store: {root}/{container}/{key}, metadata in a JSON sidecar under {root}/.meta."""
import asyncio
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

from storage_service.services.storage.base import BlobStore, write_in_thread

CHUNK_SIZE = 1024 * 1024  # 1MB


class LocalBlobStore(BlobStore):
    """Dev disk storage. Writes go to a temp file then os.replace, so readers never see partial blobs."""

    backend_name = "LocalStorage"

    def __init__(self, root: str | Path, container: str, base_url: str = "") -> None:
        super().__init__(base_url)
        self._root = Path(root)
        self._container = container

    @property
    def container(self) -> str:
        return self._container

    def _path(self, key: str) -> Path:
        base = (self._root / self._container).resolve()
        path = (base / key).resolve()
        if base not in path.parents:
            raise ValueError(f"Key escapes container: {key}")
        return path

    def _meta_path(self, key: str) -> Path:
        return self._root / ".meta" / self._container / f"{key}.json"

    async def ensure_container(self) -> None:
        (self._root / self._container).mkdir(parents=True, exist_ok=True)

    def _write(self, key: str, source: BinaryIO, content_type: str | None, metadata: dict[str, str]) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".upload-", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(source, out, CHUNK_SIZE)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(
            json.dumps({"content_type": content_type, "metadata": metadata}),
            encoding="utf-8",
        )
        return str(path)

    async def put_object(
        self,
        key: str,
        source: BinaryIO,
        content_type: str | None,
        metadata: dict[str, str],
    ) -> str:
        return await write_in_thread(self._write, key, source, content_type, metadata)

    async def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def _delete(self, key: str) -> bool:
        path = self._path(key)
        self._meta_path(key).unlink(missing_ok=True)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    async def delete_if_exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._delete, key)

    async def head_object(self, key: str) -> dict:
        """Return content_length, content_type and metadata. Raise FileNotFoundError if missing."""
        path = self._path(key)
        if not path.is_file():
            raise FileNotFoundError(f"Object not found: {key}")
        meta_path = self._meta_path(key)
        stored = json.loads(meta_path.read_text(encoding="utf-8")) if meta_path.is_file() else {}
        return {
            "content_length": path.stat().st_size,
            "content_type": stored.get("content_type"),
            "metadata": stored.get("metadata", {}),
        }

    def backend_url(self, key: str) -> str:
        return self._path(key).as_uri()
