"""Scoped temp-file materialization of an upload stream for validation and scanning."""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, BinaryIO

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB


def _copy_to(stream: BinaryIO, fd: int) -> int:
    size = 0
    with os.fdopen(fd, "wb") as out:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            out.write(chunk)
            size += len(chunk)
    return size


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


@asynccontextmanager
async def spool(stream: BinaryIO, directory: str | None = None) -> AsyncIterator[Path]:
    """Copy `stream` into a private temp file and yield its path.

    The source is rewound before and after the copy so later stages re-read from the start.
    The temp file is removed on every exit path, cancellation included.
    """
    if directory:
        Path(directory).mkdir(parents=True, exist_ok=True)
    stream.seek(0)
    fd, name = tempfile.mkstemp(prefix="spool-", dir=directory)
    path = Path(name)
    try:
        # _copy_to owns fd from here and closes it even if this task is cancelled
        try:
            size = await asyncio.to_thread(_copy_to, stream, fd)
        finally:
            stream.seek(0)
        logger.debug("Spooled %d bytes to %s", size, path)
        yield path
    finally:
        _remove(path)


class BoundedReader:
    """Read-through wrapper that fails once more than `limit` bytes have been read."""

    def __init__(self, stream: BinaryIO, limit: int, on_exceeded) -> None:
        self._stream = stream
        self._limit = limit
        self._on_exceeded = on_exceeded
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self.bytes_read += len(chunk)
        if self.bytes_read > self._limit:
            raise self._on_exceeded(self.bytes_read)
        return chunk


def rewindable_copy(stream: BinaryIO, limit: int | None, on_exceeded, directory: str | None = None) -> tuple[BinaryIO, int]:
    """Copy a non-seekable stream into a SpooledTemporaryFile, enforcing `limit` while reading.

    Returns (copy positioned at 0, byte count). The caller owns and must close the copy.
    """
    copy = tempfile.SpooledTemporaryFile(max_size=8 * CHUNK_SIZE, dir=directory)
    source = BoundedReader(stream, limit, on_exceeded) if limit is not None else stream
    try:
        shutil.copyfileobj(source, copy, CHUNK_SIZE)
        size = copy.tell()
        copy.seek(0)
    except BaseException:
        copy.close()
        raise
    return copy, size
