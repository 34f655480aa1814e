"""Pytest fixtures: local blob store, in-process ClamAV daemon, pipeline factory."""
import asyncio
import struct

import pytest

from storage_service.services.av_scan import ScanProtocolClient
from storage_service.services.pipeline import UploadPipeline
from storage_service.services.storage.local import LocalBlobStore


class FakeClamd:
    """clamd stand-in speaking zINSTREAM / zPING on 127.0.0.1; records what it receives."""

    def __init__(self, response: bytes = b"stream: OK\0") -> None:
        self.response = response
        self.commands: list[bytes] = []
        self.payloads: list[bytes] = []
        self.chunk_sizes: list[list[int]] = []
        self.server: asyncio.AbstractServer | None = None
        self.port: int | None = None

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            command = await reader.readuntil(b"\0")
            self.commands.append(command)
            if command == b"zPING\0":
                writer.write(b"PONG\0")
            elif command == b"zINSTREAM\0":
                payload = bytearray()
                sizes = []
                while True:
                    (n,) = struct.unpack("!I", await reader.readexactly(4))
                    if n == 0:
                        break
                    sizes.append(n)
                    payload += await reader.readexactly(n)
                self.payloads.append(bytes(payload))
                self.chunk_sizes.append(sizes)
                writer.write(self.response)
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    async def start(self) -> "FakeClamd":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self.server.close()
        await self.server.wait_closed()

    @property
    def scans(self) -> int:
        return len(self.payloads)


@pytest.fixture
async def clamd():
    server = await FakeClamd().start()
    yield server
    await server.stop()


@pytest.fixture
def scanner(clamd: FakeClamd) -> ScanProtocolClient:
    return ScanProtocolClient("127.0.0.1", clamd.port, connect_timeout=2.0, io_timeout=2.0)


@pytest.fixture
def spool_dir(tmp_path):
    d = tmp_path / "spool"
    d.mkdir()
    return d


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs", "files", base_url="https://cdn.test")


@pytest.fixture
def make_pipeline(blob_store, spool_dir):
    def _make(scanner: ScanProtocolClient | None = None, allow_on_error: bool = True, storage=None) -> UploadPipeline:
        return UploadPipeline(
            storage if storage is not None else blob_store,
            scanner,
            allow_on_error=allow_on_error,
            upload_timeout=30,
            spool_dir=str(spool_dir),
        )
    return _make


@pytest.fixture
async def silent_daemon():
    """Accepts connections and reads everything but never answers; yields its port."""
    async def handle(reader, writer):
        try:
            await reader.read()
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
