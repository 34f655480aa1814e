"""Antivirus scanning over the ClamAV daemon INSTREAM protocol.

Wire format, one fresh TCP connection per scan:

    b"zINSTREAM\\0"
    <4-byte big-endian length><chunk bytes>   (repeated, each chunk <= chunk_size)
    b"\\0\\0\\0\\0"                              (end of stream)

The daemon answers with a single line such as ``stream: OK`` or
``stream: Eicar-Test-Signature FOUND``. Transport failures never raise: they come back as
an INDETERMINATE verdict so the caller decides between fail-open and fail-closed.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

INSTREAM_COMMAND = b"zINSTREAM\0"
PING_COMMAND = b"zPING\0"
END_OF_STREAM = struct.pack("!I", 0)
MAX_RESPONSE_BYTES = 1024
DEFAULT_CHUNK_SIZE = 64 * 1024


class ScanVerdict(str, enum.Enum):
    CLEAN = "clean"
    INFECTED = "infected"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class ScanResult:
    """Verdict plus the daemon's raw answer (or the transport error) for diagnostics."""

    verdict: ScanVerdict
    raw: str = ""

    @property
    def signature(self) -> str | None:
        """Signature name from 'stream: <name> FOUND'; None unless infected."""
        if self.verdict is not ScanVerdict.INFECTED:
            return None
        text = self.raw.split(":", 1)[1] if ":" in self.raw else self.raw
        return text.replace("FOUND", "").strip() or None


def parse_response(raw: str) -> ScanVerdict:
    # FOUND wins over OK so a signature name containing "OK" is never read as clean
    if "FOUND" in raw:
        return ScanVerdict.INFECTED
    if "ERROR" in raw:
        return ScanVerdict.INDETERMINATE
    if "OK" in raw:
        return ScanVerdict.CLEAN
    return ScanVerdict.INDETERMINATE


def frame_chunk(data: bytes) -> bytes:
    return struct.pack("!I", len(data)) + data


class ScanProtocolClient:
    """Stateless INSTREAM client; safe to share between concurrent tasks."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        connect_timeout: float = 300.0,
        io_timeout: float = 300.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.chunk_size = chunk_size

    async def _connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        # wait_for cancels the pending connect on timeout, which closes the half-open socket
        return await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port),
            timeout=self.connect_timeout,
        )

    async def _close(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def _send(self, writer: asyncio.StreamWriter, data: bytes) -> None:
        writer.write(data)
        await asyncio.wait_for(writer.drain(), timeout=self.io_timeout)

    async def _stream_chunks(
        self,
        source: BinaryIO,
        writer: asyncio.StreamWriter,
        length: int | None,
    ) -> int:
        sent = 0
        while length is None or sent < length:
            want = self.chunk_size if length is None else min(self.chunk_size, length - sent)
            chunk = await asyncio.to_thread(source.read, want)
            if not chunk:
                break
            await self._send(writer, frame_chunk(chunk))
            sent += len(chunk)
        return sent

    async def scan(self, source: BinaryIO, length: int | None = None) -> ScanResult:
        """Stream `source` (from its current position, at most `length` bytes) to the daemon."""
        try:
            reader, writer = await self._connect()
        except asyncio.TimeoutError:
            logger.error("Timeout connecting to ClamAV daemon at %s:%s", self.host, self.port)
            return ScanResult(ScanVerdict.INDETERMINATE, "connect timeout")
        except OSError as e:
            logger.error("Failed to connect to ClamAV daemon at %s:%s: %s", self.host, self.port, e)
            return ScanResult(ScanVerdict.INDETERMINATE, f"connect failed: {e}")

        try:
            await self._send(writer, INSTREAM_COMMAND)
            sent = await self._stream_chunks(source, writer, length)
            await self._send(writer, END_OF_STREAM)
            data = await asyncio.wait_for(reader.read(MAX_RESPONSE_BYTES), timeout=self.io_timeout)
        except asyncio.TimeoutError:
            logger.error("Timeout talking to ClamAV daemon at %s:%s", self.host, self.port)
            return ScanResult(ScanVerdict.INDETERMINATE, "io timeout")
        except Exception as e:
            logger.exception("Exception occurred during virus scanning at %s:%s", self.host, self.port)
            return ScanResult(ScanVerdict.INDETERMINATE, f"transport error: {e}")
        finally:
            await self._close(writer)

        raw = data.decode("ascii", errors="replace").replace("\0", "").strip()
        verdict = parse_response(raw)
        if verdict is ScanVerdict.CLEAN:
            logger.info("ClamAV scan clean (%d bytes): %s", sent, raw)
        elif verdict is ScanVerdict.INFECTED:
            logger.error("ClamAV reported infection (%d bytes): %s", sent, raw)
        else:
            logger.warning("Unknown ClamAV response (%d bytes): %r", sent, raw)
        return ScanResult(verdict, raw)

    async def scan_file(self, path: str | Path) -> ScanResult:
        with open(path, "rb") as fh:
            return await self.scan(fh)

    async def ping(self) -> bool:
        """True when the daemon answers PONG; used by readiness checks."""
        try:
            reader, writer = await self._connect()
        except (asyncio.TimeoutError, OSError):
            return False
        try:
            await self._send(writer, PING_COMMAND)
            data = await asyncio.wait_for(reader.read(MAX_RESPONSE_BYTES), timeout=self.io_timeout)
        except (asyncio.TimeoutError, OSError):
            return False
        finally:
            await self._close(writer)
        return data.replace(b"\0", b"").strip() == b"PONG"
