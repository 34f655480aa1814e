"""Upload pipeline: size gate -> content validation -> antivirus scan -> commit -> StoredFile.

Each stage is a hard gate; the first failure aborts every later stage and the commit.
Stages run once (no retries); temp files used for validation and scanning are always removed.
"""
from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import os
from datetime import datetime, timezone
from typing import Awaitable, BinaryIO, Callable, Union
from uuid import UUID

from storage_service.core.config import Settings, get_settings
from storage_service.core.exceptions import (
    BlobNotFound,
    IngestError,
    PayloadTooLarge,
    ScanUnavailable,
    StorageReadFailed,
    StorageWriteFailed,
    ValidationFailed,
    VirusDetected,
)
from storage_service.core.metrics import (
    record_scan_verdict,
    record_storage_op,
    record_store_failure,
    record_store_success,
)
from storage_service.models import (
    BLOB_NAME_PROPERTY,
    CONTAINER_NAME_PROPERTY,
    STORAGE_TYPE_PROPERTY,
    FileProperty,
    StoredFile,
)
from storage_service.services.av_scan import ScanProtocolClient, ScanResult, ScanVerdict
from storage_service.services.blob_keys import build_key
from storage_service.services.storage import get_storage
from storage_service.services.storage.base import BlobStore
from storage_service.services.temp_spool import rewindable_copy, spool

logger = logging.getLogger(__name__)

ContentValidator = Callable[[BinaryIO], Union[None, Awaitable[None]]]


class UploadStage(str, enum.Enum):
    VALIDATING = "validating"
    SCANNING = "scanning"
    UPLOADING = "uploading"
    COMMITTED = "committed"
    FAILED = "failed"


def _is_seekable(stream: BinaryIO) -> bool:
    try:
        return bool(stream.seekable())
    except (AttributeError, ValueError, OSError):
        return False


def declared_length(stream: BinaryIO) -> int | None:
    """Total byte length of a seekable stream; None when the source cannot report it."""
    if not _is_seekable(stream):
        return None
    pos = stream.tell()
    end = stream.seek(0, os.SEEK_END)
    stream.seek(pos)
    return end


class UploadPipeline:
    """Gatekeeper between untrusted upload streams and the blob store.

    `scanner=None` means scanning is disabled by policy: the scan gate passes without
    contacting any daemon. With a scanner, an INDETERMINATE verdict passes only when
    `allow_on_error` is true; INFECTED always fails.
    """

    def __init__(
        self,
        storage: BlobStore,
        scanner: ScanProtocolClient | None = None,
        *,
        allow_on_error: bool = True,
        upload_timeout: float | None = None,
        spool_dir: str | None = None,
    ) -> None:
        self._storage = storage
        self._scanner = scanner
        self._allow_on_error = allow_on_error
        self._upload_timeout = upload_timeout
        self._spool_dir = spool_dir

    @property
    def storage(self) -> BlobStore:
        return self._storage

    @property
    def scanner(self) -> ScanProtocolClient | None:
        return self._scanner

    @property
    def allow_on_error(self) -> bool:
        return self._allow_on_error

    async def store(
        self,
        user_id: str | None,
        file_id: UUID,
        tracking_id: UUID,
        group_id: UUID,
        category: str,
        content_type: str | None,
        file_name: str,
        original_file_name: str,
        stream: BinaryIO,
        max_size_bytes: int | None = None,
        content_validator: ContentValidator | None = None,
    ) -> StoredFile:
        blob_name = build_key(category, content_type, file_name, original_file_name)
        ctx = {
            "original_file_name": original_file_name,
            "content_type": content_type,
            "tracking_id": tracking_id,
        }
        log_extra = {"tracking_id": str(tracking_id), "blob_name": blob_name}
        logger.info(
            "File %s (%s) is being uploaded to '%s'",
            original_file_name, content_type, blob_name, extra=log_extra,
        )

        stage = UploadStage.VALIDATING
        owned: BinaryIO | None = None
        try:
            size = declared_length(stream)
            if size is None:
                # Unknown length: copy through a bounded reader so the cap still applies
                owned, size = await asyncio.to_thread(
                    rewindable_copy,
                    stream,
                    max_size_bytes,
                    lambda n: PayloadTooLarge(f"File too large: more than {max_size_bytes} bytes", **ctx),
                    self._spool_dir,
                )
                stream = owned
            elif max_size_bytes is not None and size > max_size_bytes:
                raise PayloadTooLarge(f"File too large: {size} > {max_size_bytes} bytes", **ctx)

            if content_validator is not None:
                await self._validate(stream, content_validator, ctx)

            stage = UploadStage.SCANNING
            await self._scan_gate(stream, ctx, log_extra)

            stage = UploadStage.UPLOADING
            logger.info("Uploading %d bytes to '%s'", size, blob_name, extra={**log_extra, "stage": stage.value})
            metadata = {
                "userId": user_id or "",
                "fileId": str(file_id),
                "trackingId": str(tracking_id),
                "groupId": str(group_id),
                "category": category,
                "originalFileName": original_file_name,
            }
            await self._commit(blob_name, stream, content_type, metadata, ctx)
            stage = UploadStage.COMMITTED
        except IngestError as e:
            failed_at, stage = stage, UploadStage.FAILED
            e.stage = e.stage or failed_at.value
            record_store_failure(failed_at.value)
            logger.error(
                "Upload of %s (%s) to '%s' failed at %s: %s",
                original_file_name, content_type, blob_name, failed_at.value, e.message,
                extra={**log_extra, "stage": stage.value, "failed_stage": failed_at.value},
            )
            raise
        except asyncio.CancelledError:
            failed_at, stage = stage, UploadStage.FAILED
            record_store_failure(failed_at.value)
            logger.warning(
                "Upload of %s to '%s' cancelled at %s", original_file_name, blob_name, failed_at.value,
                extra={**log_extra, "stage": stage.value, "failed_stage": failed_at.value},
            )
            raise
        except Exception:
            failed_at, stage = stage, UploadStage.FAILED
            record_store_failure(failed_at.value)
            logger.exception(
                "An error occurred when uploading file %s (%s) to '%s'",
                original_file_name, content_type, blob_name,
                extra={**log_extra, "stage": stage.value, "failed_stage": failed_at.value},
            )
            raise
        finally:
            if owned is not None:
                owned.close()

        properties = (
            FileProperty(name=STORAGE_TYPE_PROPERTY, value=self._storage.backend_name),
            FileProperty(name=BLOB_NAME_PROPERTY, value=blob_name),
            FileProperty(name=CONTAINER_NAME_PROPERTY, value=self._storage.container),
        )
        stored = StoredFile(
            file_id=file_id,
            tracking_id=tracking_id,
            group_id=group_id,
            user_id=user_id,
            category=category,
            content_type=content_type,
            file_name=file_name,
            original_file_name=original_file_name,
            size_bytes=size,
            uri=self._storage.resolve_public_url(blob_name),
            properties=properties,
            created_at=datetime.now(timezone.utc),
        )
        record_store_success()
        logger.info(
            "File %s (%s) uploaded successfully to '%s'",
            original_file_name, content_type, blob_name, extra={**log_extra, "stage": stage.value},
        )
        return stored

    async def _validate(self, stream: BinaryIO, validator: ContentValidator, ctx: dict) -> None:
        async with spool(stream, self._spool_dir) as path:
            try:
                with open(path, "rb") as fh:
                    if inspect.iscoroutinefunction(validator):
                        await validator(fh)
                    else:
                        result = await asyncio.to_thread(validator, fh)
                        if inspect.isawaitable(result):
                            await result
            except Exception as e:
                logger.error("Failed to validate the file (%s): %s", ctx["tracking_id"], e)
                raise ValidationFailed(f"File validation failed: {e}", **ctx) from e

    async def _scan_gate(self, stream: BinaryIO, ctx: dict, log_extra: dict) -> None:
        if self._scanner is None:
            logger.info("AntiVirus scanning is disabled, skipping scan", extra=log_extra)
            return
        async with spool(stream, self._spool_dir) as path:
            result = await self._scanner.scan_file(path)
        record_scan_verdict(result.verdict.value)
        self._apply_scan_policy(result, ctx, log_extra)

    def _apply_scan_policy(self, result: ScanResult, ctx: dict, log_extra: dict) -> None:
        extra = {**log_extra, "verdict": result.verdict.value}
        if result.verdict is ScanVerdict.CLEAN:
            return
        if result.verdict is ScanVerdict.INFECTED:
            logger.error("The file (%s) cannot pass the anti-virus scanner: %s", ctx["tracking_id"], result.raw, extra=extra)
            raise VirusDetected("Virus detected", signature=result.signature, **ctx)
        if result.verdict is ScanVerdict.INDETERMINATE:
            if self._allow_on_error:
                logger.warning("Scan indeterminate (%s); allowed by allow-on-error policy", result.raw, extra=extra)
                return
            raise ScanUnavailable(f"Antivirus scan unavailable: {result.raw}", **ctx)
        raise ValueError(f"Unhandled scan verdict: {result.verdict}")

    async def _commit(
        self,
        blob_name: str,
        stream: BinaryIO,
        content_type: str | None,
        metadata: dict[str, str],
        ctx: dict,
    ) -> None:
        stream.seek(0)
        put = asyncio.ensure_future(self._storage.put_object(blob_name, stream, content_type, metadata))
        try:
            done, _ = await asyncio.wait({put}, timeout=self._upload_timeout or None)
        except asyncio.CancelledError:
            record_storage_op("put", False)
            await self._abandon_put(put, blob_name)
            raise
        if not done:
            record_storage_op("put", False)
            await self._abandon_put(put, blob_name)
            raise StorageWriteFailed(f"Upload to '{blob_name}' timed out after {self._upload_timeout}s", **ctx)
        try:
            put.result()
        except Exception as e:
            record_storage_op("put", False)
            raise StorageWriteFailed(f"Failed to write blob '{blob_name}': {e}", **ctx) from e
        record_storage_op("put", True)

    async def _abandon_put(self, put: asyncio.Future, blob_name: str) -> None:
        """Stop an unfinished put, wait until it settles, then remove whatever it wrote."""
        put.cancel()
        await asyncio.wait({put})
        if not put.cancelled():
            put.exception()
        try:
            await self._storage.delete_if_exists(blob_name)
        except Exception:
            # Caller still gets the timeout or cancellation
            logger.exception("Failed to roll back '%s' after an aborted upload", blob_name, extra={"blob_name": blob_name})

    async def exists(
        self,
        category: str,
        content_type: str | None,
        file_name: str,
        original_file_name: str,
    ) -> bool:
        """Advisory existence check: collaborator errors are logged and read as 'absent'."""
        blob_name = build_key(category, content_type, file_name, original_file_name)
        try:
            found = await self._storage.exists(blob_name)
        except Exception:
            record_storage_op("exists", False)
            logger.exception("Error checking if blob exists: %s", blob_name, extra={"blob_name": blob_name})
            return False
        record_storage_op("exists", True)
        return found

    async def delete(self, stored_file: StoredFile, *, missing_ok: bool = True) -> None:
        await self.delete_blob(blob_name_for(stored_file), missing_ok=missing_ok)

    async def delete_by_parts(
        self,
        category: str,
        content_type: str | None,
        file_name: str,
        original_file_name: str,
        *,
        missing_ok: bool = True,
    ) -> None:
        blob_name = build_key(category, content_type, file_name, original_file_name)
        await self.delete_blob(blob_name, missing_ok=missing_ok)

    async def delete_blob(self, blob_name: str, *, missing_ok: bool = True) -> None:
        """Idempotent delete. `missing_ok=False` raises BlobNotFound when nothing was there."""
        try:
            existed = await self._storage.delete_if_exists(blob_name)
        except Exception as e:
            record_storage_op("delete", False)
            logger.exception("Error deleting blob: %s", blob_name, extra={"blob_name": blob_name})
            raise StorageReadFailed(f"Failed to delete blob '{blob_name}': {e}") from e
        record_storage_op("delete", True)
        if existed:
            logger.info("Blob %s deleted successfully", blob_name, extra={"blob_name": blob_name})
        elif not missing_ok:
            raise BlobNotFound(f"Blob not found: {blob_name}")


def blob_name_for(stored_file: StoredFile) -> str:
    """Key recorded at commit time when present, else re-derived from the file's parts."""
    recorded = stored_file.get_property(BLOB_NAME_PROPERTY)
    if recorded:
        return recorded
    return build_key(
        stored_file.category,
        stored_file.content_type,
        stored_file.file_name,
        stored_file.original_file_name,
    )


def build_pipeline(settings: Settings, storage: BlobStore | None = None) -> UploadPipeline:
    scanner = None
    if settings.clamav_enabled:
        scanner = ScanProtocolClient(
            settings.clamav_host,
            settings.clamav_port,
            connect_timeout=settings.clamav_connect_timeout_seconds,
            io_timeout=settings.clamav_io_timeout_seconds,
            chunk_size=settings.clamav_chunk_size,
        )
    return UploadPipeline(
        storage if storage is not None else get_storage(),
        scanner,
        allow_on_error=settings.clamav_allow_on_error,
        upload_timeout=settings.storage_upload_timeout_seconds or None,
        spool_dir=settings.spool_dir,
    )


def get_pipeline() -> UploadPipeline:
    """Return a pipeline wired from the configured settings."""
    return build_pipeline(get_settings())
