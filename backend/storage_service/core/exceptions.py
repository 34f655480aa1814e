"""Ingestion error taxonomy. Every gate failure carries enough context to correlate logs."""
from __future__ import annotations

from uuid import UUID


class IngestError(Exception):
    """Base for pipeline and storage failures."""

    def __init__(
        self,
        message: str,
        *,
        original_file_name: str | None = None,
        content_type: str | None = None,
        tracking_id: UUID | str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_file_name = original_file_name
        self.content_type = content_type
        self.tracking_id = tracking_id
        self.stage = stage

    def context(self) -> dict:
        return {
            "original_file_name": self.original_file_name,
            "content_type": self.content_type,
            "tracking_id": str(self.tracking_id) if self.tracking_id is not None else None,
            "stage": self.stage,
        }


class PayloadTooLarge(IngestError):
    pass


class ValidationFailed(IngestError):
    """Caller-supplied content validator rejected the file."""


class VirusDetected(IngestError):
    """Scan daemon reported an infection. Fatal regardless of allow-on-error."""

    def __init__(self, message: str, *, signature: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.signature = signature


class ScanUnavailable(IngestError):
    """Scan was indeterminate (daemon down, timeout, unknown answer) and policy is fail-closed."""


class StorageWriteFailed(IngestError):
    pass


class StorageReadFailed(IngestError):
    pass


class BlobNotFound(IngestError):
    """Only raised when the caller explicitly requires the object to exist."""
