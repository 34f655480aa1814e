"""Blob store factory: local (dev disk) or S3. S3 backend is loaded only when STORAGE_BACKEND=s3 (no boto3 in local)."""
from storage_service.core.config import get_settings
from storage_service.services.storage.base import BlobStore
from storage_service.services.storage.local import LocalBlobStore


def get_storage() -> BlobStore:
    """Return the configured blob store. Avoids importing boto3 when backend is local."""
    settings = get_settings()
    if settings.storage_backend == "s3":
        from storage_service.services.storage.s3 import S3BlobStore
        return S3BlobStore(
            settings.storage_container,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url,
            base_url=settings.storage_base_url,
        )
    return LocalBlobStore(
        settings.local_storage_dir,
        settings.storage_container,
        base_url=settings.storage_base_url,
    )
