"""Application settings."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Service config from env."""

    app_name: str = "Scanned File Storage"
    debug: bool = False
    # Structured logging: set LOG_JSON=1 for one-JSON-object-per-line (CloudWatch, etc.)
    log_json: bool = False

    # Storage: local (dev disk) or s3. Default local so no AWS required.
    storage_backend: str = "local"  # local | s3
    # Bucket (s3) or top-level directory (local) that receives every blob
    storage_container: str = "files"
    # Public base URL; when set, uri = {base}/{container}/{key}. Else the backend derives one.
    storage_base_url: str = ""
    storage_create_container: bool = True
    storage_upload_timeout_seconds: int = 3600
    # Dev blob root (local disk)
    local_storage_dir: str = "./dev_blobs"

    # S3 (only used when storage_backend=s3)
    aws_region: str = "us-east-1"
    s3_endpoint_url: str | None = None  # MinIO / localstack

    # Temp files for validation and scanning; None = system temp dir
    spool_dir: str | None = None

    # ClamAV daemon (INSTREAM over TCP)
    clamav_enabled: bool = False
    clamav_host: str = "localhost"
    clamav_port: int = 3310
    clamav_connect_timeout_seconds: float = 300.0
    clamav_io_timeout_seconds: float = 300.0
    # Fail-open when the daemon is unreachable or answers something unknown
    clamav_allow_on_error: bool = True
    clamav_chunk_size: int = 64 * 1024

    # Upload validation for the HTTP surface
    content_type_allowlist: str = "image/png,image/jpeg,image/gif,image/webp,video/mp4,video/webm,video/quicktime,audio/mpeg,audio/wav,audio/webm,audio/ogg,application/pdf"
    validate_signatures: bool = True
    max_byte_size_image_mb: int = 50
    max_byte_size_video_mb: int = 2048
    max_byte_size_audio_mb: int = 100
    max_byte_size_other_mb: int = 10

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
