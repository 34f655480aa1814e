"""Upload validation: file-name sanitizing, content-type allowlist, max size per kind, magic-byte signatures."""
import re
from typing import BinaryIO, Callable

from storage_service.core.config import get_settings
from storage_service.services.blob_keys import classify

_MB = 1024 * 1024

# Leading bytes per content type; (offset, magic) pairs must all match
_SIGNATURES: dict[str, list[list[tuple[int, bytes]]]] = {
    "image/png": [[(0, b"\x89PNG\r\n\x1a\n")]],
    "image/jpeg": [[(0, b"\xff\xd8\xff")]],
    "image/gif": [[(0, b"GIF87a")], [(0, b"GIF89a")]],
    "image/webp": [[(0, b"RIFF"), (8, b"WEBP")]],
    "video/mp4": [[(4, b"ftyp")]],
    "video/quicktime": [[(4, b"ftyp")], [(4, b"moov")]],
    "video/webm": [[(0, b"\x1a\x45\xdf\xa3")]],
    "audio/webm": [[(0, b"\x1a\x45\xdf\xa3")]],
    "audio/mpeg": [[(0, b"ID3")], [(0, b"\xff\xfb")], [(0, b"\xff\xf3")], [(0, b"\xff\xf2")]],
    "audio/wav": [[(0, b"RIFF"), (8, b"WAVE")]],
    "audio/ogg": [[(0, b"OggS")]],
    "application/pdf": [[(0, b"%PDF-")]],
}
_HEADER_BYTES = 16


def sanitize_storage_filename(filename: str | None) -> str:
    """Safe file name: no path separators, no control chars, bounded length."""
    if not filename or not filename.strip():
        return ""
    base = filename.strip().split("/")[-1].split("\\")[-1]
    safe = re.sub(r"[^\w\-.]", "_", base)
    return safe[:200] if len(safe) > 200 else safe


def _allowlist() -> set[str]:
    return set(s.strip() for s in get_settings().content_type_allowlist.split(",") if s.strip())


def _base_type(content_type: str) -> str:
    return content_type.split(";")[0].strip().lower()


def is_content_type_allowed(content_type: str | None) -> bool:
    if not content_type:
        return False
    return _base_type(content_type) in _allowlist()


def max_byte_size_for(content_type: str | None) -> int:
    """Per-kind upload cap, keyed by the blob directory the content type lands in."""
    settings = get_settings()
    limits = {
        "images": settings.max_byte_size_image_mb * _MB,
        "videos": settings.max_byte_size_video_mb * _MB,
        "audios": settings.max_byte_size_audio_mb * _MB,
        "other": settings.max_byte_size_other_mb * _MB,
    }
    return limits[classify(content_type)]


def matches_signature(content_type: str, header: bytes) -> bool:
    """True when header matches a known signature, or when the type has none registered."""
    alternatives = _SIGNATURES.get(_base_type(content_type))
    if not alternatives:
        return True
    return any(
        all(header[offset:offset + len(magic)] == magic for offset, magic in parts)
        for parts in alternatives
    )


def signature_validator(content_type: str) -> Callable[[BinaryIO], None]:
    """Content validator for the upload pipeline: rejects empty files and mismatched magic bytes."""

    def validate(fh: BinaryIO) -> None:
        header = fh.read(_HEADER_BYTES)
        if not header:
            raise ValueError("File is empty")
        if not matches_signature(content_type, header):
            raise ValueError(f"File content does not match declared type {content_type}")

    return validate
