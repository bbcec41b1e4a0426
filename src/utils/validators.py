from __future__ import annotations

"""Input validation helpers shared by the API routes."""

from pathlib import PurePath
from typing import Optional, Tuple

ALLOWED_AUDIO_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/mpga",
    "audio/mp4",
    "audio/m4a",
    "audio/x-m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
}
ALLOWED_AUDIO_EXTENSIONS = ("mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm")
BYTES_PER_MB = 1024 * 1024


def validate_audio_size(size_bytes: int, max_mb: int) -> Tuple[bool, str]:
    """Check an upload against the size ceiling; the message names the limit."""

    if size_bytes > max_mb * BYTES_PER_MB:
        size_mb = size_bytes / BYTES_PER_MB
        return False, f"File size ({size_mb:.1f}MB) exceeds maximum allowed size of {max_mb}MB."
    return True, ""


def validate_audio_type(content_type: Optional[str], filename: Optional[str]) -> bool:
    """Accept known audio MIME types, falling back to the file extension.

    Browsers frequently send ``application/octet-stream`` or a codec suffix
    such as ``audio/webm;codecs=opus``, so only the base type is compared.
    """

    base_type = (content_type or "").split(";", 1)[0].strip().lower()
    if base_type in ALLOWED_AUDIO_TYPES:
        return True
    if not filename:
        return False
    extension = PurePath(filename).suffix.lstrip(".").lower()
    return extension in ALLOWED_AUDIO_EXTENSIONS


def unsupported_audio_message() -> str:
    return f"Unsupported audio format. Supported formats: {', '.join(ALLOWED_AUDIO_EXTENSIONS)}"


def safe_redirect_path(candidate: Optional[str], default: str = "/dashboard") -> str:
    """Return ``candidate`` if it is a same-origin path, else ``default``."""

    if not candidate or not candidate.startswith("/") or candidate.startswith("//"):
        return default
    return candidate
