"""Storage limits, content categories and object naming.

Both storage backends share these rules so that a file accepted by one
backend is accepted by the other.
"""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from urllib.parse import urlparse

from genstore.config.settings import Settings
from genstore.storage.exceptions import (
    CorruptedAssetError,
    InvalidAssetError,
    StorageQuotaError,
)

EXTENSION_MIME_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
}

MIME_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class StoragePolicy:
    """Per-file limits enforced before any upload is attempted."""

    max_file_size: int = 50 * 1024 * 1024
    allowed_mime_types: tuple[str, ...] = field(
        default=(
            "image/jpeg",
            "image/png",
            "image/webp",
            "video/mp4",
            "video/webm",
            "video/quicktime",
        )
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoragePolicy":
        return cls(
            max_file_size=settings.storage_max_file_size_bytes,
            allowed_mime_types=tuple(settings.storage_allowed_mime_types),
        )

    def validate(self, size: int, content_type: str) -> None:
        """Raise if the file is empty, too large, or of a disallowed type."""
        if size == 0:
            raise CorruptedAssetError("File is empty or corrupted")
        if size > self.max_file_size:
            raise StorageQuotaError(
                f"File size {size} bytes exceeds maximum {self.max_file_size} bytes"
            )
        if content_type not in self.allowed_mime_types:
            raise InvalidAssetError(f"MIME type {content_type} is not allowed")


def guess_content_type(url: str) -> str:
    """Map the URL's file extension to a MIME type."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower().lstrip(".")
    return EXTENSION_MIME_TYPES.get(suffix, DEFAULT_CONTENT_TYPE)


def filename_from_url(url: str) -> str:
    name = PurePosixPath(urlparse(url).path).name
    return name or f"generated-{int(time.time() * 1000)}"


def content_category(content_type: str) -> str:
    return "videos" if content_type.startswith("video/") else "images"


def extension_for(filename: str, content_type: str) -> str:
    """Prefer a short extension from the filename, else derive one from the MIME type."""
    suffix = PurePosixPath(filename).suffix.lower()
    if 1 < len(suffix) <= 5:
        return suffix
    return MIME_EXTENSIONS.get(content_type, ".bin")


def unique_name(now: datetime | None = None) -> str:
    """``<epoch-millis>-<6 random chars>``."""
    moment = now or datetime.now(timezone.utc)
    return f"{int(moment.timestamp() * 1000)}-{secrets.token_hex(3)}"


def dated_prefix(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"{moment.year}/{moment.month:02d}/{moment.day:02d}"


def build_storage_path(filename: str, content_type: str, now: datetime | None = None) -> str:
    """``{images|videos}/YYYY/MM/DD/<epoch-millis>-<random><ext>``."""
    moment = now or datetime.now(timezone.utc)
    return (
        f"{content_category(content_type)}/{dated_prefix(moment)}/"
        f"{unique_name(moment)}{extension_for(filename, content_type)}"
    )
