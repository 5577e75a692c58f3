from dataclasses import dataclass, replace
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from genstore.logging.logger import Log


@dataclass(frozen=True)
class FileMetadata:
    """Derived properties of a stored asset; every field is unknown until measured."""

    width: int | None = None
    height: int | None = None
    file_size: int | None = None
    content_type: str | None = None
    filename: str | None = None
    duration: float | None = None

    def merged(self, **changes: object) -> "FileMetadata":
        """Return a copy with the non-None ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def image_dimensions(content: bytes) -> tuple[int | None, int | None]:
    """Read width/height from image bytes without decoding pixel data.

    Returns (None, None) for videos and undecodable payloads.
    """
    try:
        with Image.open(BytesIO(content)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError) as exc:
        Log.debug(f"Could not read image dimensions: {exc}")
        return None, None


def extract_metadata(content: bytes, content_type: str, filename: str) -> FileMetadata:
    width, height = (None, None)
    if content_type.startswith("image/"):
        width, height = image_dimensions(content)
    return FileMetadata(
        width=width,
        height=height,
        file_size=len(content),
        content_type=content_type,
        filename=filename,
    )
