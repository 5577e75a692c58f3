from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

from genstore.processor.errors import FileError
from genstore.storage.metadata import FileMetadata


class GenerationMetrics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    predict_time: float | None = None
    total_time: float | None = None


# Keys under which object-shaped outputs carry their asset URLs, in reading order.
OUTPUT_URL_KEYS = ("url", "urls", "video", "image", "images", "files")


class GenerationResult(BaseModel):
    """A provider's generation response, validated at the boundary."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: Literal["starting", "processing", "succeeded", "failed", "canceled"]
    output: list[str] = []
    model: str | None = None
    metrics: GenerationMetrics | None = None
    error: str | None = None
    cost: float | None = None

    @field_validator("output", mode="before")
    @classmethod
    def coerce_output(cls, value: Any) -> list[str]:
        """Flatten the shapes providers use into an ordered list of URLs.

        Single-asset models return a bare string, running predictions return
        null, and some models return an object such as ``{"video": url}``.
        """
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        elif isinstance(value, dict):
            collected: list[Any] = []
            for key in OUTPUT_URL_KEYS:
                found = value.get(key)
                if isinstance(found, str):
                    collected.append(found)
                elif isinstance(found, list):
                    collected.extend(found)
            value = collected
        if not isinstance(value, list):
            raise ValueError("output must be a URL, a list of URLs or an object holding them")
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class FileStage(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    FETCHED = "fetched"
    STORING = "storing"
    STORED = "stored"
    FETCH_FAILED = "fetch_failed"
    STORE_FAILED = "store_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStage.STORED, FileStage.FETCH_FAILED, FileStage.STORE_FAILED)


@dataclass(frozen=True)
class ProcessedFile:
    """One asset of the batch after it reached a terminal stage."""

    index: int
    original_url: str
    stored_url: str | None
    metadata: FileMetadata
    stage: FileStage
    error: FileError | None = None
    storage_path: str | None = None
    provider: str | None = None


ProgressStage = Literal["downloading", "uploading", "storing", "complete", "error"]


@dataclass(frozen=True)
class ProgressEvent:
    stage: ProgressStage
    file_index: int
    total_files: int
    progress: int
    message: str | None = None
    error: str | None = None


ProgressCallback = Callable[[ProgressEvent], Awaitable[None] | None]


@dataclass
class ProcessingOptions:
    """Who asked for the generation and what to do with its assets."""

    user_id: str
    prompt: str
    model: str
    parameters: dict[str, Any] = field(default_factory=dict)
    store_in_database: bool = True
    cost: float | None = None
    generation_time: float | None = None
    on_progress: ProgressCallback | None = None


@dataclass
class ProcessingMetadata:
    total_files: int
    success_count: int
    processing_time: float
    storage_used: int


@dataclass
class ProcessingResult:
    """Outcome of one batch.

    ``success`` means at least one file was stored. Callers detect partial
    failure through ``errors``.
    """

    files: list[ProcessedFile]
    errors: list[FileError]
    metadata: ProcessingMetadata
    record_ids: list[str] = field(default_factory=list)
    database_error: str | None = None
    rejection: str | None = None

    @property
    def success(self) -> bool:
        return len(self.files) > 0

    @property
    def is_partial(self) -> bool:
        return bool(self.files) and bool(self.errors)

    @property
    def failed_indexes(self) -> list[int]:
        return [error.file_index for error in self.errors]
