from dataclasses import dataclass, field
from typing import Any

import psycopg
from pydantic import ValidationError

from genstore.database.models import ImageRecordInsert
from genstore.database.repositories.image_repository import ImageRepository
from genstore.logging.logger import Log
from genstore.processor.models import ProcessedFile


class DurabilityError(ValueError):
    """Raised when a row would point at a provider URL instead of stored content."""


@dataclass(frozen=True)
class RecordContext:
    """Request-level facts shared by every row of a batch."""

    user_id: str
    prompt: str
    model: str
    parameters: dict[str, Any] = field(default_factory=dict)
    cost: float | None = None
    generation_time: float | None = None
    provider_urls: tuple[str, ...] = ()


@dataclass
class RecordWriteResult:
    ids: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class DatabaseRecordWriter:
    """Turns stored files into image rows and inserts them as one batch."""

    def __init__(self, image_repo: ImageRepository) -> None:
        self._image_repo = image_repo

    def build_rows(
        self, files: list[ProcessedFile], context: RecordContext
    ) -> list[ImageRecordInsert]:
        """Build one row per stored file.

        Cost is split evenly across the batch and generation time is stored in
        whole milliseconds.

        Raises:
            DurabilityError: if a file has no stored URL or its stored URL is
                one of the provider's own URLs.
            pydantic.ValidationError: if a row fails boundary validation.
        """
        if not files:
            return []

        ephemeral = set(context.provider_urls)
        per_file_cost = context.cost / len(files) if context.cost is not None else None
        generation_ms = (
            round(context.generation_time * 1000)
            if context.generation_time is not None
            else None
        )

        rows = []
        for processed in files:
            if not processed.stored_url:
                raise DurabilityError(f"File {processed.index} was never stored")
            if processed.stored_url in ephemeral or processed.stored_url == processed.original_url:
                raise DurabilityError(
                    f"File {processed.index} points at a provider URL, not stored content"
                )
            rows.append(
                ImageRecordInsert(
                    user_id=context.user_id,
                    original_prompt=context.prompt,
                    file_path=processed.stored_url,
                    model=context.model,
                    parameters=context.parameters,
                    width=processed.metadata.width,
                    height=processed.metadata.height,
                    cost=per_file_cost,
                    generation_time=generation_ms,
                )
            )
        return rows

    async def write(self, files: list[ProcessedFile], context: RecordContext) -> RecordWriteResult:
        """Insert rows for ``files``. Failures are logged and returned, never raised."""
        try:
            rows = self.build_rows(files, context)
            ids = await self._image_repo.insert_many(rows)
        except (ValidationError, ValueError) as exc:
            Log.error(f"Rejected image records: {exc}", user_id=context.user_id)
            return RecordWriteResult(error=f"Invalid image record: {exc}")
        except (psycopg.Error, RuntimeError) as exc:
            Log.error(f"Failed to insert image records: {exc}", user_id=context.user_id)
            return RecordWriteResult(error=f"Database error: {exc}")

        Log.info(f"Inserted {len(ids)} image records", user_id=context.user_id)
        return RecordWriteResult(ids=ids)
