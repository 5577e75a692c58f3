from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from genstore.analytics.cost import estimate_cost
from genstore.analytics.dispatcher import BackgroundDispatcher
from genstore.analytics.recorder import GenerationAnalytics, PromptAnalyticsRecorder
from genstore.config.settings import Settings
from genstore.database.repositories.image_repository import ImageRepository
from genstore.database.repositories.prompt_repository import PromptRepository
from genstore.fetcher.remote_fetcher import RemoteAssetFetcher
from genstore.logging.logger import Log
from genstore.processor.errors import ErrorCode, user_message
from genstore.processor.models import (
    GenerationResult,
    ProcessingOptions,
    ProcessingResult,
    ProgressCallback,
)
from genstore.processor.processor import ResponseProcessor, build_processor
from genstore.processor.retry import RetryPolicy
from genstore.records.writer import DatabaseRecordWriter, RecordContext
from genstore.storage.exceptions import StorageConfigurationError
from genstore.storage.factory import StorageBackend, StorageFactory
from genstore.storage.metadata import FileMetadata

DATABASE_SAVE_WARNING = "Images were stored but could not be saved to your gallery."


@dataclass
class GenerationRequest:
    """The caller's side of a generation: who asked, and with what."""

    user_id: str
    prompt: str
    model: str
    parameters: dict[str, Any] = field(default_factory=dict)
    category: str = "image"
    cost: float | None = None
    generation_time: float | None = None
    on_progress: ProgressCallback | None = None


class ImageEntry(BaseModel):
    id: str
    url: str
    original_url: str
    metadata: FileMetadata = FileMetadata()
    temporary: bool = False


class StorageSummary(BaseModel):
    persistent: bool
    total_files: int
    storage_used: int = 0
    errors: list[str] = []


class GenerationResponse(BaseModel):
    success: bool
    generation_id: str | None = None
    images: list[ImageEntry] = []
    storage: StorageSummary | None = None
    error: str | None = None


class GenerationStorageService:
    """Turns a finished provider generation into the response returned to the user.

    A generation that succeeded upstream is always reported as a success.
    Whatever could not be stored is returned under its provider URL and
    marked temporary.
    """

    def __init__(
        self,
        processor: ResponseProcessor,
        record_writer: DatabaseRecordWriter,
        recorder: PromptAnalyticsRecorder,
        dispatcher: BackgroundDispatcher,
        fetcher: RemoteAssetFetcher | None = None,
        backend: StorageBackend | None = None,
    ) -> None:
        self._processor = processor
        self._record_writer = record_writer
        self._recorder = recorder
        self._dispatcher = dispatcher
        self._fetcher = fetcher
        self._backend = backend

    async def aclose(self, drain_timeout: float | None = 10.0) -> None:
        """Finish background analytics, then release HTTP clients."""
        await self._dispatcher.drain(timeout=drain_timeout)
        if self._fetcher is not None:
            await self._fetcher.aclose()
        if self._backend is not None:
            await self._backend.aclose()

    async def handle_generation(
        self,
        result: GenerationResult | dict[str, Any],
        request: GenerationRequest,
    ) -> GenerationResponse:
        try:
            generation = (
                result
                if isinstance(result, GenerationResult)
                else GenerationResult.model_validate(result)
            )
        except ValidationError as exc:
            Log.error(f"Rejected malformed generation result: {exc}")
            return GenerationResponse(
                success=False, error=user_message(ErrorCode.VALIDATION_ERROR)
            )

        if not generation.succeeded or not generation.output:
            error = generation.error or f"Generation {generation.status}"
            if generation.succeeded:
                error = "Generation returned no output"
            Log.warning(f"Generation not stored: {error}", generation_id=generation.id)
            self._dispatch_analytics(request, generation, successful=False, error=error)
            return GenerationResponse(
                success=False, generation_id=generation.id, error=error
            )

        cost = self._resolve_cost(request, generation)
        generation_time = self._resolve_generation_time(request, generation)
        options = ProcessingOptions(
            user_id=request.user_id,
            prompt=request.prompt,
            model=request.model,
            parameters=request.parameters,
            store_in_database=False,
            cost=cost,
            generation_time=generation_time,
            on_progress=request.on_progress,
        )

        try:
            processing = await self._processor.process_response(generation, options)
        except StorageConfigurationError as exc:
            Log.error(f"Storage is not configured, returning temporary URLs: {exc}")
            return self._temporary_response(
                generation, request, [user_message(ErrorCode.INVALID_CONFIG)]
            )
        except Exception as exc:
            Log.exception(
                f"Storing failed unexpectedly: {exc}", generation_id=generation.id
            )
            return self._temporary_response(
                generation, request, [user_message(ErrorCode.UNKNOWN_ERROR)]
            )

        if not processing.files:
            Log.warning(
                f"No files of generation {generation.id} were stored, returning temporary URLs"
            )
            return self._temporary_response(
                generation, request, [error.user_message for error in processing.errors]
            )

        written = await self._record_writer.write(
            processing.files,
            RecordContext(
                user_id=request.user_id,
                prompt=request.prompt,
                model=request.model,
                parameters=request.parameters,
                cost=cost,
                generation_time=generation_time,
                provider_urls=tuple(generation.output),
            ),
        )

        response = self._stored_response(generation, processing, written.ids, written.error)
        self._dispatch_analytics(
            request,
            generation,
            successful=True,
            image_ids=written.ids if written.success else [],
            images_generated=len(processing.files),
            cost=cost,
            generation_time=generation_time,
        )
        return response

    def _stored_response(
        self,
        generation: GenerationResult,
        processing: ProcessingResult,
        record_ids: list[str],
        database_error: str | None,
    ) -> GenerationResponse:
        linked = database_error is None and len(record_ids) == len(processing.files)
        indexed: list[tuple[int, ImageEntry]] = []
        for position, processed in enumerate(processing.files):
            indexed.append(
                (
                    processed.index,
                    ImageEntry(
                        id=record_ids[position] if linked else f"stored-{processed.index}",
                        url=processed.stored_url,
                        original_url=processed.original_url,
                        metadata=processed.metadata,
                    ),
                )
            )
        for error in processing.errors:
            url = generation.output[error.file_index]
            indexed.append(
                (
                    error.file_index,
                    ImageEntry(
                        id=f"temp-{error.file_index}", url=url, original_url=url, temporary=True
                    ),
                )
            )
        entries = [entry for _, entry in sorted(indexed, key=lambda pair: pair[0])]

        errors = [error.user_message for error in processing.errors]
        if database_error is not None:
            errors.append(DATABASE_SAVE_WARNING)
        return GenerationResponse(
            success=True,
            generation_id=generation.id,
            images=entries,
            storage=StorageSummary(
                persistent=not processing.errors,
                total_files=len(generation.output),
                storage_used=processing.metadata.storage_used,
                errors=errors,
            ),
        )

    def _temporary_response(
        self,
        generation: GenerationResult,
        request: GenerationRequest,
        errors: list[str],
    ) -> GenerationResponse:
        self._dispatch_analytics(
            request,
            generation,
            successful=True,
            images_generated=len(generation.output),
            cost=self._resolve_cost(request, generation),
            generation_time=self._resolve_generation_time(request, generation),
        )
        return GenerationResponse(
            success=True,
            generation_id=generation.id,
            images=[
                ImageEntry(id=f"temp-{index}", url=url, original_url=url, temporary=True)
                for index, url in enumerate(generation.output)
            ],
            storage=StorageSummary(
                persistent=False,
                total_files=len(generation.output),
                errors=errors,
            ),
        )

    def _dispatch_analytics(
        self,
        request: GenerationRequest,
        generation: GenerationResult,
        *,
        successful: bool,
        image_ids: list[str] | None = None,
        images_generated: int = 0,
        cost: float | None = None,
        generation_time: float | None = None,
        error: str | None = None,
    ) -> None:
        analytics = GenerationAnalytics(
            user_id=request.user_id,
            prompt=request.prompt,
            model=request.model,
            category=request.category,
            parameters=request.parameters,
            successful=successful,
            image_ids=tuple(image_ids or ()),
            images_generated=images_generated,
            generation_time=generation_time,
            cost=cost,
            error_message=error,
        )
        self._dispatcher.dispatch(
            lambda: self._recorder.record_generation(analytics),
            name=f"prompt-analytics-{generation.id}",
        )

    @staticmethod
    def _resolve_cost(request: GenerationRequest, generation: GenerationResult) -> float | None:
        if request.cost is not None:
            return request.cost
        if generation.cost is not None:
            return generation.cost
        return estimate_cost(request.model, request.parameters, len(generation.output))

    @staticmethod
    def _resolve_generation_time(
        request: GenerationRequest, generation: GenerationResult
    ) -> float | None:
        if request.generation_time is not None:
            return request.generation_time
        if generation.metrics is not None:
            return generation.metrics.predict_time
        return None


def build_service(settings: Settings) -> GenerationStorageService:
    """Build a GenerationStorageService with all required collaborators.

    The database pool must already be initialised; see ``init_pool``.
    """
    fetcher = RemoteAssetFetcher(
        timeout_seconds=settings.fetch_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.fetch_max_attempts,
            base_delay_seconds=settings.fetch_backoff_seconds,
            max_delay_seconds=settings.fetch_backoff_seconds * 4,
        ),
        trusted_domains=settings.fetch_trusted_domains,
        max_bytes=settings.storage_max_file_size_bytes,
    )
    backend = StorageFactory.create(settings)
    record_writer = DatabaseRecordWriter(ImageRepository())
    processor = build_processor(
        settings,
        fetcher=fetcher,
        adapter=backend.adapter,
        provisioner=backend.provisioner,
        record_writer=record_writer,
    )
    recorder = PromptAnalyticsRecorder(
        PromptRepository(), similarity_threshold=settings.prompt_similarity_threshold
    )
    return GenerationStorageService(
        processor=processor,
        record_writer=record_writer,
        recorder=recorder,
        dispatcher=BackgroundDispatcher(),
        fetcher=fetcher,
        backend=backend,
    )
