import asyncio
import inspect
import time
from typing import Any

from pydantic import ValidationError

from genstore.config.settings import Settings
from genstore.fetcher.remote_fetcher import RemoteAssetFetcher
from genstore.logging.logger import Log
from genstore.processor.errors import ErrorCode, FileError, to_file_error
from genstore.processor.models import (
    FileStage,
    GenerationResult,
    ProcessingMetadata,
    ProcessingOptions,
    ProcessingResult,
    ProgressEvent,
    ProgressStage,
)
from genstore.processor.pipeline import FileContext
from genstore.processor.retry import RetryPolicy
from genstore.processor.steps import FetchAssetStep, StoreAssetStep
from genstore.records.writer import DatabaseRecordWriter, RecordContext
from genstore.storage.base import BaseBucketProvisioner, BaseStorageAdapter

# Share of a file's progress reached when each event is emitted.
_STAGE_FRACTIONS: dict[ProgressStage, float] = {
    "downloading": 0.0,
    "uploading": 1 / 3,
    "storing": 2 / 3,
    "complete": 1.0,
    "error": 1.0,
}


class _ProgressTracker:
    """Per-file progress map folded into one batch percentage.

    Sequential batches report fractional progress through the current file;
    concurrent batches only count finished files so the number never depends
    on which file happens to report first.
    """

    def __init__(self, total: int, concurrent: bool) -> None:
        self.total = total
        self._concurrent = concurrent
        self._fractions: dict[int, float] = {}

    def update(self, file_index: int, stage: ProgressStage) -> int:
        self._fractions[file_index] = _STAGE_FRACTIONS[stage]
        if self._concurrent:
            done = sum(1 for value in self._fractions.values() if value >= 1.0)
        else:
            done = sum(self._fractions.values())
        return min(100, int(100 * done / self.total))


class ResponseProcessor:
    """Fetches every asset of a generation response and stores it durably.

    Files are independent: a failure is recorded against its index and the
    batch moves on. Only a storage configuration error aborts the batch, and
    it does so before the first file is touched.
    """

    def __init__(
        self,
        fetcher: RemoteAssetFetcher,
        adapter: BaseStorageAdapter,
        provisioner: BaseBucketProvisioner | None = None,
        record_writer: DatabaseRecordWriter | None = None,
        store_retry_policy: RetryPolicy | None = None,
        max_concurrent_files: int = 1,
        batch_deadline_seconds: float | None = None,
    ) -> None:
        self._adapter = adapter
        self._provisioner = provisioner
        self._record_writer = record_writer
        self._max_concurrent_files = max(1, max_concurrent_files)
        self._batch_deadline_seconds = batch_deadline_seconds
        self._fetch_step = FetchAssetStep(fetcher)
        self._store_step = StoreAssetStep(adapter, store_retry_policy or RetryPolicy())

    async def process_response(
        self,
        raw_response: GenerationResult | dict[str, Any],
        options: ProcessingOptions,
    ) -> ProcessingResult:
        """Process one provider response.

        Raises:
            StorageConfigurationError: if the storage backend is not configured.
        """
        started = time.monotonic()

        try:
            response = (
                raw_response
                if isinstance(raw_response, GenerationResult)
                else GenerationResult.model_validate(raw_response)
            )
        except ValidationError as exc:
            Log.error(f"Rejected malformed generation response: {exc}")
            return self._rejected(f"Invalid generation response: {exc}", started)

        if not response.succeeded:
            return self._rejected(
                f"Generation {response.id} is {response.status}, not succeeded", started
            )
        if not response.output:
            return self._rejected(f"Generation {response.id} returned no assets", started)

        self._adapter.validate_configuration()
        await self._ensure_bucket()

        urls = response.output
        Log.info(
            f"Processing {len(urls)} file(s)",
            generation_id=response.id,
            provider=self._adapter.provider_name,
        )
        contexts = [
            FileContext(index=i, original_url=url, model=options.model, prompt=options.prompt)
            for i, url in enumerate(urls)
        ]
        tracker = _ProgressTracker(len(contexts), self._max_concurrent_files > 1)

        try:
            async with asyncio.timeout(self._batch_deadline_seconds):
                await self._run_all(contexts, options, tracker)
        except TimeoutError:
            Log.warning(
                f"Batch deadline of {self._batch_deadline_seconds}s reached",
                generation_id=response.id,
            )

        for context in contexts:
            if not context.stage.is_terminal:
                error = FileError(
                    file_index=context.index,
                    code=ErrorCode.TIMEOUT_ERROR,
                    message="Batch deadline exceeded before the file finished",
                    retryable=True,
                    operation="process",
                    url=context.original_url,
                )
                context.fail(error)

        files = [c.to_processed_file() for c in contexts if c.stage is FileStage.STORED]
        errors = [c.error for c in contexts if c.error is not None]
        result = ProcessingResult(
            files=files,
            errors=errors,
            metadata=ProcessingMetadata(
                total_files=len(contexts),
                success_count=len(files),
                processing_time=time.monotonic() - started,
                storage_used=sum(f.metadata.file_size or 0 for f in files),
            ),
        )

        if options.store_in_database and files and self._record_writer is not None:
            written = await self._record_writer.write(
                files,
                RecordContext(
                    user_id=options.user_id,
                    prompt=options.prompt,
                    model=options.model,
                    parameters=options.parameters,
                    cost=options.cost if options.cost is not None else response.cost,
                    generation_time=self._generation_time(options, response),
                    provider_urls=tuple(urls),
                ),
            )
            result.record_ids = written.ids
            result.database_error = written.error

        Log.info(
            f"Stored {len(files)}/{len(contexts)} file(s) "
            f"in {result.metadata.processing_time:.2f}s",
            generation_id=response.id,
        )
        return result

    async def _ensure_bucket(self) -> None:
        if self._provisioner is None:
            return
        provisioned = await self._provisioner.ensure_bucket_exists()
        if not provisioned.success:
            Log.warning(f"Storage bucket setup failed, continuing: {provisioned.error}")

    async def _run_all(
        self,
        contexts: list[FileContext],
        options: ProcessingOptions,
        tracker: _ProgressTracker,
    ) -> None:
        if self._max_concurrent_files == 1:
            for context in contexts:
                await self._process_file(context, options, tracker)
            return

        semaphore = asyncio.Semaphore(self._max_concurrent_files)

        async def bounded(context: FileContext) -> None:
            async with semaphore:
                await self._process_file(context, options, tracker)

        async with asyncio.TaskGroup() as group:
            for context in contexts:
                group.create_task(bounded(context))

    async def _process_file(
        self,
        context: FileContext,
        options: ProcessingOptions,
        tracker: _ProgressTracker,
    ) -> None:
        await self._report(options, tracker, "downloading", context.index, "Downloading file")
        try:
            await self._fetch_step.run(context)
        except Exception as exc:
            self._record_failure(context, exc, "fetch")
            await self._report_failure(options, tracker, context)
            return

        await self._report(options, tracker, "uploading", context.index, "Uploading to storage")
        try:
            await self._store_step.run(context)
        except Exception as exc:
            self._record_failure(context, exc, "store")
            await self._report_failure(options, tracker, context)
            return

        await self._report(options, tracker, "storing", context.index, "Extracting metadata")
        await self._report(options, tracker, "complete", context.index, "File stored")

    @staticmethod
    def _record_failure(context: FileContext, exc: Exception, operation: str) -> None:
        error = to_file_error(
            exc, file_index=context.index, operation=operation, url=context.original_url
        )
        Log.error(
            f"File failed during {operation}: {exc}",
            file_index=context.index,
            code=error.code.value,
        )
        context.fail(error)

    async def _report_failure(
        self,
        options: ProcessingOptions,
        tracker: _ProgressTracker,
        context: FileContext,
    ) -> None:
        error = context.error
        await self._report(
            options,
            tracker,
            "error",
            context.index,
            error.user_message if error else "File failed",
            error=error.message if error else None,
        )

    @staticmethod
    async def _report(
        options: ProcessingOptions,
        tracker: _ProgressTracker,
        stage: ProgressStage,
        file_index: int,
        message: str,
        error: str | None = None,
    ) -> None:
        progress = tracker.update(file_index, stage)
        if options.on_progress is None:
            return
        event = ProgressEvent(
            stage=stage,
            file_index=file_index,
            total_files=tracker.total,
            progress=progress,
            message=message,
            error=error,
        )
        try:
            outcome = options.on_progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            Log.warning(f"Progress callback failed for file {file_index}: {exc}")

    @staticmethod
    def _generation_time(options: ProcessingOptions, response: GenerationResult) -> float | None:
        if options.generation_time is not None:
            return options.generation_time
        if response.metrics is not None:
            return response.metrics.predict_time
        return None

    @staticmethod
    def _rejected(reason: str, started: float) -> ProcessingResult:
        return ProcessingResult(
            files=[],
            errors=[],
            metadata=ProcessingMetadata(
                total_files=0,
                success_count=0,
                processing_time=time.monotonic() - started,
                storage_used=0,
            ),
            rejection=reason,
        )


def build_processor(
    settings: Settings,
    fetcher: RemoteAssetFetcher,
    adapter: BaseStorageAdapter,
    provisioner: BaseBucketProvisioner | None = None,
    record_writer: DatabaseRecordWriter | None = None,
) -> ResponseProcessor:
    """Build a ResponseProcessor tuned by application settings."""
    return ResponseProcessor(
        fetcher=fetcher,
        adapter=adapter,
        provisioner=provisioner,
        record_writer=record_writer,
        store_retry_policy=RetryPolicy(
            max_attempts=settings.storage_max_attempts,
            base_delay_seconds=settings.storage_retry_base_delay_seconds,
            max_delay_seconds=settings.storage_retry_max_delay_seconds,
        ),
        max_concurrent_files=settings.max_concurrent_files,
        batch_deadline_seconds=settings.batch_deadline_seconds,
    )
