from dataclasses import asdict, replace

from genstore.fetcher.remote_fetcher import RemoteAssetFetcher
from genstore.logging.logger import Log
from genstore.processor.models import FileStage
from genstore.processor.pipeline import FileContext, PipelineStep
from genstore.processor.retry import RetryPolicy, with_retry
from genstore.storage.base import BaseStorageAdapter, StoreRequest
from genstore.storage.metadata import FileMetadata
from genstore.storage.policy import filename_from_url


class FetchAssetStep(PipelineStep):
    def __init__(self, fetcher: RemoteAssetFetcher) -> None:
        self._fetcher = fetcher

    async def run(self, context: FileContext) -> FileContext:
        context.advance(FileStage.FETCHING)
        context.asset = await self._fetcher.fetch(context.original_url)
        context.advance(FileStage.FETCHED)
        Log.info("Fetched file", file_index=context.index, size=context.asset.size)
        return context


class StoreAssetStep(PipelineStep):
    """Uploads the fetched bytes, retrying transient backend failures."""

    def __init__(self, adapter: BaseStorageAdapter, retry_policy: RetryPolicy) -> None:
        self._adapter = adapter
        self._retry_policy = retry_policy

    async def run(self, context: FileContext) -> FileContext:
        asset = context.asset
        if asset is None:
            raise ValueError(f"File {context.index} has no fetched content to store")

        context.advance(FileStage.STORING)
        request = StoreRequest(
            original_url=context.original_url,
            filename=filename_from_url(context.original_url),
            content_type=asset.content_type,
            model=context.model,
            prompt=context.prompt,
        )
        stored = await with_retry(
            lambda: self._adapter.store_buffer(asset.content, request),
            self._retry_policy,
            operation_name=f"store file {context.index}",
        )

        # Backends measure what they can; fill the rest from the download.
        fetched = FileMetadata(
            file_size=asset.size,
            content_type=asset.content_type,
            filename=request.filename,
        )
        context.stored = replace(stored, metadata=fetched.merged(**asdict(stored.metadata)))
        context.asset = None
        context.advance(FileStage.STORED)
        Log.info(f"Stored file at {stored.stored_url}", file_index=context.index)
        return context
