from abc import ABC, abstractmethod
from dataclasses import dataclass

from genstore.fetcher.remote_fetcher import FetchedAsset
from genstore.processor.errors import FileError
from genstore.processor.exceptions import InvalidStageTransitionError
from genstore.processor.models import FileStage, ProcessedFile
from genstore.storage.base import StoredAsset
from genstore.storage.metadata import FileMetadata

ALLOWED_TRANSITIONS: dict[FileStage, frozenset[FileStage]] = {
    FileStage.PENDING: frozenset({FileStage.FETCHING, FileStage.FETCH_FAILED}),
    FileStage.FETCHING: frozenset({FileStage.FETCHED, FileStage.FETCH_FAILED}),
    FileStage.FETCHED: frozenset({FileStage.STORING, FileStage.STORE_FAILED}),
    FileStage.STORING: frozenset({FileStage.STORED, FileStage.STORE_FAILED}),
    FileStage.STORED: frozenset(),
    FileStage.FETCH_FAILED: frozenset(),
    FileStage.STORE_FAILED: frozenset(),
}


@dataclass(slots=True)
class FileContext:
    """Mutable state of one asset while it moves through the pipeline."""

    index: int
    original_url: str
    model: str = ""
    prompt: str = ""
    stage: FileStage = FileStage.PENDING
    asset: FetchedAsset | None = None
    stored: StoredAsset | None = None
    error: FileError | None = None

    def advance(self, stage: FileStage) -> None:
        if stage not in ALLOWED_TRANSITIONS[self.stage]:
            raise InvalidStageTransitionError(
                f"File {self.index} cannot move from {self.stage.value} to {stage.value}"
            )
        self.stage = stage

    def fail(self, error: FileError) -> None:
        """Move to the failure stage matching how far the file got."""
        if self.stage in (FileStage.PENDING, FileStage.FETCHING):
            self.advance(FileStage.FETCH_FAILED)
        elif self.stage in (FileStage.FETCHED, FileStage.STORING):
            self.advance(FileStage.STORE_FAILED)
        self.error = error
        # Drop the downloaded bytes; nothing reads them after a failure.
        self.asset = None

    def to_processed_file(self) -> ProcessedFile:
        stored = self.stored
        metadata = stored.metadata if stored else FileMetadata()
        return ProcessedFile(
            index=self.index,
            original_url=self.original_url,
            stored_url=stored.stored_url if stored else None,
            metadata=metadata,
            stage=self.stage,
            error=self.error,
            storage_path=stored.storage_path if stored else None,
            provider=stored.provider if stored else None,
        )


class PipelineStep(ABC):
    @abstractmethod
    async def run(self, context: FileContext) -> FileContext:
        raise NotImplementedError
