from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from genstore.storage.exceptions import (
    StorageAuthError,
    StorageError,
    StorageQuotaError,
    TransientStorageError,
)
from genstore.storage.metadata import FileMetadata


@dataclass(frozen=True)
class StoreRequest:
    """What the backend needs to know about one asset besides its bytes."""

    original_url: str
    filename: str
    content_type: str
    model: str
    prompt: str
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class StoredAsset:
    """A durably stored asset, publicly resolvable at ``stored_url``."""

    stored_url: str
    storage_path: str
    provider: str
    metadata: FileMetadata


@dataclass(frozen=True)
class ProvisionResult:
    success: bool
    error: str | None = None
    created: bool = False


class BaseStorageAdapter(ABC):
    """Contract for durable storage backends."""

    provider_name: str = "base"

    @abstractmethod
    def validate_configuration(self) -> None:
        """Check credentials and settings without network I/O.

        Raises:
            StorageConfigurationError: if the backend cannot possibly work.
        """

    @abstractmethod
    async def store_buffer(self, content: bytes, request: StoreRequest) -> StoredAsset:
        """Upload bytes and return the durable URL plus measured metadata.

        Raises:
            StorageError: subclass describing whether the failure is retryable.
        """

    @abstractmethod
    async def delete(self, storage_path: str) -> bool:
        """Remove a stored object. Returns False if the backend refused."""

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""


class BaseBucketProvisioner(ABC):
    """Contract for making sure the destination container exists."""

    @abstractmethod
    async def ensure_bucket_exists(self) -> ProvisionResult:
        """Idempotently create the container. Never raises for remote failures."""


def storage_error_for(status: int | None, detail: str, operation: str) -> StorageError:
    """Pick the StorageError subclass for a failure reported by a storage SDK."""
    prefix = operation if status is None else f"{operation} (HTTP {status})"
    message = f"{prefix} failed: {detail}"
    lowered = detail.lower()
    if status in (401, 403) or "signature" in lowered or "api key" in lowered:
        return StorageAuthError(message, status_code=status)
    if status == 413 or "quota" in lowered or "too large" in lowered or "exceeded" in lowered:
        return StorageQuotaError(message, status_code=status)
    if status is not None and (status >= 500 or status in (420, 429)):
        return TransientStorageError(message, status_code=status)
    return StorageError(message, status_code=status)
