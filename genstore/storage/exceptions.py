class StorageError(Exception):
    """Base exception for all storage-backend errors."""

    retryable: bool = False

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageConfigurationError(StorageError):
    """Raised when storage credentials or settings are missing or invalid."""


class StorageAuthError(StorageError):
    """Raised when the backend rejects our credentials (misconfiguration, never retried)."""


class TransientStorageError(StorageError):
    """Raised for upload failures that may succeed on retry (5xx, 429, network, timeout)."""

    retryable = True


class StorageQuotaError(StorageError):
    """Raised when a file exceeds size limits or the backend quota is exhausted."""


class InvalidAssetError(StorageError):
    """Raised when a file is not acceptable for storage."""


class CorruptedAssetError(InvalidAssetError):
    """Raised when a file is empty or cannot be decoded."""


class BucketNotFoundError(StorageError):
    """Raised when the destination bucket does not exist."""
