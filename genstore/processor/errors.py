"""Classification of per-file failures into stable error codes.

Every exception raised while fetching or storing a file ends up here, so the
processor can record it against the file, decide whether it was worth
retrying, and show the user a message that does not leak backend details.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import httpx
from pydantic import ValidationError

from genstore.fetcher.exceptions import FetchError, InvalidAssetUrlError
from genstore.storage.exceptions import (
    BucketNotFoundError,
    CorruptedAssetError,
    InvalidAssetError,
    StorageAuthError,
    StorageConfigurationError,
    StorageError,
    StorageQuotaError,
    TransientStorageError,
)


class ErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    CORRUPTED_FILE = "CORRUPTED_FILE"
    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    BUCKET_NOT_FOUND = "BUCKET_NOT_FOUND"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    INVALID_CONFIG = "INVALID_CONFIG"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: "Network connection failed. Please check your internet connection and try again.",
    ErrorCode.TIMEOUT_ERROR: "The operation timed out. Please try again.",
    ErrorCode.FILE_NOT_FOUND: "The generated file could not be found. It may have expired.",
    ErrorCode.FILE_TOO_LARGE: "The file is too large to store.",
    ErrorCode.INVALID_FILE_TYPE: "This file type is not supported.",
    ErrorCode.CORRUPTED_FILE: "The file appears to be corrupted or empty.",
    ErrorCode.STORAGE_QUOTA_EXCEEDED: "Storage quota exceeded. Please contact support.",
    ErrorCode.INSUFFICIENT_PERMISSIONS: "Storage permissions error. Please contact support.",
    ErrorCode.BUCKET_NOT_FOUND: "Storage is not set up correctly. Please contact support.",
    ErrorCode.UPLOAD_FAILED: "Failed to save the file. Please try again.",
    ErrorCode.INVALID_CONFIG: "Storage is not configured. Please contact support.",
    ErrorCode.VALIDATION_ERROR: "The generation result was not in the expected format.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}

# Statuses that mean the provider URL has expired rather than hiccupped.
_GONE_STATUSES = frozenset({404, 410})


@dataclass(frozen=True)
class FileError:
    """A failure recorded against one file of a batch."""

    file_index: int
    code: ErrorCode
    message: str
    retryable: bool
    operation: str
    url: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_message(self) -> str:
        return f"File {self.file_index + 1}: {user_message(self.code)}"


def user_message(code: ErrorCode) -> str:
    return USER_MESSAGES.get(code, USER_MESSAGES[ErrorCode.UNKNOWN_ERROR])


def classify(exc: BaseException) -> tuple[ErrorCode, bool]:
    """Map an exception to its error code and whether retrying could help."""
    if isinstance(exc, InvalidAssetUrlError):
        return ErrorCode.VALIDATION_ERROR, False
    if isinstance(exc, FetchError):
        if exc.timed_out:
            return ErrorCode.TIMEOUT_ERROR, exc.retryable
        if exc.status_code in _GONE_STATUSES:
            return ErrorCode.FILE_NOT_FOUND, False
        return ErrorCode.NETWORK_ERROR, exc.retryable

    if isinstance(exc, StorageConfigurationError):
        return ErrorCode.INVALID_CONFIG, False
    if isinstance(exc, StorageAuthError):
        return ErrorCode.INSUFFICIENT_PERMISSIONS, False
    if isinstance(exc, BucketNotFoundError):
        return ErrorCode.BUCKET_NOT_FOUND, False
    if isinstance(exc, StorageQuotaError):
        # Without a status the limit was our own per-file size check.
        if exc.status_code in (None, 413):
            return ErrorCode.FILE_TOO_LARGE, False
        return ErrorCode.STORAGE_QUOTA_EXCEEDED, False
    if isinstance(exc, CorruptedAssetError):
        return ErrorCode.CORRUPTED_FILE, False
    if isinstance(exc, InvalidAssetError):
        return ErrorCode.INVALID_FILE_TYPE, False
    if isinstance(exc, TransientStorageError):
        return ErrorCode.UPLOAD_FAILED, True
    if isinstance(exc, StorageError):
        return ErrorCode.UPLOAD_FAILED, False

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorCode.TIMEOUT_ERROR, True
    if isinstance(exc, httpx.HTTPError):
        return ErrorCode.NETWORK_ERROR, True
    if isinstance(exc, (ValidationError, ValueError)):
        return ErrorCode.VALIDATION_ERROR, False
    return ErrorCode.UNKNOWN_ERROR, False


def to_file_error(
    exc: BaseException,
    *,
    file_index: int,
    operation: str,
    url: str | None = None,
) -> FileError:
    code, retryable = classify(exc)
    return FileError(
        file_index=file_index,
        code=code,
        message=str(exc) or type(exc).__name__,
        retryable=retryable,
        operation=operation,
        url=url,
    )
