import asyncio

import httpx
from storage3.utils import StorageException
from supabase import Client, create_client

from genstore.logging.logger import Log
from genstore.storage.base import BaseStorageAdapter, StoredAsset, StoreRequest, storage_error_for
from genstore.storage.exceptions import (
    BucketNotFoundError,
    StorageConfigurationError,
    StorageError,
    TransientStorageError,
)
from genstore.storage.metadata import extract_metadata
from genstore.storage.policy import StoragePolicy, build_storage_path


def api_error_details(exc: StorageException) -> tuple[int | None, str]:
    """Status code and message of a storage3 error, whichever shape it has."""
    raw_status = getattr(exc, "status", None)
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(exc.args[0] if exc.args else None, dict):
        payload = exc.args[0]
        raw_status = raw_status or payload.get("statusCode")
        message = payload.get("message") or payload.get("error") or message
    try:
        status = int(raw_status) if raw_status is not None else None
    except (TypeError, ValueError):
        status = None
    return status, str(message)


def translate_supabase_error(exc: StorageException, operation: str) -> StorageError:
    status, message = api_error_details(exc)
    if "bucket not found" in message.lower():
        return BucketNotFoundError(f"{operation} failed: {message}", status_code=status)
    return storage_error_for(status, message, operation)


class SupabaseConnection:
    """Builds the Supabase client on first use.

    Missing or malformed credentials surface as StorageConfigurationError when
    a request needs storage, not when the process starts.
    """

    def __init__(self, url: str, service_role_key: str, client: Client | None = None) -> None:
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self._client = client

    def client(self) -> Client:
        if self._client is None:
            if not self.url or not self.service_role_key:
                raise StorageConfigurationError(
                    "Supabase storage is not configured: missing supabase_url "
                    "or supabase_service_role_key"
                )
            try:
                self._client = create_client(self.url, self.service_role_key)
            except Exception as exc:
                raise StorageConfigurationError(f"Cannot create Supabase client: {exc}") from exc
        return self._client


class SupabaseStorageAdapter(BaseStorageAdapter):
    """Stores assets in a public Supabase Storage bucket."""

    provider_name = "supabase"

    def __init__(
        self,
        *,
        connection: SupabaseConnection,
        bucket: str,
        policy: StoragePolicy,
    ) -> None:
        self._connection = connection
        self._bucket = bucket
        self._policy = policy

    @property
    def bucket(self) -> str:
        return self._bucket

    def validate_configuration(self) -> None:
        missing = [
            name
            for name, value in (
                ("supabase_url", self._connection.url),
                ("supabase_service_role_key", self._connection.service_role_key),
                ("supabase_bucket", self._bucket),
            )
            if not value
        ]
        if missing:
            raise StorageConfigurationError(
                f"Supabase storage is not configured: missing {', '.join(missing)}"
            )

    async def store_buffer(self, content: bytes, request: StoreRequest) -> StoredAsset:
        self._policy.validate(len(content), request.content_type)

        storage_path = build_storage_path(
            request.filename, request.content_type, request.generated_at
        )
        bucket = self._connection.client().storage.from_(self._bucket)
        try:
            await asyncio.to_thread(
                bucket.upload,
                storage_path,
                content,
                {"content-type": request.content_type, "upsert": "false"},
            )
        except StorageException as exc:
            raise translate_supabase_error(exc, "Supabase upload") from exc
        except httpx.HTTPError as exc:
            raise TransientStorageError(f"Supabase upload network error: {exc}") from exc

        public_url = bucket.get_public_url(storage_path).rstrip("?")
        Log.info(f"Stored {request.filename}", bucket=self._bucket, path=storage_path)
        return StoredAsset(
            stored_url=public_url,
            storage_path=storage_path,
            provider=self.provider_name,
            metadata=extract_metadata(content, request.content_type, request.filename),
        )

    async def delete(self, storage_path: str) -> bool:
        try:
            bucket = self._connection.client().storage.from_(self._bucket)
            await asyncio.to_thread(bucket.remove, [storage_path])
        except (StorageException, StorageConfigurationError, httpx.HTTPError) as exc:
            Log.error(f"Supabase delete of {storage_path} failed: {exc}")
            return False
        return True
