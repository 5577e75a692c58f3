import asyncio

import httpx
from storage3.utils import StorageException

from genstore.logging.logger import Log
from genstore.storage.base import BaseBucketProvisioner, ProvisionResult
from genstore.storage.exceptions import StorageConfigurationError
from genstore.storage.policy import StoragePolicy
from genstore.storage.supabase_adapter import SupabaseConnection, api_error_details


class NoopProvisioner(BaseBucketProvisioner):
    """For backends without an explicit container (Cloudinary folders appear on upload)."""

    async def ensure_bucket_exists(self) -> ProvisionResult:
        return ProvisionResult(success=True)


class SupabaseBucketProvisioner(BaseBucketProvisioner):
    """Creates the Supabase Storage bucket if it is missing.

    Safe to call before every batch and from concurrent requests: a create
    that loses the race reports "already exists", which counts as success.
    """

    def __init__(
        self,
        *,
        connection: SupabaseConnection,
        bucket: str,
        policy: StoragePolicy,
        public: bool = True,
    ) -> None:
        self._connection = connection
        self._bucket = bucket
        self._policy = policy
        self._public = public

    async def ensure_bucket_exists(self) -> ProvisionResult:
        try:
            storage = self._connection.client().storage
        except StorageConfigurationError as exc:
            return ProvisionResult(success=False, error=str(exc))

        try:
            await asyncio.to_thread(storage.get_bucket, self._bucket)
            return ProvisionResult(success=True)
        except StorageException as exc:
            status, message = api_error_details(exc)
            if status not in (400, 404) and "not found" not in message.lower():
                return ProvisionResult(
                    success=False, error=f"Failed to look up bucket: {message}"
                )
        except httpx.HTTPError as exc:
            return ProvisionResult(success=False, error=f"Bucket lookup failed: {exc}")

        try:
            await asyncio.to_thread(
                storage.create_bucket,
                self._bucket,
                options={
                    "public": self._public,
                    "file_size_limit": self._policy.max_file_size,
                    "allowed_mime_types": list(self._policy.allowed_mime_types),
                },
            )
        except StorageException as exc:
            status, message = api_error_details(exc)
            if status == 409 or "already exists" in message.lower():
                return ProvisionResult(success=True)
            return ProvisionResult(success=False, error=f"Failed to create bucket: {message}")
        except httpx.HTTPError as exc:
            return ProvisionResult(success=False, error=f"Bucket setup failed: {exc}")

        Log.info(f"Created storage bucket {self._bucket}")
        return ProvisionResult(success=True, created=True)
