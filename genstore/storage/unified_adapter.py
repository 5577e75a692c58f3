from genstore.logging.logger import Log
from genstore.storage.base import (
    BaseBucketProvisioner,
    BaseStorageAdapter,
    StoredAsset,
    StoreRequest,
)
from genstore.storage.exceptions import (
    InvalidAssetError,
    StorageConfigurationError,
    StorageError,
)


class UnifiedStorageAdapter(BaseStorageAdapter):
    """Stores on a primary backend and falls back to a secondary one.

    A file is only reported as failed once both backends refused it. A backend
    without credentials is skipped, so the adapter works with either one
    configured. Files the shared storage policy rejects are not retried on the
    fallback.
    """

    provider_name = "unified"

    def __init__(
        self,
        primary: BaseStorageAdapter,
        fallback: BaseStorageAdapter,
        fallback_provisioner: BaseBucketProvisioner | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._fallback_provisioner = fallback_provisioner
        self._fallback_provisioned = False

    @staticmethod
    def _is_configured(adapter: BaseStorageAdapter) -> bool:
        try:
            adapter.validate_configuration()
        except StorageConfigurationError:
            return False
        return True

    def validate_configuration(self) -> None:
        if self._is_configured(self._primary) or self._is_configured(self._fallback):
            return
        raise StorageConfigurationError(
            f"No storage backend is configured: neither {self._primary.provider_name} "
            f"nor {self._fallback.provider_name} has credentials"
        )

    async def store_buffer(self, content: bytes, request: StoreRequest) -> StoredAsset:
        if not self._is_configured(self._primary):
            return await self._store_on_fallback(content, request)
        try:
            return await self._primary.store_buffer(content, request)
        except InvalidAssetError:
            raise
        except StorageError as exc:
            if not self._is_configured(self._fallback):
                raise
            Log.warning(
                f"{self._primary.provider_name} storage failed, falling back to "
                f"{self._fallback.provider_name}: {exc}",
                filename=request.filename,
            )
        return await self._store_on_fallback(content, request)

    async def _store_on_fallback(self, content: bytes, request: StoreRequest) -> StoredAsset:
        if self._fallback_provisioner is not None and not self._fallback_provisioned:
            provisioned = await self._fallback_provisioner.ensure_bucket_exists()
            if provisioned.success:
                self._fallback_provisioned = True
            else:
                Log.warning(f"Fallback bucket setup failed, uploading anyway: {provisioned.error}")
        return await self._fallback.store_buffer(content, request)

    async def delete(self, storage_path: str) -> bool:
        """Delete from whichever backend holds the object."""
        if await self._primary.delete(storage_path):
            return True
        return await self._fallback.delete(storage_path)

    async def aclose(self) -> None:
        await self._primary.aclose()
        await self._fallback.aclose()
