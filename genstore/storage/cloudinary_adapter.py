import asyncio
import re
import secrets
from io import BytesIO
from typing import Any

import cloudinary.uploader
from cloudinary.exceptions import (
    AuthorizationRequired,
    GeneralError,
    NotAllowed,
    RateLimited,
)
from cloudinary.exceptions import Error as CloudinaryError

from genstore.logging.logger import Log
from genstore.storage.base import BaseStorageAdapter, StoredAsset, StoreRequest, storage_error_for
from genstore.storage.exceptions import (
    StorageAuthError,
    StorageConfigurationError,
    StorageError,
    TransientStorageError,
)
from genstore.storage.metadata import FileMetadata, image_dimensions
from genstore.storage.policy import StoragePolicy, content_category, dated_prefix

# The upload API reports connection problems as plain Error with these prefixes.
_NETWORK_MESSAGES = ("unexpected error", "socket error", "server returned unexpected status")


def prompt_slug(prompt: str, max_length: int = 30) -> str:
    slug = re.sub(r"[^a-z0-9\s]", "", prompt.lower())
    return re.sub(r"\s+", "-", slug.strip())[:max_length].strip("-")


def translate_cloudinary_error(exc: CloudinaryError, operation: str) -> StorageError:
    """Map a Cloudinary SDK exception onto the StorageError hierarchy."""
    detail = str(exc)
    if isinstance(exc, (AuthorizationRequired, NotAllowed)):
        return StorageAuthError(f"{operation} failed: {detail}")
    if isinstance(exc, (RateLimited, GeneralError)):
        return TransientStorageError(f"{operation} failed: {detail}")
    if detail.lower().startswith(_NETWORK_MESSAGES):
        return TransientStorageError(f"{operation} failed: {detail}")
    return storage_error_for(None, detail, operation)


class CloudinaryStorageAdapter(BaseStorageAdapter):
    """Stores assets on the Cloudinary CDN through the official SDK.

    The SDK is synchronous, so each call runs in a worker thread. Credentials
    are passed per call instead of through ``cloudinary.config`` so that
    several adapters can coexist in one process.
    """

    provider_name = "cloudinary"

    def __init__(
        self,
        *,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        root_folder: str,
        policy: StoragePolicy,
        timeout_seconds: float = 60,
    ) -> None:
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._root_folder = root_folder.strip("/")
        self._policy = policy
        self._timeout_seconds = timeout_seconds

    def validate_configuration(self) -> None:
        missing = [
            name
            for name, value in (
                ("cloudinary_cloud_name", self._cloud_name),
                ("cloudinary_api_key", self._api_key),
                ("cloudinary_api_secret", self._api_secret),
            )
            if not value
        ]
        if missing:
            raise StorageConfigurationError(
                f"Cloudinary storage is not configured: missing {', '.join(missing)}"
            )

    def _credentials(self) -> dict[str, Any]:
        return {
            "cloud_name": self._cloud_name,
            "api_key": self._api_key,
            "api_secret": self._api_secret,
            "secure": True,
        }

    async def store_buffer(self, content: bytes, request: StoreRequest) -> StoredAsset:
        self._policy.validate(len(content), request.content_type)

        category = content_category(request.content_type)
        resource_type = "video" if category == "videos" else "image"
        folder = f"{self._root_folder}/{category}/{dated_prefix(request.generated_at)}"
        public_id = (
            f"{int(request.generated_at.timestamp() * 1000)}-"
            f"{prompt_slug(request.prompt)}-{secrets.token_hex(3)}"
        )
        try:
            body: dict[str, Any] = await asyncio.to_thread(
                cloudinary.uploader.upload,
                BytesIO(content),
                resource_type=resource_type,
                folder=folder,
                public_id=public_id,
                filename=request.filename,
                overwrite=False,
                context={
                    "model": request.model,
                    "prompt": request.prompt,
                    "generated_at": request.generated_at.isoformat(),
                },
                tags=[self._root_folder, "generated", request.model],
                timeout=self._timeout_seconds,
                **self._credentials(),
            )
        except CloudinaryError as exc:
            raise translate_cloudinary_error(exc, "Cloudinary upload") from exc

        stored_url = body.get("secure_url") or body.get("url")
        if not stored_url:
            raise StorageError("Cloudinary upload returned no URL")

        width, height = body.get("width"), body.get("height")
        if resource_type == "image" and (width is None or height is None):
            width, height = image_dimensions(content)

        Log.info(f"Stored {request.filename} on Cloudinary", public_id=body.get("public_id"))
        return StoredAsset(
            stored_url=stored_url,
            storage_path=body.get("public_id", f"{folder}/{public_id}"),
            provider=self.provider_name,
            metadata=FileMetadata(
                width=width,
                height=height,
                file_size=body.get("bytes", len(content)),
                content_type=request.content_type,
                filename=request.filename,
                duration=body.get("duration"),
            ),
        )

    async def delete(self, storage_path: str) -> bool:
        resource_type = "video" if "/videos/" in f"/{storage_path}" else "image"
        try:
            body = await asyncio.to_thread(
                cloudinary.uploader.destroy,
                storage_path,
                resource_type=resource_type,
                invalidate=True,
                **self._credentials(),
            )
        except CloudinaryError as exc:
            Log.error(f"Cloudinary delete of {storage_path} failed: {exc}")
            return False
        return body.get("result") == "ok"
