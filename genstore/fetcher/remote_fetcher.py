from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from genstore.fetcher.exceptions import FetchError, InvalidAssetUrlError
from genstore.logging.logger import Log
from genstore.processor.retry import RetryPolicy, with_retry
from genstore.storage.exceptions import StorageQuotaError
from genstore.storage.policy import DEFAULT_CONTENT_TYPE, guess_content_type

# 408/429 are the only client errors worth retrying.
_RETRYABLE_STATUS = frozenset({408, 429})


@dataclass(frozen=True)
class FetchedAsset:
    """Raw bytes of one downloaded asset."""

    url: str
    content: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.content)


class RemoteAssetFetcher:
    """Downloads provider-hosted assets with a per-request timeout and bounded retries."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30,
        retry_policy: RetryPolicy | None = None,
        trusted_domains: list[str] | None = None,
        max_bytes: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=2, base_delay_seconds=0.5, max_delay_seconds=2.0
        )
        self._trusted_domains = [d.lower() for d in (trusted_domains or [])]
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds, follow_redirects=True
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def validate_url(self, url: str) -> None:
        """Reject non-HTTP(S) URLs and, when an allow-list is configured, foreign hosts.

        Raises:
            InvalidAssetUrlError: if the URL may not be fetched.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise InvalidAssetUrlError(
                "Invalid URL. Only absolute HTTP/HTTPS URLs are supported.", url=url
            )
        if not self._trusted_domains:
            return
        host = parsed.hostname.lower()
        if not any(host == d or host.endswith(f".{d}") for d in self._trusted_domains):
            raise InvalidAssetUrlError(f"Host '{host}' is not a trusted domain", url=url)

    async def fetch(self, url: str) -> FetchedAsset:
        """Download one asset.

        Raises:
            FetchError: on network failure, timeout, or non-2xx status once
                retries are exhausted.
            StorageQuotaError: if the body is larger than ``max_bytes``.
        """
        self.validate_url(url)
        asset = await with_retry(
            lambda: self._fetch_once(url),
            self._retry_policy,
            operation_name=f"fetch {url}",
        )
        Log.debug(f"Fetched {asset.size} bytes ({asset.content_type}) from {url}")
        return asset

    async def _fetch_once(self, url: str) -> FetchedAsset:
        try:
            async with self._client.stream("GET", url) as response:
                if not response.is_success:
                    status = response.status_code
                    raise FetchError(
                        f"Failed to download asset: HTTP {status} {response.reason_phrase}",
                        url=url,
                        status_code=status,
                        retryable=status >= 500 or status in _RETRYABLE_STATUS,
                    )
                content = await self._read_capped(response, url)
        except httpx.TimeoutException as exc:
            raise FetchError(
                f"Timed out downloading asset: {exc}", url=url, timed_out=True
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Network error downloading asset: {exc}", url=url) from exc

        header = response.headers.get("content-type", "")
        content_type = header.split(";")[0].strip().lower()
        if not content_type or content_type == DEFAULT_CONTENT_TYPE:
            content_type = guess_content_type(url)
        return FetchedAsset(url=url, content=content, content_type=content_type)

    async def _read_capped(self, response: httpx.Response, url: str) -> bytes:
        """Read the body, giving up as soon as it outgrows ``max_bytes``."""
        limit = self._max_bytes
        if limit is None:
            return await response.aread()

        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            raise StorageQuotaError(
                f"Asset at {url} is {declared} bytes, maximum is {limit} bytes"
            )
        chunks: list[bytes] = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > limit:
                raise StorageQuotaError(
                    f"Asset at {url} exceeds the maximum of {limit} bytes"
                )
            chunks.append(chunk)
        return b"".join(chunks)
