class FetchError(Exception):
    """Raised when a remote asset cannot be downloaded."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: int | None = None,
        retryable: bool = True,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable
        self.timed_out = timed_out


class InvalidAssetUrlError(FetchError):
    """Raised when an asset URL is malformed, non-HTTP, or from an untrusted host."""

    def __init__(self, message: str, *, url: str) -> None:
        super().__init__(message, url=url, retryable=False)
