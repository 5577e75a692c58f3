import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from genstore.logging.logger import Log

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: delay = base * multiplier**(attempt-1), capped."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay_seconds * self.multiplier ** (attempt - 1)
        return min(delay, self.max_delay_seconds)


def is_retryable(exc: BaseException) -> bool:
    """Errors opt into retries by carrying a truthy ``retryable`` attribute."""
    return bool(getattr(exc, "retryable", False))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run ``operation`` until it succeeds, fails non-retryably, or attempts run out.

    The last exception is re-raised unchanged.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            Log.warning(
                f"{operation_name} failed (attempt {attempt}/{policy.max_attempts}): "
                f"{exc}; retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1
