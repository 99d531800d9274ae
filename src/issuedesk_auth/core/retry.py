"""
Retry with exponential backoff for outbound platform calls.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from ..errors import GitHubApiError, NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3  # Total attempts, including the first
    initial_delay: float = 1.0  # Seconds before the second attempt
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt (1s, 2s, 4s, ...)."""
        return self.initial_delay * (self.backoff_multiplier**attempt)


def is_default_retryable(error: BaseException) -> bool:
    """Transport failures, 429 and 5xx responses are worth retrying."""
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, GitHubApiError) and error.upstream_status is not None:
        return error.upstream_status == 429 or error.upstream_status >= 500
    return False


async def retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    is_retryable: Callable[[BaseException], bool] = is_default_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Call ``func`` until it succeeds or the attempts are exhausted.

    Args:
        func: Zero-argument coroutine factory
        config: Attempt count and delays
        is_retryable: Predicate deciding whether an error warrants another attempt
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The first successful result

    Raises:
        The last error when it is not retryable or attempts are exhausted
    """
    config = config or RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            return await func()
        except Exception as e:
            last_attempt = attempt == config.max_attempts - 1
            if last_attempt or not is_retryable(e):
                raise
            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_attempts} failed ({type(e).__name__}), "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    raise RuntimeError("retry exhausted without result")  # pragma: no cover
