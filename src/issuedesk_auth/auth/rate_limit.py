"""
Sliding-window rate limiting for session-authenticated endpoints.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: int = 0


class RateLimiter:
    """Allow ``max_requests`` per identifier within a rolling ``window`` seconds.

    Request timestamps live in a TTLCache so idle identifiers age out.
    """

    def __init__(
        self,
        max_requests: int = 5,
        window: float = 60,
        maxsize: int = 10000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._requests: TTLCache = TTLCache(maxsize=maxsize, ttl=window, timer=clock)

    def check(self, identifier: str) -> RateLimitResult:
        """Record a request for ``identifier`` and report whether it is allowed."""
        now = self._clock()
        window_start = now - self.window
        timestamps = [t for t in self._requests.get(identifier, []) if t > window_start]

        if len(timestamps) >= self.max_requests:
            self._requests[identifier] = timestamps
            reset_at = timestamps[0] + self.window
            logger.warning(f"Rate limit exceeded for {identifier}")
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, math.ceil(reset_at - now)),
            )

        timestamps.append(now)
        self._requests[identifier] = timestamps
        return RateLimitResult(
            allowed=True,
            remaining=self.max_requests - len(timestamps),
            reset_at=timestamps[0] + self.window,
        )

    def reset(self, identifier: str | None = None) -> None:
        if identifier is None:
            self._requests.clear()
        else:
            self._requests.pop(identifier, None)
