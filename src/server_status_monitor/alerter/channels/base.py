"""Helpers shared by the channel implementations."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Blocks callers once ``limit`` requests were made in the last minute."""

    def __init__(self, limit_per_minute: int, *, name: str = "channel") -> None:
        self.limit_per_minute = limit_per_minute
        self.name = name
        self._request_times: list[float] = []
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Wait if the rate limit is exceeded, then record the request."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            self._request_times = [t for t in self._request_times if now - t < 60]

            if len(self._request_times) >= self.limit_per_minute:
                wait_time = 60 - (now - self._request_times[0])
                if wait_time > 0:
                    logger.debug(f"{self.name} rate limit hit, waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)

            self._request_times.append(asyncio.get_running_loop().time())
