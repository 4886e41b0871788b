from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Minimum spacing between outgoing API requests.

    The spacing is global: it holds between any two consecutive grants, no
    matter which task asked. Waiters are served in arrival order because
    asyncio.Lock wakes them FIFO.
    """

    def __init__(self, min_interval_seconds: float) -> None:
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self._interval = float(min_interval_seconds)
        self._last_grant: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval_seconds(self) -> float:
        return self._interval

    async def acquire(self) -> None:
        if self._interval == 0:
            return

        async with self._lock:
            if self._last_grant is not None:
                wait = self._last_grant + self._interval - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_grant = time.monotonic()
