"""
Pacing for sequential, rate-limited remote calls.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional


class Pacer:
    """Keeps at least `min_interval` seconds between consecutive calls."""

    def __init__(
        self,
        min_interval: float = 0.2,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self.min_interval > 0 and self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_call = self._clock()
