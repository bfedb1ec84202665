import asyncio
from collections.abc import Awaitable, Callable

from facetmatch.config.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Minimum-spacing limiter shared by every caller of one upstream API.

    Each ``acquire()`` returns no sooner than ``min_interval_s`` after the
    previous one returned. Callers queue on an asyncio lock in arrival order.
    """

    def __init__(
        self,
        min_interval_s: float,
        name: str = "default",
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval_s = min_interval_s
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last: float | None = None

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    async def acquire(self) -> None:
        async with self._lock:
            if self._last is not None:
                wait = self._last + self.min_interval_s - self._now()
                if wait > 0:
                    logger.debug("Rate limiter waiting", limiter=self.name, wait_s=round(wait, 3))
                    await self._sleep(wait)
            self._last = self._now()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None
