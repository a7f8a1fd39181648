import asyncio
import time
from app.utils.logging_config import logger

class AsyncRateLimiter:
    """
    Token bucket shared by all feed requests to one upstream API.
    """
    def __init__(self, name: str, max_calls: int, period: float = 60):
        self.name = name
        self.max_calls = max_calls
        self.period = period
        self.tokens = float(max_calls)
        self.last_updated = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self, now: float):
        elapsed = now - self.last_updated
        self.tokens = min(self.max_calls, self.tokens + elapsed * (self.max_calls / self.period))
        self.last_updated = now

    async def acquire(self):
        async with self._lock:
            self._refill(time.monotonic())
            if self.tokens < 1:
                wait_time = (1 - self.tokens) * (self.period / self.max_calls)
                logger.debug("Rate limit hit", api=self.name, wait=round(wait_time, 2))
                await asyncio.sleep(wait_time)
                self._refill(time.monotonic())
            self.tokens -= 1

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *exc):
        return False
