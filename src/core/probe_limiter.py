import asyncio
import logging

logger = logging.getLogger(__name__)


class ProbeLimiter:
    """
    Counting limiter that admits at most ``max_concurrent`` probes at a time.

    Waiters are admitted in the order they started waiting. The limiter also
    keeps the current and peak number of admitted probes.
    """

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.waiting = 0

    async def __aenter__(self):
        self.waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self.waiting -= 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.in_flight -= 1
        self._semaphore.release()
        return False
