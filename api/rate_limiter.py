"""
Rate Limiter for GraphQL Requests

Every request to the local Stash or to a stash-box endpoint goes through a
RateLimiter. Waiting requests are served by priority (lower value first), so
a user's save is never stuck behind a batch of fingerprint submissions.

Usage:
    limiter = RateLimiter(requests_per_second=4.0)
    async with limiter.acquire(Priority.HIGH):
        await client.post(...)
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from heapq import heappop, heappush

logger = logging.getLogger(__name__)


class Priority(IntEnum):
    """Request priority levels. Lower value = higher priority."""
    CRITICAL = 0   # Saves: entity creation, scene update
    HIGH = 10      # Interactive searches
    NORMAL = 50    # Cache fills (all tags, all studios)
    LOW = 100      # Fingerprint submissions


@dataclass(order=True)
class _Waiter:
    priority: int
    sequence: int
    event: asyncio.Event = field(compare=False)


class RateLimiter:
    """Async rate limiter with a priority queue.

    At most one request is released per ``1 / requests_per_second`` seconds.
    Among waiting requests the lowest priority value is released first; equal
    priorities are released in arrival order.
    """

    def __init__(self, requests_per_second: float = 5.0):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second

        self._last_release: float = 0.0
        self._waiters: list[_Waiter] = []
        self._counter = itertools.count()
        self._dispatch_lock = asyncio.Lock()

        self._total_requests = 0
        self._total_wait_time = 0.0

        logger.info(f"RateLimiter initialized: {requests_per_second} req/sec")

    def acquire(self, priority: Priority = Priority.NORMAL) -> "_RateLimitContext":
        """Context manager that waits for a request slot."""
        return _RateLimitContext(self, priority)

    async def _wait_for_slot(self, priority: Priority) -> float:
        started = time.monotonic()
        waiter = _Waiter(int(priority), next(self._counter), asyncio.Event())
        heappush(self._waiters, waiter)

        await self._dispatch()
        await waiter.event.wait()

        waited = time.monotonic() - started
        self._total_requests += 1
        self._total_wait_time += waited
        return waited

    async def _dispatch(self):
        """Release the highest-priority waiter once the interval has passed."""
        async with self._dispatch_lock:
            if not self._waiters:
                return
            remaining = self.min_interval - (time.monotonic() - self._last_release)
            if remaining > 0:
                await asyncio.sleep(remaining)
            if self._waiters:
                waiter = heappop(self._waiters)
                self._last_release = time.monotonic()
                waiter.event.set()

    def get_metrics(self) -> dict:
        return {
            "total_requests": self._total_requests,
            "total_wait_time": round(self._total_wait_time, 3),
            "avg_wait_time": round(self._total_wait_time / max(1, self._total_requests), 3),
            "requests_per_second": self.requests_per_second,
            "queue_depth": len(self._waiters),
        }

    def update_rate(self, requests_per_second: float):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second
        logger.info(f"RateLimiter updated: {requests_per_second} req/sec")


class _RateLimitContext:

    def __init__(self, limiter: RateLimiter, priority: Priority):
        self.limiter = limiter
        self.priority = priority
        self.wait_time: float = 0.0

    async def __aenter__(self):
        self.wait_time = await self.limiter._wait_for_slot(self.priority)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False
