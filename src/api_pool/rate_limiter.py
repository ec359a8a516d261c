"""
RATE LIMITER
============

Minimum spacing between outbound dispatches, shared by every traffic class.

Spacing is measured between dispatch *starts*: acquire() returns as soon as
min_delay has elapsed since the previous dispatch and records the new
dispatch time before returning (no await in between).
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from config import REQUEST_MIN_DELAY_MS
from utils.logger import get_logger

logger = get_logger("RATE_LIMITER")


@dataclass
class RateLimiterMetrics:
    total_acquired: int = 0
    total_waited: int = 0
    total_wait_time_ms: float = 0.0

    @property
    def avg_wait_time_ms(self) -> float:
        if self.total_waited == 0:
            return 0.0
        return self.total_wait_time_ms / self.total_waited


class RateLimiter:
    """
    Process-wide dispatch pacing

    Usage:
        limiter = RateLimiter(min_delay=0.1)
        await limiter.acquire()
        ... issue request ...
    """

    def __init__(self, min_delay: Optional[float] = None):
        self.min_delay = REQUEST_MIN_DELAY_MS / 1000.0 if min_delay is None else min_delay
        self.last_dispatch_time: Optional[float] = None
        self._metrics = RateLimiterMetrics()

    async def acquire(self):
        """Wait until min_delay has passed since the last dispatch, then claim the slot"""
        start = time.monotonic()
        waited = False

        while True:
            now = time.monotonic()
            if self.last_dispatch_time is None:
                break
            remaining = self.min_delay - (now - self.last_dispatch_time)
            if remaining <= 0:
                break
            if not waited:
                logger.debug(f"Rate limiting: waiting {remaining * 1000:.0f}ms before request")
            waited = True
            await asyncio.sleep(remaining)

        self.last_dispatch_time = now

        self._metrics.total_acquired += 1
        if waited:
            self._metrics.total_waited += 1
            self._metrics.total_wait_time_ms += (now - start) * 1000

    def get_status(self) -> Dict:
        return {
            "min_delay_ms": self.min_delay * 1000,
            "total_acquired": self._metrics.total_acquired,
            "total_waited": self._metrics.total_waited,
            "avg_wait_time_ms": round(self._metrics.avg_wait_time_ms, 1),
        }


# ============================================================================
# Singleton
# ============================================================================

_limiter_instance = None
_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter shared by every executor"""
    global _limiter_instance
    with _limiter_lock:
        if _limiter_instance is None:
            _limiter_instance = RateLimiter()
    return _limiter_instance


__all__ = [
    "RateLimiter",
    "RateLimiterMetrics",
    "get_rate_limiter",
]
