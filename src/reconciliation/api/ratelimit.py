"""Per-caller request throttling for the polling endpoint.

The limiter is process-local: each worker keeps its own buckets, keyed by
caller IP, refilled continuously at `capacity` tokens per `period` seconds.
"""

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import structlog
from fastapi import HTTPException, Request

from reconciliation.settings.resolver import SettingsResolver

logger = structlog.get_logger(__name__)


class RateLimiter(ABC):
    @abstractmethod
    def allow(self, key: str) -> bool:
        """Consume one request for `key`; False when the caller is over its limit."""


class TokenBucketRateLimiter(RateLimiter):
    def __init__(self, capacity: int, period: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.capacity = capacity
        self.period = period
        self._clock = clock
        self._buckets: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            tokens, last = self._buckets.get(key, (float(self.capacity), now))
            tokens = min(float(self.capacity), tokens + (now - last) * self.capacity / self.period)
            if tokens < 1.0:
                self._buckets[key] = (tokens, now)
                return False
            self._buckets[key] = (tokens - 1.0, now)
            return True


_current_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the active limiter, sized from `limite_consultas_por_minuto` on first use."""
    global _current_rate_limiter
    if _current_rate_limiter is None:
        _current_rate_limiter = TokenBucketRateLimiter(SettingsResolver.load().rate_limit_per_minute)
    return _current_rate_limiter


def set_rate_limiter(limiter: RateLimiter) -> None:
    """Override the active limiter (useful for tests)."""
    global _current_rate_limiter
    _current_rate_limiter = limiter


def reset_rate_limiter() -> None:
    global _current_rate_limiter
    _current_rate_limiter = None


def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency answering 429 once a caller exhausts its bucket."""
    caller = request.client.host if request.client else "unknown"
    if not get_rate_limiter().allow(caller):
        logger.warning("Rate limit exceeded", caller=caller, path=request.url.path)
        raise HTTPException(status_code=429, detail="Too many requests")
