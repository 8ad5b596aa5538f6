"""
Rate limiting for the PAL portal backend.

Fixed-window counters keyed by client identifier. The in-process limiter is
the default; the Redis limiter shares counters between instances.
"""
import math
import random
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis
from fastapi import Request

from app.config import settings
from app.obs.logging import get_logger

logger = get_logger(__name__)

_LIMIT_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(\d*)\s*(second|minute|hour|day)s?\s*$", re.IGNORECASE)
_PERIOD_SECONDS = {
    'second': 1,
    'minute': 60,
    'hour': 3600,
    'day': 86400
}


def parse_limit(limit_str: str) -> Tuple[int, int]:
    """Parse a limit string like '60/minute' or '100/10minute' into (count, seconds)."""
    match = _LIMIT_PATTERN.match(limit_str or "")
    if not match:
        logger.warning(f"Invalid limit format: {limit_str}, using default 60/minute")
        return 60, 60
    count, multiplier, period = match.groups()
    return int(count), int(multiplier or 1) * _PERIOD_SECONDS[period.lower()]


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float


class FixedWindowRateLimiter:
    """
    In-process fixed-window limiter.

    A denied call is not counted. On a small random fraction of calls the
    whole map is swept for expired windows.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
        sweep_probability: float = 0.01,
    ):
        self._clock = clock
        self._rng = rng
        self._sweep_probability = sweep_probability
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def allow(self, identifier: str, limit: int, window_seconds: float) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None or now > entry.reset_time:
                self._entries[identifier] = RateLimitEntry(count=1, reset_time=now + window_seconds)
                allowed = True
            elif entry.count >= limit:
                allowed = False
            else:
                entry.count += 1
                allowed = True

            if self._rng() < self._sweep_probability:
                self._sweep_locked(now)

        return allowed

    def retry_after(self, identifier: str) -> int:
        """Whole seconds until the identifier's window resets (at least 1)."""
        with self._lock:
            entry = self._entries.get(identifier)
        if entry is None:
            return 1
        return max(1, math.ceil(entry.reset_time - self._clock()))

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if now > entry.reset_time]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimiter:
    """Fixed-window limiter on a shared Redis counter; fails open when Redis is unavailable."""

    def __init__(self, redis_url: str = None, client=None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.redis_client = client
        if self.redis_client is None:
            self._connect_redis()

    def _connect_redis(self):
        """Connect to Redis with error handling."""
        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            self.redis_client.ping()
            logger.info("Connected to Redis for rate limiting")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis_client = None

    def _get_redis_key(self, identifier: str) -> str:
        return f"rate_limit:{identifier}"

    def allow(self, identifier: str, limit: int, window_seconds: float) -> bool:
        if not self.redis_client:
            return True

        key = self._get_redis_key(identifier)
        try:
            pipe = self.redis_client.pipeline()
            # First call of a window creates the counter with its expiry
            pipe.set(key, 0, px=int(window_seconds * 1000), nx=True)
            pipe.get(key)
            _, current = pipe.execute()
            if int(current or 0) >= limit:
                return False
            self.redis_client.incr(key)
            return True
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True

    def retry_after(self, identifier: str) -> int:
        if not self.redis_client:
            return 1
        try:
            ttl_ms = self.redis_client.pttl(self._get_redis_key(identifier))
        except redis.RedisError as e:
            logger.error(f"Redis error reading rate limit ttl: {e}")
            return 1
        if ttl_ms is None or ttl_ms < 0:
            return 1
        return max(1, math.ceil(ttl_ms / 1000))


def build_rate_limiter(config=None):
    """Pick the limiter backend from settings."""
    config = config or settings
    if config.uses_redis_rate_limiting():
        return RedisRateLimiter(redis_url=config.REDIS_URL)
    return FixedWindowRateLimiter()


def get_client_ip(request: Request) -> str:
    """Resolve the client identifier from proxy headers, then the socket peer."""
    for header in ("cf-connecting-ip", "x-real-ip"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    if request.client and request.client.host:
        return request.client.host
    return "unknown"
