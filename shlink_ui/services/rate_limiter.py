"""
Fixed-window rate limiter on top of the cache.

Each (limit, client) pair gets one counter per window; the window start is
part of the key so counters never need resetting, they just expire.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from shlink_ui.cache.strategies import CacheStrategy

logger = logging.getLogger(__name__)

# name -> (setting key, default quota, window in seconds)
RATE_LIMITS: Dict[str, Tuple[str, int, int]] = {
    "requests": ("rate_limit.requests_per_minute", 60, 60),
    "url_creation": ("rate_limit.url_creation_per_hour", 100, 3600),
    "login": ("rate_limit.login_per_hour", 10, 3600),
}


def window_start(now: float, size: int) -> int:
    return int(now) - (int(now) % size)


@dataclass
class RateLimitResult:
    allowed: bool
    count: int
    quota: int
    retry_after: int


class RateLimiter:
    def __init__(self, cache: CacheStrategy, clock: Callable[[], float] = time.time):
        self.cache = cache
        self.clock = clock

    async def hit(self, name: str, identifier: str, quota: int, per_seconds: int) -> RateLimitResult:
        now = self.clock()
        start = window_start(now, per_seconds)
        key = f"rate_limit:{name}:{identifier}:{start}"
        count = await self.cache.incr(key, per_seconds)
        retry_after = max(start + per_seconds - int(now), 1)
        allowed = count <= quota
        if not allowed:
            logger.warning("Rate limit %s exceeded by %s (%s/%s)", name, identifier, count, quota)
        return RateLimitResult(allowed=allowed, count=count, quota=quota, retry_after=retry_after)
