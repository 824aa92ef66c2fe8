"""
Cache strategies using Strategy Pattern.
Allows switching between different cache backends (Redis, In-Memory, Null).

The cache holds shaped statistics payloads, the settings lookups done by
AppConfig and the fixed-window counters of the rate limiter.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class CacheStrategy(ABC):
    """
    Abstract base class for cache strategies.

    All methods are async because cache operations involve I/O (network for Redis).
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found (or expired)
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        """
        Set value in cache with TTL (Time To Live) in seconds.

        Returns:
            True if successful, False otherwise
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """
        Delete every key starting with prefix.

        Returns:
            Number of deleted keys
        """
        pass

    @abstractmethod
    async def incr(self, key: str, ttl: int) -> int:
        """
        Increment an integer counter.

        The TTL is only set when the counter is created, so the key
        expires at the end of its window no matter how often it is hit.

        Returns:
            The counter value after incrementing
        """
        pass

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds until the key expires, 0 if it does not exist."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def clear(self) -> bool:
        pass


class RedisCache(CacheStrategy):
    """
    Redis cache implementation.

    Shared by every API process and the job worker, so invalidating a
    settings key is seen everywhere at once. Errors are logged and
    reported as a miss, a cache outage must never fail a request.
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis.get(key)
            return value.decode("utf-8") if value else None
        except Exception as e:
            logger.warning("Redis get error: %s", e)
            return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        try:
            return bool(self.redis.setex(key, ttl, value))
        except Exception as e:
            logger.warning("Redis set error: %s", e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(key))
        except Exception as e:
            logger.warning("Redis delete error: %s", e)
            return False

    async def delete_prefix(self, prefix: str) -> int:
        try:
            keys = list(self.redis.scan_iter(match=f"{prefix}*", count=500))
            if not keys:
                return 0
            return int(self.redis.delete(*keys))
        except Exception as e:
            logger.warning("Redis delete_prefix error: %s", e)
            return 0

    async def incr(self, key: str, ttl: int) -> int:
        try:
            count = int(self.redis.incr(key))
            if count == 1:
                self.redis.expire(key, ttl)
            return count
        except Exception as e:
            # Fail open: a broken counter never blocks traffic
            logger.warning("Redis incr error: %s", e)
            return 0

    async def ttl(self, key: str) -> int:
        try:
            return max(int(self.redis.ttl(key)), 0)
        except Exception as e:
            logger.warning("Redis ttl error: %s", e)
            return 0

    async def exists(self, key: str) -> bool:
        try:
            return bool(self.redis.exists(key))
        except Exception as e:
            logger.warning("Redis exists error: %s", e)
            return False

    async def clear(self) -> bool:
        """Clear all Redis keys (use with caution!)"""
        try:
            self.redis.flushdb()
            return True
        except Exception as e:
            logger.warning("Redis clear error: %s", e)
            return False


class InMemoryCache(CacheStrategy):
    """
    In-memory cache implementation using a Python dict.

    Entries carry their expiry timestamp and are dropped lazily when read.
    Good for development and tests, not shared between processes.
    """

    def __init__(self, clock=time.monotonic):
        self._cache: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    def _live_entry(self, key: str) -> Optional[Tuple[str, float]]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._cache[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live_entry(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        self._cache[key] = (value, self._clock() + ttl)
        return True

    async def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._cache if k.startswith(prefix)]
        for k in keys:
            del self._cache[k]
        return len(keys)

    async def incr(self, key: str, ttl: int) -> int:
        entry = self._live_entry(key)
        if entry is None:
            count, expires_at = 1, self._clock() + ttl
        else:
            count, expires_at = int(entry[0]) + 1, entry[1]
        self._cache[key] = (str(count), expires_at)
        return count

    async def ttl(self, key: str) -> int:
        entry = self._live_entry(key)
        if entry is None:
            return 0
        return max(int(entry[1] - self._clock() + 0.999), 0)

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def clear(self) -> bool:
        self._cache.clear()
        return True


class NullCache(CacheStrategy):
    """
    Null Object Pattern - cache that does nothing.

    Every read is a miss and counters never grow, so rate limiting is
    effectively off with this backend.
    """

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return True

    async def delete_prefix(self, prefix: str) -> int:
        return 0

    async def incr(self, key: str, ttl: int) -> int:
        return 0

    async def ttl(self, key: str) -> int:
        return 0

    async def exists(self, key: str) -> bool:
        return False

    async def clear(self) -> bool:
        return True
