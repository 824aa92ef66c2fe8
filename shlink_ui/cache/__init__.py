"""
Cache backends.

Holds AppConfig lookups, statistics results and rate-limit counters.
The backend is picked by CACHE_BACKEND (Strategy Pattern).
"""

from .strategies import CacheStrategy, InMemoryCache, NullCache, RedisCache
from .factory import CacheBackend, CacheFactory

__all__ = ["CacheStrategy", "RedisCache", "InMemoryCache", "NullCache", "CacheFactory", "CacheBackend"]
