"""
Caching Module
Redis-based caching for embeddings, result sets and entity statistics.
"""

from .redis_cache import RedisCache, RedisCacheError, get_redis_cache
from .search_cache import CacheEntry, CacheStatistics, SearchCache

__all__ = [
    "RedisCache",
    "RedisCacheError",
    "get_redis_cache",
    "CacheEntry",
    "CacheStatistics",
    "SearchCache",
]
