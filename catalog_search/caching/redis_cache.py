"""
Redis Cache Client
Redis client wrapper with connection pooling and pickle serialization.
"""

import logging
import pickle
from typing import Any, Optional

import redis
from redis.connection import ConnectionPool

from ..errors import SearchEngineError
from ..settings import EngineSettings, get_settings

logger = logging.getLogger(__name__)


class RedisCacheError(SearchEngineError):
    """Exception raised when the Redis connection cannot be established."""

    pass


class RedisCache:
    """
    Redis cache client.

    Every operation is insert-or-replace, so concurrent callers never need to
    lock around a logical operation. Redis errors are logged and reported as
    a miss / False; the cache is never a source of truth.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        client: Optional[redis.Redis] = None,
    ):
        """
        Initialize Redis cache client.

        Args:
            settings: Engine settings (used to build a pool when no client is given)
            client: Pre-built Redis client (e.g. a fakeredis instance in tests)
        """
        self.settings = settings or get_settings()
        self.client: Optional[redis.Redis] = client
        self.pool: Optional[ConnectionPool] = None

        if client is None:
            self.pool = ConnectionPool(
                host=self.settings.redis_host,
                port=self.settings.redis_port,
                db=self.settings.redis_db,
                password=self.settings.redis_password,
                decode_responses=False,  # Values are pickled bytes
                max_connections=self.settings.redis_max_connections,
                socket_timeout=self.settings.redis_socket_timeout,
                socket_connect_timeout=self.settings.redis_socket_timeout,
            )
            logger.info(
                f"Redis cache initialized: {self.settings.redis_host}:"
                f"{self.settings.redis_port} (db={self.settings.redis_db})"
            )
        else:
            logger.info("Redis cache initialized with injected client")

    def _get_client(self) -> redis.Redis:
        """
        Get Redis client (lazy initialization).

        Raises:
            RedisCacheError: If connection fails
        """
        if self.client is None:
            try:
                self.client = redis.Redis(connection_pool=self.pool)
                self.client.ping()
                logger.info("Redis connection established")
            except redis.ConnectionError as e:
                self.client = None
                raise RedisCacheError(f"Failed to connect to Redis: {e}")

        return self.client

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found or undecodable
        """
        try:
            data = self._get_client().get(key)
        except (redis.RedisError, RedisCacheError) as e:
            logger.error(f"Redis GET error for key '{key}': {e}")
            return None

        if data is None:
            return None

        try:
            return pickle.loads(data)
        except Exception as e:
            logger.warning(f"Discarding undecodable cache value for key '{key}': {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache (insert or replace).

        Args:
            key: Cache key
            value: Value to cache (will be pickled)
            ttl: Time-to-live in seconds (None = no expiration)

        Returns:
            True if successful, False otherwise
        """
        try:
            data = pickle.dumps(value)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            logger.error(f"Error serializing data for key '{key}': {e}")
            return False

        try:
            client = self._get_client()
            if ttl is not None:
                client.setex(key, ttl, data)
            else:
                client.set(key, data)
            return True
        except (redis.RedisError, RedisCacheError) as e:
            logger.error(f"Redis SET error for key '{key}': {e}")
            return False

    def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> Optional[int]:
        """
        Increment a counter.

        Args:
            key: Counter key
            amount: Amount to increment by
            ttl: Optional expiry refreshed on every increment

        Returns:
            New value after increment, or None on error
        """
        try:
            client = self._get_client()
            value = client.incrby(key, amount)
            if ttl is not None:
                client.expire(key, ttl)
            return value
        except (redis.RedisError, RedisCacheError) as e:
            logger.error(f"Redis INCRBY error for key '{key}': {e}")
            return None


# Global instance accessor
_cache_instance: Optional[RedisCache] = None


def get_redis_cache(settings: Optional[EngineSettings] = None) -> RedisCache:
    """Get global Redis cache instance."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = RedisCache(settings=settings)
    return _cache_instance
