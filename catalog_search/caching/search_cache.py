"""
Search Cache
Caches query embeddings, per-space result sets, entity statistics and extraction results.
"""

import hashlib
import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..config import CacheConfig, get_search_config
from ..models import EntityStatistic, ExtractionResult, VectorSearchResult, normalize_text
from .redis_cache import RedisCache, get_redis_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Stored cache value. Entries are replaced, never mutated."""

    key: str
    value: Any
    created_at: float
    ttl: Optional[int]


class CacheStatistics:
    """Track cache performance metrics."""

    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.errors = 0
        self.corrupt = 0

        # Per-key-type stats
        self.hits_by_type: Dict[str, int] = defaultdict(int)
        self.misses_by_type: Dict[str, int] = defaultdict(int)

        self.start_time = time.time()

    def record_hit(self, key_type: str):
        """Record a cache hit."""
        self.hits += 1
        self.hits_by_type[key_type] += 1

    def record_miss(self, key_type: str):
        """Record a cache miss."""
        self.misses += 1
        self.misses_by_type[key_type] += 1

    def record_set(self):
        """Record a cache set operation."""
        self.sets += 1

    def record_error(self):
        """Record a failed cache write."""
        self.errors += 1

    def record_corrupt(self, key_type: str):
        """Record an entry discarded because of an unexpected shape."""
        self.corrupt += 1
        self.record_miss(key_type)

    def get_hit_rate(self) -> float:
        """Calculate overall hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def get_stats(self) -> Dict[str, Any]:
        """Get all statistics."""
        return {
            "uptime_seconds": time.time() - self.start_time,
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "errors": self.errors,
            "corrupt": self.corrupt,
            "hit_rate_percent": self.get_hit_rate(),
            "hits_by_type": dict(self.hits_by_type),
            "misses_by_type": dict(self.misses_by_type),
        }


def _hash_parts(*parts: Any) -> str:
    """Stable content hash of key parts."""
    key_string = "|".join(str(part) for part in parts)
    return hashlib.sha256(key_string.encode("utf-8")).hexdigest()[:32]


def _is_embedding(value: Any) -> bool:
    return (
        isinstance(value, np.ndarray)
        and value.ndim == 1
        and value.size > 0
        and bool(np.all(np.isfinite(value)))
    )


def _is_result_set(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(r, VectorSearchResult) for r in value)


class SearchCache:
    """
    Typed cache for the search pipeline on top of RedisCache.

    Keys are content hashes:
    - embeddings: (normalized text, vector space)
    - result sets: (query signature, filter signature)
    - statistics: normalized entity text

    A value with an unexpected shape is treated as a miss.
    """

    EMBEDDING = "embedding"
    RESULTS = "results"
    STATISTICS = "statistics"
    EXTRACTION = "extraction"

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis_cache: Optional[RedisCache] = None,
    ):
        """
        Initialize search cache.

        Args:
            config: Cache configuration
            redis_cache: Redis cache client (uses global if not provided)
        """
        self.config = config or get_search_config().cache
        self.redis = redis_cache or get_redis_cache()
        self.stats = CacheStatistics()

        self.base_ttls = {
            self.EMBEDDING: self.config.embedding_ttl,
            self.RESULTS: self.config.result_ttl,
            self.STATISTICS: self.config.statistics_ttl,
            self.EXTRACTION: self.config.extraction_ttl,
        }

        logger.info("Search cache initialized")

    # ========== Keys ==========

    def _key(self, key_type: str, digest: str) -> str:
        return f"{self.config.key_prefix}:{key_type}:{digest}"

    def embedding_key(self, text: str, space: str) -> str:
        return self._key(self.EMBEDDING, _hash_parts(normalize_text(text), space))

    def result_key(self, query_signature: str, filter_signature: str) -> str:
        return self._key(self.RESULTS, _hash_parts(query_signature, filter_signature))

    def statistic_key(self, entity: str) -> str:
        return self._key(self.STATISTICS, _hash_parts(normalize_text(entity)))

    def extraction_key(self, text: str) -> str:
        return self._key(self.EXTRACTION, _hash_parts(normalize_text(text)))

    # ========== Generic get / set ==========

    def get(self, key: str, validator: Optional[Callable[[Any], bool]] = None) -> Optional[Any]:
        """
        Get a cached value.

        Args:
            key: Cache key
            validator: Optional shape check; a failing value is a miss

        Returns:
            Cached value or None on miss
        """
        key_type = self._key_type(key)
        entry = self.redis.get(key)

        if entry is None:
            self.stats.record_miss(key_type)
            logger.debug(f"Cache MISS: {key}")
            return None

        if not isinstance(entry, CacheEntry) or entry.key != key:
            self.stats.record_corrupt(key_type)
            logger.warning(f"Corrupt cache entry for {key}, treating as miss")
            return None

        if validator is not None and not validator(entry.value):
            self.stats.record_corrupt(key_type)
            logger.warning(f"Cache entry for {key} has unexpected shape, treating as miss")
            return None

        self.stats.record_hit(key_type)
        logger.debug(f"Cache HIT: {key}")
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Insert or replace a cached value.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (default: adaptive TTL for the key type)

        Returns:
            True if cached successfully
        """
        if ttl is None:
            ttl = self.adaptive_ttl(key)

        entry = CacheEntry(key=key, value=value, created_at=time.time(), ttl=ttl)
        success = self.redis.set(key, entry, ttl=ttl)

        if success:
            self.stats.record_set()
            logger.debug(f"Cached {key} (TTL={ttl}s)")
        else:
            self.stats.record_error()

        return success

    def adaptive_ttl(self, key: str) -> int:
        """
        TTL for a key, longer for frequently written keys.

        ttl = base * min(ln(freq + 1) + 1, max_multiplier), clamped to [min_ttl, max_ttl].
        Falls back to the base TTL when frequency tracking is unavailable.
        """
        base = self.base_ttls.get(self._key_type(key), self.config.result_ttl)
        if not self.config.adaptive_ttl:
            return base

        frequency = self.redis.increment(f"{key}:freq", ttl=self.config.max_ttl)
        if frequency is None:
            return base

        multiplier = min(math.log(frequency + 1) + 1, self.config.max_ttl_multiplier)
        ttl = int(base * multiplier)
        return max(self.config.min_ttl, min(ttl, self.config.max_ttl))

    def _key_type(self, key: str) -> str:
        parts = key.split(":")
        return parts[1] if len(parts) > 2 else "unknown"

    # ========== Embeddings ==========

    def get_embedding(self, text: str, space: str) -> Optional[np.ndarray]:
        """Get cached embedding for (text, space)."""
        return self.get(self.embedding_key(text, space), validator=_is_embedding)

    def set_embedding(self, text: str, space: str, embedding: np.ndarray) -> bool:
        """Cache embedding for (text, space)."""
        return self.set(self.embedding_key(text, space), np.asarray(embedding, dtype=np.float32))

    # ========== Result sets ==========

    def get_result_set(
        self, query_signature: str, filter_signature: str
    ) -> Optional[List[VectorSearchResult]]:
        """Get cached per-space result set."""
        return self.get(self.result_key(query_signature, filter_signature), validator=_is_result_set)

    def set_result_set(
        self, query_signature: str, filter_signature: str, results: List[VectorSearchResult]
    ) -> bool:
        """Cache per-space result set."""
        return self.set(self.result_key(query_signature, filter_signature), list(results))

    # ========== Entity statistics ==========

    def get_statistic(self, entity: str) -> Optional[EntityStatistic]:
        """Get cached entity statistic."""
        return self.get(
            self.statistic_key(entity), validator=lambda v: isinstance(v, EntityStatistic)
        )

    def set_statistic(self, statistic: EntityStatistic) -> bool:
        """Cache entity statistic."""
        return self.set(self.statistic_key(statistic.entity), statistic)

    # ========== Extraction results ==========

    def get_extraction(self, text: str) -> Optional[ExtractionResult]:
        """Get cached extraction result for text."""
        return self.get(
            self.extraction_key(text), validator=lambda v: isinstance(v, ExtractionResult)
        )

    def set_extraction(self, text: str, result: ExtractionResult) -> bool:
        """Cache extraction result for text."""
        return self.set(self.extraction_key(text), result)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return self.stats.get_stats()
