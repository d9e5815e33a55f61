"""
Tests for the Redis-backed search cache.
"""

import pickle

import fakeredis
import numpy as np
import pytest

from catalog_search.caching import RedisCache, SearchCache
from catalog_search.config import CacheConfig
from catalog_search.models import EntityStatistic, VectorSearchResult
from catalog_search.settings import EngineSettings


class TestKeys:
    """Content-hash keys."""

    def test_embedding_key_uses_normalized_text_and_space(self, search_cache):
        key = search_cache.embedding_key("Free  UI Builder!", "semantic")

        assert key == search_cache.embedding_key("free ui builder", "semantic")
        assert key != search_cache.embedding_key("free ui builder", "aliases")
        assert key.startswith("catalog_search:embedding:")

    def test_result_key_depends_on_filters(self, search_cache):
        assert search_cache.result_key("semantic|ide", "limit=20") != search_cache.result_key(
            "semantic|ide", "limit=10"
        )


class TestTypedAccess:
    """Typed get/set and corruption handling."""

    def test_embedding_hit(self, search_cache):
        embedding = np.linspace(0.1, 1.0, 8).astype(np.float32)
        search_cache.set_embedding("ide", "semantic", embedding)

        cached = search_cache.get_embedding("IDE", "semantic")

        np.testing.assert_array_equal(cached, embedding)
        assert search_cache.get_stats()["hits_by_type"] == {"embedding": 1}

    def test_miss_is_counted(self, search_cache):
        assert search_cache.get_embedding("never cached", "semantic") is None
        assert search_cache.get_stats()["misses"] == 1

    def test_foreign_value_is_a_miss(self, search_cache, fake_redis):
        key = search_cache.embedding_key("ide", "semantic")
        fake_redis.set(key, pickle.dumps("not a cache entry"))

        assert search_cache.get_embedding("ide", "semantic") is None
        assert search_cache.get_stats()["corrupt"] == 1

    def test_undecodable_bytes_are_a_miss(self, search_cache, fake_redis):
        key = search_cache.statistic_key("ide")
        fake_redis.set(key, b"\x00\x01garbage")

        assert search_cache.get_statistic("ide") is None

    def test_unexpected_shape_is_a_miss(self, search_cache):
        key = search_cache.embedding_key("ide", "semantic")
        search_cache.set(key, np.ones((2, 4), dtype=np.float32))

        assert search_cache.get_embedding("ide", "semantic") is None
        assert search_cache.get_stats()["corrupt"] == 1

    def test_non_finite_embedding_is_a_miss(self, search_cache):
        search_cache.set_embedding("ide", "semantic", np.array([np.nan, 1.0], dtype=np.float32))

        assert search_cache.get_embedding("ide", "semantic") is None

    def test_result_set_and_statistic(self, search_cache):
        results = [VectorSearchResult("i1", 0.9, "semantic", 1)]
        statistic = EntityStatistic("ide", {}, sample_size=3, confidence=0.3)

        search_cache.set_result_set("semantic|ide", "limit=20", results)
        search_cache.set_statistic(statistic)

        assert search_cache.get_result_set("semantic|ide", "limit=20") == results
        assert search_cache.get_statistic("IDE") == statistic

    def test_set_replaces_existing_entry(self, search_cache):
        search_cache.set_statistic(EntityStatistic("ide", {}, sample_size=1, confidence=0.1))
        search_cache.set_statistic(EntityStatistic("ide", {}, sample_size=9, confidence=0.9))

        assert search_cache.get_statistic("ide").sample_size == 9


class TestAdaptiveTTL:
    """TTL grows with write frequency and stays clamped."""

    def test_result_ttl_grows_then_caps(self, search_cache):
        key = search_cache.result_key("semantic|ide", "limit=20")

        ttls = [search_cache.adaptive_ttl(key) for _ in range(30)]

        assert ttls[0] == int(300 * (np.log(2) + 1))
        assert ttls == sorted(ttls)
        assert ttls[-1] == 900

    def test_embedding_ttl_clamped_to_max(self, search_cache):
        key = search_cache.embedding_key("ide", "semantic")

        assert search_cache.adaptive_ttl(key) == 7200

    def test_ttl_applied_in_redis(self, search_cache, fake_redis):
        search_cache.set_statistic(EntityStatistic("ide", {}, sample_size=1, confidence=0.1))

        ttl = fake_redis.ttl(search_cache.statistic_key("ide"))

        assert 3600 < ttl <= 7200

    def test_adaptive_disabled_uses_base(self, redis_cache):
        cache = SearchCache(CacheConfig(adaptive_ttl=False), redis_cache)

        assert cache.adaptive_ttl(cache.statistic_key("ide")) == 3600
        assert cache.adaptive_ttl(cache.result_key("q", "f")) == 300


class TestRedisUnavailable:
    """A dead Redis behaves like an empty cache."""

    @pytest.fixture
    def dead_cache(self, search_config):
        server = fakeredis.FakeServer()
        server.connected = False
        client = fakeredis.FakeRedis(server=server)
        return SearchCache(search_config.cache, RedisCache(EngineSettings(), client=client))

    def test_get_and_set_do_not_raise(self, dead_cache):
        assert dead_cache.get_embedding("ide", "semantic") is None
        assert dead_cache.set_embedding("ide", "semantic", np.ones(4, dtype=np.float32)) is False

        stats = dead_cache.get_stats()
        assert stats["misses"] == 1
        assert stats["errors"] == 1

    def test_ttl_falls_back_to_base(self, dead_cache):
        assert dead_cache.adaptive_ttl(dead_cache.result_key("q", "f")) == 300


class TestRedisCache:
    """The raw client wrapper the typed cache is built on."""

    def test_set_without_ttl_persists(self, redis_cache, fake_redis):
        assert redis_cache.set("plain", {"a": 1}) is True

        assert redis_cache.get("plain") == {"a": 1}
        assert fake_redis.ttl("plain") == -1

    def test_increment_refreshes_expiry(self, redis_cache, fake_redis):
        assert redis_cache.increment("counter", ttl=60) == 1
        assert redis_cache.increment("counter", amount=4, ttl=60) == 5

        assert 0 < fake_redis.ttl("counter") <= 60
        assert redis_cache.increment("untimed") == 1
        assert fake_redis.ttl("untimed") == -1
