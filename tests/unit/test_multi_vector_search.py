"""
Tests for the multi-vector search coordinator.
"""

import time

import pytest
from conftest import ALL_SPACES, FakeVectorBackend, SlowRedis, make_hits

from catalog_search.caching import RedisCache, SearchCache
from catalog_search.config import VectorSpace
from catalog_search.errors import AllSpacesFailed
from catalog_search.retrieval import BackendHit, MultiVectorSearchCoordinator, SpaceStatus


@pytest.fixture
def multi_vector_config(search_config):
    config = search_config.multi_vector
    for space_config in config.spaces.values():
        space_config.timeout_s = 0.2
    return config


@pytest.fixture
def hits_by_space():
    return {space: make_hits(space, 5) for space in ALL_SPACES}


def make_coordinator(backend, embedder, config, cache=None):
    return MultiVectorSearchCoordinator(backend, embedder, cache=cache, config=config)


@pytest.mark.asyncio
async def test_searches_every_space(hits_by_space, embedder, multi_vector_config):
    coordinator = make_coordinator(FakeVectorBackend(hits_by_space), embedder, multi_vector_config)

    result = await coordinator.search("free ui builder")

    assert sorted(result.results_by_space) == sorted(ALL_SPACES)
    assert result.unavailable_spaces == []
    assert result.partial is False
    assert result.total_results == 25
    assert all(report.status == SpaceStatus.OK for report in result.reports.values())


@pytest.mark.asyncio
async def test_backend_rank_order_is_kept(embedder, multi_vector_config):
    hits = [BackendHit("low", 0.5), BackendHit("high", 0.9), BackendHit("mid", 0.7)]
    coordinator = make_coordinator(
        FakeVectorBackend({"semantic": hits}), embedder, multi_vector_config
    )

    result = await coordinator.search("ide", spaces=[VectorSpace.SEMANTIC])

    semantic = result.results_by_space["semantic"]
    assert [(r.item_id, r.rank) for r in semantic] == [("low", 1), ("high", 2), ("mid", 3)]
    assert all(r.source_space == "semantic" for r in semantic)


@pytest.mark.asyncio
async def test_limit_per_space(hits_by_space, embedder, multi_vector_config):
    coordinator = make_coordinator(FakeVectorBackend(hits_by_space), embedder, multi_vector_config)

    result = await coordinator.search("ide", spaces=["semantic", "aliases"], limit_per_space=2)

    assert {space: len(r) for space, r in result.results_by_space.items()} == {
        "semantic": 2,
        "aliases": 2,
    }


@pytest.mark.asyncio
async def test_timeout_in_one_space_is_isolated(hits_by_space, embedder, multi_vector_config):
    backend = FakeVectorBackend(hits_by_space, slow_spaces={"aliases": 2.0})
    coordinator = make_coordinator(backend, embedder, multi_vector_config)

    result = await coordinator.search("free ui builder")

    assert result.results_by_space["aliases"] == []
    assert result.reports["aliases"].status == SpaceStatus.TIMEOUT
    assert result.unavailable_spaces == ["aliases"]
    assert result.partial is False
    assert all(len(result.results_by_space[s]) == 5 for s in ALL_SPACES if s != "aliases")


@pytest.mark.asyncio
async def test_error_in_one_space_is_isolated(hits_by_space, embedder, multi_vector_config):
    backend = FakeVectorBackend(hits_by_space, fail_spaces={"categories"})
    coordinator = make_coordinator(backend, embedder, multi_vector_config)

    result = await coordinator.search("free ui builder")

    report = result.reports["categories"]
    assert report.status == SpaceStatus.FAILED
    assert "backend unreachable" in report.error
    assert result.unavailable_spaces == ["categories"]
    assert result.total_results == 20


@pytest.mark.asyncio
async def test_all_spaces_failing_raises(embedder, multi_vector_config):
    backend = FakeVectorBackend(fail_spaces=ALL_SPACES)
    coordinator = make_coordinator(backend, embedder, multi_vector_config)

    with pytest.raises(AllSpacesFailed) as exc_info:
        await coordinator.search("free ui builder")

    assert sorted(exc_info.value.failures) == sorted(ALL_SPACES)


@pytest.mark.asyncio
async def test_deadline_cancels_in_flight_spaces(hits_by_space, embedder, multi_vector_config):
    for space_config in multi_vector_config.spaces.values():
        space_config.timeout_s = 10.0
    backend = FakeVectorBackend(hits_by_space, slow_spaces={"composites": 5.0})
    coordinator = make_coordinator(backend, embedder, multi_vector_config)

    start = time.monotonic()
    result = await coordinator.search("free ui builder", deadline=time.monotonic() + 0.3)
    elapsed = time.monotonic() - start

    assert elapsed < 2.0
    assert result.partial is True
    assert result.reports["composites"].status == SpaceStatus.CANCELLED
    assert result.results_by_space["composites"] == []
    assert len(result.results_by_space["semantic"]) == 5


@pytest.mark.asyncio
async def test_sequential_mode_honours_deadline(hits_by_space, embedder, multi_vector_config):
    multi_vector_config.parallel = False
    for space_config in multi_vector_config.spaces.values():
        space_config.timeout_s = 10.0
    backend = FakeVectorBackend(hits_by_space, slow_spaces={"semantic": 5.0})
    coordinator = make_coordinator(backend, embedder, multi_vector_config)

    result = await coordinator.search("ide", deadline=time.monotonic() + 0.3)

    assert result.partial is True
    assert set(result.unavailable_spaces) == set(ALL_SPACES)


@pytest.mark.asyncio
async def test_embeds_once_per_distinct_text(hits_by_space, embedder, multi_vector_config):
    coordinator = make_coordinator(FakeVectorBackend(hits_by_space), embedder, multi_vector_config)

    await coordinator.search("free ui builder with hosting", entity_texts=["ui builder", "hosting"])

    # Query-text spaces share one embedding, entity-term spaces share another
    assert sorted(embedder.calls) == sorted(["free ui builder with hosting", "ui builder hosting"])


@pytest.mark.asyncio
async def test_result_sets_are_cached(hits_by_space, embedder, multi_vector_config, search_cache):
    backend = FakeVectorBackend(hits_by_space)
    coordinator = make_coordinator(backend, embedder, multi_vector_config, cache=search_cache)

    first = await coordinator.search("free ui builder", spaces=["semantic"])
    calls_after_first = len(backend.calls)
    second = await coordinator.search("free ui builder", spaces=["semantic"])

    assert len(backend.calls) == calls_after_first
    assert second.reports["semantic"].status == SpaceStatus.CACHED
    assert second.results_by_space == first.results_by_space


@pytest.mark.asyncio
async def test_slow_cache_is_bounded_by_space_timeout(
    hits_by_space, embedder, multi_vector_config, search_config
):
    multi_vector_config.get_space(VectorSpace.SEMANTIC).timeout_s = 0.1
    cache = SearchCache(
        config=search_config.cache, redis_cache=RedisCache(client=SlowRedis())
    )
    coordinator = make_coordinator(
        FakeVectorBackend(hits_by_space), embedder, multi_vector_config, cache=cache
    )

    start = time.monotonic()
    with pytest.raises(AllSpacesFailed) as exc_info:
        await coordinator.search("free ui builder", spaces=["semantic"])
    elapsed = time.monotonic() - start

    assert elapsed < 0.4
    assert "timed out" in exc_info.value.failures["semantic"]


@pytest.mark.asyncio
async def test_space_metrics_and_health(hits_by_space, embedder, multi_vector_config):
    backend = FakeVectorBackend(hits_by_space, slow_spaces={"aliases": 2.0})
    coordinator = make_coordinator(backend, embedder, multi_vector_config)

    await coordinator.search("free ui builder")
    metrics = coordinator.get_space_metrics()
    health = coordinator.health_check()

    assert metrics["aliases"]["timeouts"] == 1
    assert metrics["semantic"]["last_result_count"] == 5
    assert metrics["semantic"]["avg_similarity"] > 0
    assert health["spaces"]["aliases"] == "unhealthy"
    assert health["status"] == "degraded"
