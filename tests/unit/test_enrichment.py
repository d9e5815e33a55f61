"""
Tests for context enrichment.
"""

import logging
import time

import pytest
from conftest import ALL_SPACES, FakeCatalogStore, FakeVectorBackend

from catalog_search.enrichment import (
    ContextEnrichmentService,
    compute_attribute_distributions,
    statistic_confidence,
)
from catalog_search.models import CatalogItem, ExtractedEntity
from catalog_search.retrieval import BackendHit, MultiVectorSearchCoordinator


def distribution(distributions, attribute):
    return [(v.value, v.percentage) for v in distributions[attribute]]


class TestAttributeDistributions:
    """Pure statistics."""

    def test_percentages_sorted_descending(self, catalog_items):
        distributions = compute_attribute_distributions(
            catalog_items, ["categories", "pricing", "functionality"]
        )

        assert distribution(distributions, "categories") == [
            ("UI Builder", 75),
            ("Hosting", 25),
            ("No-Code", 25),
        ]
        assert distribution(distributions, "pricing") == [
            ("Free", 50),
            ("Freemium", 25),
            ("Paid", 25),
        ]
        assert "functionality" not in distributions

    def test_top_values_cap(self, catalog_items):
        distributions = compute_attribute_distributions(catalog_items, ["categories"], top_values=1)

        assert distribution(distributions, "categories") == [("UI Builder", 75)]

    def test_half_percent_rounds_up(self):
        items = [CatalogItem(f"i{i}", f"Tool {i}", {"pricing": "Free"}) for i in range(7)]
        items.append(CatalogItem("i7", "Tool 7", {"pricing": "Paid"}))

        distributions = compute_attribute_distributions(items, ["pricing"])

        assert distribution(distributions, "pricing") == [("Free", 88), ("Paid", 13)]

    def test_value_counts_once_per_item(self):
        items = [CatalogItem("i1", "Tool", {"categories": ["IDE", "IDE"]})]

        distributions = compute_attribute_distributions(items, ["categories"])

        assert distribution(distributions, "categories") == [("IDE", 100)]

    def test_no_items(self):
        assert compute_attribute_distributions([], ["categories"]) == {}


class TestStatisticConfidence:
    """Sample-size based confidence."""

    def test_monotonic_and_capped(self):
        confidences = [statistic_confidence(n) for n in range(0, 40)]

        assert confidences == sorted(confidences)
        assert confidences[0] == 0.0
        assert statistic_confidence(5) == pytest.approx(0.5)
        assert max(confidences) == 1.0

    def test_divisor_is_configurable(self):
        assert statistic_confidence(5, divisor=20.0) == pytest.approx(0.25)
        assert statistic_confidence(50, divisor=20.0) == 1.0


@pytest.fixture
def enrichment_backend():
    return FakeVectorBackend(
        {
            "semantic": [BackendHit("i1", 0.9), BackendHit("i3", 0.8), BackendHit("i2", 0.4)],
            "categories": [BackendHit("i2", 0.85), BackendHit("i4", 0.7)],
        }
    )


def make_service(backend, embedder, store, search_config, cache=None):
    coordinator = MultiVectorSearchCoordinator(
        backend, embedder, cache=cache, config=search_config.multi_vector
    )
    return ContextEnrichmentService(coordinator, store, cache=cache, config=search_config.enrichment)


class TestContextEnrichmentService:
    """Entity statistics from similarity search."""

    @pytest.mark.asyncio
    async def test_builds_statistic_from_similar_items(
        self, enrichment_backend, embedder, catalog_store, search_config
    ):
        service = make_service(enrichment_backend, embedder, catalog_store, search_config)

        statistics = await service.enrich([ExtractedEntity("UI builder", "category", 0.9)])

        statistic = statistics["UI builder"]
        # i2 at 0.4 in semantic is below min similarity but comes back via categories
        assert statistic.sample_size == 4
        assert statistic.confidence == pytest.approx(0.4)
        assert statistic.contributing_sources == ["categories", "semantic"]
        assert distribution(statistic.attribute_distributions, "categories")[0] == ("UI Builder", 75)

    @pytest.mark.asyncio
    async def test_only_enrichment_spaces_are_searched(
        self, enrichment_backend, embedder, catalog_store, search_config
    ):
        service = make_service(enrichment_backend, embedder, catalog_store, search_config)

        await service.enrich(["hosting"])

        assert sorted(set(enrichment_backend.calls)) == ["categories", "semantic"]

    @pytest.mark.asyncio
    async def test_zero_hits_give_minimal_statistic(self, embedder, catalog_store, search_config):
        service = make_service(FakeVectorBackend(), embedder, catalog_store, search_config)

        statistic = (await service.enrich(["quantum compiler"]))["quantum compiler"]

        assert statistic.sample_size == 0
        assert statistic.confidence == 0.0
        assert statistic.attribute_distributions == {}

    @pytest.mark.asyncio
    async def test_backend_failure_degrades_to_minimal(
        self, embedder, catalog_store, search_config, caplog
    ):
        backend = FakeVectorBackend(fail_spaces=ALL_SPACES)
        service = make_service(backend, embedder, catalog_store, search_config)

        with caplog.at_level(logging.WARNING):
            report = await service.enrich_with_report(["UI builder"])

        assert report.degraded_entities == ["UI builder"]
        assert report.statistics["UI builder"].sample_size == 0
        assert "Enrichment degraded" in caplog.text

    @pytest.mark.asyncio
    async def test_deadline_cutoff_marks_entity_degraded(self, embedder, catalog_store, search_config):
        backend = FakeVectorBackend(slow_spaces={"semantic": 1.0, "categories": 1.0})
        service = make_service(backend, embedder, catalog_store, search_config)

        started = time.monotonic()
        report = await service.enrich_with_report(
            ["UI builder"], deadline=time.monotonic() + 0.05
        )

        assert time.monotonic() - started < 0.5
        assert report.degraded_entities == ["UI builder"]
        assert report.statistics["UI builder"].sample_size == 0

    @pytest.mark.asyncio
    async def test_missing_space_keeps_statistic_but_degrades(
        self, enrichment_backend, embedder, catalog_store, search_config, search_cache
    ):
        enrichment_backend.fail_spaces = {"categories"}
        service = make_service(
            enrichment_backend, embedder, catalog_store, search_config, cache=search_cache
        )

        report = await service.enrich_with_report(["UI builder"])
        calls = len(enrichment_backend.calls)
        await service.enrich_with_report(["UI builder"])

        assert report.degraded_entities == ["UI builder"]
        assert report.statistics["UI builder"].sample_size == 2
        assert report.statistics["UI builder"].contributing_sources == ["semantic"]
        # Incomplete statistics are not cached
        assert len(enrichment_backend.calls) > calls

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_minimal(
        self, enrichment_backend, embedder, catalog_items, search_config
    ):
        store = FakeCatalogStore(catalog_items, fail=True)
        service = make_service(enrichment_backend, embedder, store, search_config)

        report = await service.enrich_with_report(["UI builder"])

        assert report.degraded
        assert report.statistics["UI builder"].confidence == 0.0

    @pytest.mark.asyncio
    async def test_exact_catalog_match_joins_sample(self, embedder, catalog_store, search_config):
        service = make_service(FakeVectorBackend(), embedder, catalog_store, search_config)

        statistic = (await service.enrich(["Bolt"]))["Bolt"]

        assert statistic.sample_size == 1
        assert statistic.contributing_sources == ["catalog"]
        assert distribution(statistic.attribute_distributions, "pricing") == [("Free", 100)]

    @pytest.mark.asyncio
    async def test_entities_deduplicated_and_capped(
        self, enrichment_backend, embedder, catalog_store, search_config
    ):
        search_config.enrichment.max_entities_per_query = 2
        service = make_service(enrichment_backend, embedder, catalog_store, search_config)

        statistics = await service.enrich(["free", "Free", " free ", "hosting", "ide"])

        assert list(statistics) == ["free", "hosting"]

    @pytest.mark.asyncio
    async def test_statistics_are_cached(
        self, enrichment_backend, embedder, catalog_store, search_config, search_cache
    ):
        service = make_service(
            enrichment_backend, embedder, catalog_store, search_config, cache=search_cache
        )

        first = await service.enrich(["UI builder"])
        calls = len(enrichment_backend.calls)
        second = await service.enrich(["ui  builder"])

        assert len(enrichment_backend.calls) == calls
        assert second["ui  builder"].sample_size == first["UI builder"].sample_size

    @pytest.mark.asyncio
    async def test_build_context(self, enrichment_backend, embedder, catalog_store, search_config):
        service = make_service(enrichment_backend, embedder, catalog_store, search_config)
        statistics = await service.enrich(["UI builder"])

        context = service.build_context("free UI builder with hosting", statistics)

        assert context.search_space_size == 4
        assert "User is interested in free tools" in context.assumptions
        assert "Primary category likely: UI Builder (75%)" in context.assumptions
        assert 0.0 < context.metadata_confidence <= 1.0

    def test_build_context_without_statistics(
        self, enrichment_backend, embedder, catalog_store, search_config
    ):
        service = make_service(enrichment_backend, embedder, catalog_store, search_config)

        context = service.build_context("anything", {})

        assert context.search_space_size == 0
        assert context.assumptions == []
