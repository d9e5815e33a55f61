"""
Context Enrichment Service
Builds per-entity statistical profiles from similar catalog items.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..caching import SearchCache
from ..config import EnrichmentConfig, get_search_config
from ..errors import AllSpacesFailed, EnrichmentDegraded
from ..models import AttributeValue, CatalogItem, EntityStatistic, ExtractedEntity, normalize_text
from ..retrieval import CatalogStore, MultiVectorSearchCoordinator

logger = logging.getLogger(__name__)

EXACT_MATCH_SOURCE = "catalog"


def statistic_confidence(sample_size: int, divisor: float = 10.0) -> float:
    """Confidence for a sample: min(sample_size / divisor, 1.0)."""
    if sample_size <= 0:
        return 0.0
    return min(sample_size / divisor, 1.0)


def _attribute_values(raw) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set)):
        values = raw
    else:
        values = [raw]
    # Each value counts once per item
    return sorted({str(v).strip() for v in values if v is not None and str(v).strip()})


def compute_attribute_distributions(
    items: Sequence[CatalogItem], attributes: Iterable[str], top_values: int = 5
) -> Dict[str, List[AttributeValue]]:
    """
    Share of sampled items carrying each attribute value.

    percentage = round(100 * count(value) / total_samples), half rounded up,
    sorted descending (ties by value), top `top_values` kept per attribute.
    Attributes no sampled item carries are omitted.
    """
    total = len(items)
    distributions: Dict[str, List[AttributeValue]] = {}
    if total == 0:
        return distributions

    for attribute in attributes:
        counts: Counter = Counter()
        for item in items:
            counts.update(_attribute_values(item.attributes.get(attribute)))

        if not counts:
            continue

        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:top_values]
        distributions[attribute] = [
            AttributeValue(value=value, percentage=int(100 * count / total + 0.5))
            for value, count in ranked
        ]

    return distributions


@dataclass
class EnrichmentReport:
    """Statistics per entity plus the entities that degraded."""

    statistics: Dict[str, EntityStatistic]
    degraded_entities: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_entities)


@dataclass
class MetadataContext:
    """Summary of enrichment used to ground downstream reasoning."""

    search_space_size: int
    metadata_confidence: float
    assumptions: List[str]

    def to_dict(self) -> dict:
        return {
            "search_space_size": self.search_space_size,
            "metadata_confidence": self.metadata_confidence,
            "assumptions": list(self.assumptions),
        }


class ContextEnrichmentService:
    """
    Context enrichment for extracted entities.

    For each entity: multi-vector similarity search with a minimum similarity
    and a sample cap, hydrate the hits from the catalog store, then compute
    attribute distributions and a sample-size based confidence. Backend
    failures degrade to a minimal statistic; this service never raises for
    an unavailable backend.
    """

    def __init__(
        self,
        coordinator: MultiVectorSearchCoordinator,
        catalog_store: CatalogStore,
        cache: Optional[SearchCache] = None,
        config: Optional[EnrichmentConfig] = None,
    ):
        """
        Initialize context enrichment service.

        Args:
            coordinator: Multi-vector search coordinator
            catalog_store: Catalog item store for metadata
            cache: Search cache for statistics (optional)
            config: Enrichment configuration
        """
        self.coordinator = coordinator
        self.catalog_store = catalog_store
        self.cache = cache
        self.config = config or get_search_config().enrichment

        logger.info("Context enrichment service initialized")

    async def enrich(
        self, entities: Sequence[Union[ExtractedEntity, str]]
    ) -> Dict[str, EntityStatistic]:
        """
        Build a statistic for every entity.

        Args:
            entities: Extracted entities (or raw entity texts)

        Returns:
            Dict mapping entity text -> EntityStatistic
        """
        report = await self.enrich_with_report(entities)
        return report.statistics

    async def enrich_with_report(
        self, entities: Sequence[Union[ExtractedEntity, str]], deadline: Optional[float] = None
    ) -> EnrichmentReport:
        """
        Build statistics and report which entities degraded.

        Args:
            entities: Extracted entities (or raw entity texts)
            deadline: Absolute time.monotonic() deadline forwarded to searches
        """
        start_time = time.time()
        texts = self._entity_texts(entities)

        statistics: Dict[str, EntityStatistic] = {}
        degraded: List[str] = []

        for text in texts:
            try:
                statistics[text], complete = await self._enrich_entity(text, deadline)
                if not complete:
                    degraded.append(text)
            except EnrichmentDegraded as e:
                logger.warning(f"Enrichment degraded for entity '{text}': {e.message}")
                statistics[text] = EntityStatistic.minimal(text)
                degraded.append(text)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Enriched {len(texts)} entities in {duration_ms:.2f}ms "
            f"({len(degraded)} degraded)"
        )

        return EnrichmentReport(statistics=statistics, degraded_entities=degraded, duration_ms=duration_ms)

    async def _enrich_entity(
        self, text: str, deadline: Optional[float]
    ) -> Tuple[EntityStatistic, bool]:
        """
        Returns:
            (statistic, complete); incomplete statistics missed spaces and are not cached

        Raises:
            EnrichmentDegraded: If the similarity backend or item store is unavailable
        """
        if self.cache is not None:
            cached = await asyncio.to_thread(self.cache.get_statistic, text)
            if cached is not None:
                return cached, True

        try:
            search = await self.coordinator.search(
                text,
                spaces=self.config.enrichment_spaces,
                limit_per_space=self.config.max_samples,
                min_score=self.config.min_similarity,
                deadline=deadline,
            )
        except AllSpacesFailed as e:
            raise EnrichmentDegraded(f"Similarity backend unavailable: {e.message}", e.details)

        complete = not (search.partial or search.unavailable_spaces)
        if not complete:
            logger.warning(
                f"Similarity search for '{text}' incomplete "
                f"(unavailable spaces: {search.unavailable_spaces}, partial={search.partial})"
            )

        item_ids: List[str] = []
        sources: List[str] = []
        for space in sorted(search.results_by_space):
            results = search.results_by_space[space]
            if results:
                sources.append(space)
            for result in results:
                if result.item_id not in item_ids:
                    item_ids.append(result.item_id)

        try:
            exact = await self.catalog_store.get_item_by_text(text)
        except Exception as e:
            raise EnrichmentDegraded(f"Catalog lookup failed: {e}")

        if exact is not None and exact.item_id not in item_ids:
            item_ids.insert(0, exact.item_id)
            sources.append(EXACT_MATCH_SOURCE)

        item_ids = item_ids[: self.config.max_samples]
        if not item_ids:
            logger.debug(f"No similarity hits for entity '{text}'")
            statistic = EntityStatistic.minimal(text)
            if self.cache is not None and complete:
                await asyncio.to_thread(self.cache.set_statistic, statistic)
            return statistic, complete

        try:
            items = await self.catalog_store.get_items_by_ids(item_ids)
        except Exception as e:
            raise EnrichmentDegraded(f"Catalog hydration failed: {e}")

        statistic = EntityStatistic(
            entity=text,
            attribute_distributions=compute_attribute_distributions(
                items, self.config.attributes, self.config.top_values
            ),
            sample_size=len(items),
            confidence=statistic_confidence(len(items), self.config.confidence_divisor),
            contributing_sources=sources,
        )

        if self.cache is not None and complete:
            await asyncio.to_thread(self.cache.set_statistic, statistic)

        return statistic, complete

    def _entity_texts(self, entities: Sequence[Union[ExtractedEntity, str]]) -> List[str]:
        texts: List[str] = []
        seen = set()
        for entity in entities:
            text = entity.text if isinstance(entity, ExtractedEntity) else str(entity)
            key = normalize_text(text)
            if not key or key in seen:
                continue
            seen.add(key)
            texts.append(text.strip())
            if len(texts) >= self.config.max_entities_per_query:
                break
        return texts

    def build_context(self, query: str, statistics: Dict[str, EntityStatistic]) -> MetadataContext:
        """
        Summarize statistics into search-space size, confidence and assumptions.

        metadata_confidence = mean confidence * min(attribute types / 3, 1)
        """
        if not statistics:
            return MetadataContext(search_space_size=0, metadata_confidence=0.0, assumptions=[])

        stats = list(statistics.values())
        search_space_size = sum(s.sample_size for s in stats)
        average_confidence = sum(s.confidence for s in stats) / len(stats)
        attribute_types = {name for s in stats for name in s.attribute_distributions}
        metadata_confidence = average_confidence * min(len(attribute_types) / 3, 1.0)

        assumptions = []
        words = set(normalize_text(query).split())
        if "free" in words or "open source" in normalize_text(query):
            assumptions.append("User is interested in free tools")
        if "api" in words:
            assumptions.append("User is looking for API-based tools")

        top_category = self._top_value(stats, "categories")
        if top_category is not None:
            assumptions.append(
                f"Primary category likely: {top_category.value} ({top_category.percentage}%)"
            )
        top_pricing = self._top_value(stats, "pricing")
        if top_pricing is not None:
            assumptions.append(
                f"Preferred pricing: {top_pricing.value} ({top_pricing.percentage}%)"
            )

        return MetadataContext(
            search_space_size=search_space_size,
            metadata_confidence=round(metadata_confidence, 4),
            assumptions=assumptions,
        )

    @staticmethod
    def _top_value(stats: List[EntityStatistic], attribute: str) -> Optional[AttributeValue]:
        best: Optional[AttributeValue] = None
        for statistic in sorted(stats, key=lambda s: -s.sample_size):
            values = statistic.attribute_distributions.get(attribute)
            if values and (best is None or values[0].percentage > best.percentage):
                best = values[0]
        return best
