"""
Search Engine Configuration
Centralized configuration for extraction, enrichment, multi-vector search, fusion and caching.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .errors import ConfigurationError


class VectorSpace(str, Enum):
    """Named similarity spaces every catalog item is projected into."""

    SEMANTIC = "semantic"  # General description
    CATEGORIES = "categories"
    FUNCTIONALITY = "functionality"
    ALIASES = "aliases"
    COMPOSITES = "composites"  # Composite type terms


class EmbeddingStrategy(Enum):
    """How the text for a space-specific query embedding is built."""

    QUERY_TEXT = "query_text"  # Normalized query as typed
    ENTITY_TERMS = "entity_terms"  # Extracted entity texts, query when none


@dataclass
class SpaceConfig:
    """Per-space search settings."""

    space: VectorSpace
    weight: float = 1.0
    timeout_s: float = 3.0
    embedding_strategy: EmbeddingStrategy = EmbeddingStrategy.QUERY_TEXT


def _default_spaces() -> Dict[VectorSpace, SpaceConfig]:
    return {
        VectorSpace.SEMANTIC: SpaceConfig(VectorSpace.SEMANTIC, weight=1.0),
        VectorSpace.CATEGORIES: SpaceConfig(
            VectorSpace.CATEGORIES, weight=0.8, embedding_strategy=EmbeddingStrategy.ENTITY_TERMS
        ),
        VectorSpace.FUNCTIONALITY: SpaceConfig(
            VectorSpace.FUNCTIONALITY, weight=0.7, embedding_strategy=EmbeddingStrategy.ENTITY_TERMS
        ),
        VectorSpace.ALIASES: SpaceConfig(
            VectorSpace.ALIASES, weight=0.6, embedding_strategy=EmbeddingStrategy.ENTITY_TERMS
        ),
        VectorSpace.COMPOSITES: SpaceConfig(VectorSpace.COMPOSITES, weight=0.5),
    }


@dataclass
class CacheConfig:
    """Embedding / result cache TTL policies (seconds)."""

    embedding_ttl: int = 7200  # Hot embeddings
    statistics_ttl: int = 3600  # Enrichment statistics
    result_ttl: int = 300  # Raw per-space result sets
    extraction_ttl: int = 3600

    # Adaptive TTL: ttl = base * min(ln(freq + 1) + 1, 3), clamped
    adaptive_ttl: bool = True
    min_ttl: int = 300
    max_ttl: int = 7200
    max_ttl_multiplier: float = 3.0

    key_prefix: str = "catalog_search"


@dataclass
class ExtractionConfig:
    """Local entity / intent extraction settings."""

    confidence_threshold: float = 0.7

    # Local models (Hugging Face transformers pipelines)
    ner_model: str = "dslim/bert-base-NER"
    classification_model: str = "facebook/bart-large-mnli"
    hypothesis_template: str = "The user wants to {}."

    # Model load failure: retry then open the breaker for the process lifetime
    load_retries: int = 1
    load_backoff_s: float = 0.5

    max_batch_size: int = 10
    max_entities: int = 10
    use_vocabulary_rules: bool = True


@dataclass
class EnrichmentConfig:
    """Context enrichment settings."""

    max_entities_per_query: int = 5
    min_similarity: float = 0.6
    max_samples: int = 30
    top_values: int = 5

    # confidence = min(sample_size / confidence_divisor, 1.0)
    confidence_divisor: float = 10.0

    attributes: List[str] = field(
        default_factory=lambda: ["categories", "pricing", "interface", "functionality"]
    )
    enrichment_spaces: List[VectorSpace] = field(
        default_factory=lambda: [VectorSpace.SEMANTIC, VectorSpace.CATEGORIES]
    )


@dataclass
class MultiVectorConfig:
    """Fan-out search settings."""

    spaces: Dict[VectorSpace, SpaceConfig] = field(default_factory=_default_spaces)
    limit_per_space: int = 20
    min_score: Optional[float] = None
    parallel: bool = True

    # Exponential moving average factor for per-space latency
    metrics_alpha: float = 0.3

    def get_space(self, space: VectorSpace) -> SpaceConfig:
        """Get config for a space, falling back to defaults for unknown ones."""
        return self.spaces.get(space) or SpaceConfig(space)


@dataclass
class FusionConfig:
    """Rank fusion settings."""

    rrf_k: int = 60
    max_results: int = 100  # Default response size when a request sets none
    diversity_top_k: int = 20
    hybrid_rrf_weight: float = 0.6  # Remainder goes to weighted average


@dataclass
class PipelineConfig:
    """Orchestrator settings."""

    default_deadline_s: float = 10.0
    skip_enrichment_confidence: float = 0.7
    simple_query_max_words: int = 4
    enable_diversity: bool = True
    hydrate_candidates: bool = True


@dataclass
class SearchConfig:
    """Top-level configuration combining all sub-configs."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    multi_vector: MultiVectorConfig = field(default_factory=MultiVectorConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """Load configuration from environment variables."""
        config = cls()

        if rrf_k := os.getenv("SEARCH_RRF_K"):
            config.fusion.rrf_k = int(rrf_k)

        if threshold := os.getenv("EXTRACTION_CONFIDENCE_THRESHOLD"):
            config.extraction.confidence_threshold = float(threshold)

        if ner_model := os.getenv("EXTRACTION_NER_MODEL"):
            config.extraction.ner_model = ner_model

        if classifier := os.getenv("EXTRACTION_CLASSIFICATION_MODEL"):
            config.extraction.classification_model = classifier

        if limit := os.getenv("SEARCH_LIMIT_PER_SPACE"):
            config.multi_vector.limit_per_space = int(limit)

        if timeout := os.getenv("SEARCH_SPACE_TIMEOUT_S"):
            for space_config in config.multi_vector.spaces.values():
                space_config.timeout_s = float(timeout)

        if divisor := os.getenv("ENRICHMENT_CONFIDENCE_DIVISOR"):
            config.enrichment.confidence_divisor = float(divisor)

        if deadline := os.getenv("SEARCH_DEADLINE_S"):
            config.pipeline.default_deadline_s = float(deadline)

        return config

    def validate(self) -> None:
        """
        Validate configuration consistency.

        Raises:
            ConfigurationError: If any value is out of range
        """
        if not 0 < self.fusion.rrf_k <= 1000:
            raise ConfigurationError(f"rrf_k must be in (0, 1000], got {self.fusion.rrf_k}")

        if not 0 < self.fusion.max_results <= 10000:
            raise ConfigurationError(
                f"max_results must be in (0, 10000], got {self.fusion.max_results}"
            )

        thresholds = {
            "extraction.confidence_threshold": self.extraction.confidence_threshold,
            "enrichment.min_similarity": self.enrichment.min_similarity,
            "pipeline.skip_enrichment_confidence": self.pipeline.skip_enrichment_confidence,
            "fusion.hybrid_rrf_weight": self.fusion.hybrid_rrf_weight,
            "multi_vector.metrics_alpha": self.multi_vector.metrics_alpha,
        }
        for name, value in thresholds.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1], got {value}")

        if self.enrichment.confidence_divisor <= 0:
            raise ConfigurationError("enrichment.confidence_divisor must be positive")

        if self.multi_vector.limit_per_space <= 0:
            raise ConfigurationError("multi_vector.limit_per_space must be positive")

        for space, space_config in self.multi_vector.spaces.items():
            if space_config.weight < 0:
                raise ConfigurationError(f"Weight for space '{space.value}' must be >= 0")
            if space_config.timeout_s <= 0:
                raise ConfigurationError(f"Timeout for space '{space.value}' must be > 0")

        if self.cache.min_ttl > self.cache.max_ttl:
            raise ConfigurationError("cache.min_ttl must be <= cache.max_ttl")


# Global configuration instance
_global_config: Optional[SearchConfig] = None


def get_search_config() -> SearchConfig:
    """Get global search configuration (singleton pattern)."""
    global _global_config
    if _global_config is None:
        _global_config = SearchConfig.from_env()
        _global_config.validate()
    return _global_config


def reset_config() -> None:
    """Reset global configuration (useful for testing)."""
    global _global_config
    _global_config = None
