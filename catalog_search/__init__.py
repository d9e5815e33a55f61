"""
Catalog Search
Query understanding and multi-vector retrieval fusion for catalog search.
"""

from .config import SearchConfig, VectorSpace, get_search_config, reset_config
from .errors import (
    AllSpacesFailed,
    ConfigurationError,
    EnrichmentDegraded,
    ExtractionUnavailable,
    SearchEngineError,
    SpaceSearchFailed,
    SpaceSearchTimeout,
)
from .fusion import MergeStrategy, ResultFusionEngine
from .models import (
    CatalogItem,
    EntityStatistic,
    ExtractedEntity,
    ExtractionResult,
    FusedCandidate,
    IntentClassification,
    IntentLabel,
    Query,
    VectorSearchResult,
)
from .search import SearchOptions, SearchOrchestrator, SearchResponse
from .settings import EngineSettings, configure_logging, get_settings

__version__ = "0.1.0"

__all__ = [
    "SearchConfig",
    "VectorSpace",
    "get_search_config",
    "reset_config",
    "AllSpacesFailed",
    "ConfigurationError",
    "EnrichmentDegraded",
    "ExtractionUnavailable",
    "SearchEngineError",
    "SpaceSearchFailed",
    "SpaceSearchTimeout",
    "MergeStrategy",
    "ResultFusionEngine",
    "CatalogItem",
    "EntityStatistic",
    "ExtractedEntity",
    "ExtractionResult",
    "FusedCandidate",
    "IntentClassification",
    "IntentLabel",
    "Query",
    "VectorSearchResult",
    "SearchOptions",
    "SearchOrchestrator",
    "SearchResponse",
    "EngineSettings",
    "configure_logging",
    "get_settings",
]
