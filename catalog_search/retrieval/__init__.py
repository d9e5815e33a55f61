"""
Retrieval Module
Vector backends and parallel multi-space search.
"""

from .backends import BackendHit, CatalogStore, TextEmbedder, VectorBackend
from .faiss_backend import FaissVectorBackend
from .multi_vector_search import (
    MultiVectorSearchCoordinator,
    MultiVectorSearchResult,
    SpaceMetrics,
    SpaceSearchReport,
    SpaceStatus,
)

__all__ = [
    "BackendHit",
    "CatalogStore",
    "TextEmbedder",
    "VectorBackend",
    "FaissVectorBackend",
    "MultiVectorSearchCoordinator",
    "MultiVectorSearchResult",
    "SpaceMetrics",
    "SpaceSearchReport",
    "SpaceStatus",
]
