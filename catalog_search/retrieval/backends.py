"""
Retrieval Backends
Capability contracts for the vector similarity backend, catalog item store and text embedder.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from ..models import CatalogItem


@dataclass(frozen=True)
class BackendHit:
    """Raw hit returned by a vector backend, best first."""

    item_id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)


class VectorBackend(Protocol):
    """Similarity backend exposing independently searchable named spaces."""

    async def search(
        self,
        space: str,
        embedding: np.ndarray,
        limit: int,
        min_score: Optional[float] = None,
    ) -> List[BackendHit]:
        ...


class CatalogStore(Protocol):
    """Structured metadata lookups for catalog items."""

    async def get_items_by_ids(self, ids: Sequence[str]) -> List[CatalogItem]:
        ...

    async def get_item_by_text(self, name: str) -> Optional[CatalogItem]:
        ...


class TextEmbedder(Protocol):
    """Blocking text encoder (e.g. TextEncoderService)."""

    def encode(self, text: str) -> np.ndarray:
        ...
