"""
Search Data Model
Immutable records passed between pipeline stages.
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# CLIP's max token length
MAX_QUERY_WORDS = 77


def normalize_text(text: str) -> str:
    """
    Normalize free text for encoding and cache keys.

    Collapses whitespace, strips special characters (keeps alphanumerics,
    hyphens and apostrophes), lowercases and truncates to MAX_QUERY_WORDS.
    """
    text = " ".join(text.split())
    text = re.sub(r"[^\w\s\-\']", " ", text)
    text = " ".join(text.split()).lower()

    words = text.split()
    if len(words) > MAX_QUERY_WORDS:
        text = " ".join(words[:MAX_QUERY_WORDS])

    return text


def canonical_item_id(item_id: Any) -> str:
    """Canonical identity key used to deduplicate items across sources."""
    return str(item_id).strip()


class IntentLabel(Enum):
    """Closed set of query intents."""

    FILTER_SEARCH = "filter_search"
    COMPARISON = "comparison_query"
    DISCOVERY = "discovery"
    EXPLORATION = "exploration"


class ProcessingStrategy(Enum):
    """Which extractor produced an extraction result."""

    LOCAL = "local"
    REMOTE = "remote"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class Query:
    """Accepted search query."""

    raw_text: str
    normalized_text: str
    request_id: str

    @classmethod
    def create(cls, text: str, request_id: Optional[str] = None) -> "Query":
        """Accept raw text, normalizing it and assigning a request id."""
        return cls(
            raw_text=text,
            normalized_text=normalize_text(text),
            request_id=request_id or uuid.uuid4().hex,
        )


@dataclass(frozen=True)
class ExtractedEntity:
    """Entity mention found in the query text."""

    text: str
    entity_type: str
    confidence: float

    def to_dict(self) -> dict:
        return {"text": self.text, "entity_type": self.entity_type, "confidence": self.confidence}


@dataclass(frozen=True)
class IntentClassification:
    """Single intent label for a query."""

    label: IntentLabel
    confidence: float

    def to_dict(self) -> dict:
        return {"label": self.label.value, "confidence": self.confidence}


@dataclass(frozen=True)
class ExtractionResult:
    """
    Entities and intent for one query text.

    `degraded_reason` is set when neither the local model nor the remote
    fallback produced the result and rule matching was used instead.
    """

    entities: Tuple[ExtractedEntity, ...]
    intent: IntentClassification
    processing_strategy: ProcessingStrategy
    degraded_reason: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def max_entity_confidence(self) -> float:
        return max((e.confidence for e in self.entities), default=0.0)

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "intent": self.intent.to_dict(),
            "processing_strategy": self.processing_strategy.value,
            "degraded_reason": self.degraded_reason,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class AttributeValue:
    """Share of sampled items carrying one attribute value."""

    value: str
    percentage: int


@dataclass(frozen=True)
class EntityStatistic:
    """
    Statistical profile of the catalog items similar to an entity.

    Confidence grows with sample_size and is capped at 1.0.
    """

    entity: str
    attribute_distributions: Dict[str, List[AttributeValue]]
    sample_size: int
    confidence: float
    contributing_sources: List[str] = field(default_factory=list)

    @classmethod
    def minimal(cls, entity: str) -> "EntityStatistic":
        """Statistic for an entity with no similarity hits."""
        return cls(entity=entity, attribute_distributions={}, sample_size=0, confidence=0.0)

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "attribute_distributions": {
                name: [{"value": v.value, "percentage": v.percentage} for v in values]
                for name, values in self.attribute_distributions.items()
            },
            "sample_size": self.sample_size,
            "confidence": self.confidence,
            "contributing_sources": list(self.contributing_sources),
        }


@dataclass(frozen=True)
class VectorSearchResult:
    """
    One hit from one named vector space.

    Rank is 1-based and assigned by the issuing space.
    """

    item_id: str
    score: float
    source_space: str
    rank: int

    # Optional payload returned by the backend
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "score": float(self.score),
            "source_space": self.source_space,
            "rank": self.rank,
        }


@dataclass(frozen=True)
class FusedCandidate:
    """Unique item surviving fusion, attributed to its contributing spaces."""

    item_id: str
    fused_score: float
    per_source_scores: Dict[str, float]
    contributing_sources: List[str]
    explanation: str
    original_rankings: Dict[str, int] = field(default_factory=dict)
    category: Optional[str] = None

    # Hydrated catalog record
    item: Optional[Dict[str, Any]] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "fused_score": float(self.fused_score),
            "per_source_scores": {k: float(v) for k, v in self.per_source_scores.items()},
            "contributing_sources": list(self.contributing_sources),
            "explanation": self.explanation,
            "original_rankings": dict(self.original_rankings),
            "category": self.category,
            "item": self.item,
        }


@dataclass(frozen=True)
class CatalogItem:
    """Catalog record as returned by the item store."""

    item_id: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> Optional[str]:
        """Top-level category (first listed category)."""
        categories = self.attributes.get("categories")
        if isinstance(categories, (list, tuple)):
            return str(categories[0]) if categories else None
        if categories:
            return str(categories)
        return None

    def to_dict(self) -> dict:
        return {"item_id": self.item_id, "name": self.name, "attributes": dict(self.attributes)}
