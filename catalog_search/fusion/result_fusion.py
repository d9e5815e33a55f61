"""
Result Fusion Engine
Merges per-space ranked lists into one deduplicated, attributed and explainable ranking.

Reciprocal Rank Fusion:
fused_score(item) = sum over spaces of 1 / (k + rank_in_space), rank 1-based, k = 60
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from ..config import FusionConfig, VectorSpace, get_search_config
from ..models import FusedCandidate, IntentLabel, VectorSearchResult, canonical_item_id
from .diversity import promote_diversity

logger = logging.getLogger(__name__)


class MergeStrategy(Enum):
    """Supported fusion strategies."""

    RECIPROCAL_RANK_FUSION = "reciprocal_rank_fusion"
    WEIGHTED_AVERAGE = "weighted_average"
    SOURCE_PRIORITY = "source_priority"  # RRF with per-intent space priorities
    HYBRID = "hybrid"  # Normalized RRF blended with weighted average


# Human-readable names used in explanations
SPACE_LABELS: Dict[str, str] = {
    VectorSpace.SEMANTIC.value: "semantic",
    VectorSpace.CATEGORIES.value: "category",
    VectorSpace.FUNCTIONALITY.value: "functionality",
    VectorSpace.ALIASES.value: "alias",
    VectorSpace.COMPOSITES.value: "composite",
}

# Space priority multipliers per intent (SOURCE_PRIORITY strategy)
INTENT_SPACE_PRIORITIES: Dict[IntentLabel, Dict[str, float]] = {
    IntentLabel.FILTER_SEARCH: {
        VectorSpace.CATEGORIES.value: 1.0,
        VectorSpace.FUNCTIONALITY.value: 0.9,
        VectorSpace.SEMANTIC.value: 0.8,
        VectorSpace.ALIASES.value: 0.6,
        VectorSpace.COMPOSITES.value: 0.5,
    },
    IntentLabel.COMPARISON: {
        VectorSpace.ALIASES.value: 1.0,
        VectorSpace.SEMANTIC.value: 0.9,
        VectorSpace.COMPOSITES.value: 0.8,
        VectorSpace.CATEGORIES.value: 0.7,
        VectorSpace.FUNCTIONALITY.value: 0.6,
    },
    IntentLabel.DISCOVERY: {
        VectorSpace.SEMANTIC.value: 1.0,
        VectorSpace.FUNCTIONALITY.value: 0.9,
        VectorSpace.CATEGORIES.value: 0.8,
        VectorSpace.COMPOSITES.value: 0.6,
        VectorSpace.ALIASES.value: 0.5,
    },
    IntentLabel.EXPLORATION: {
        VectorSpace.SEMANTIC.value: 1.0,
        VectorSpace.CATEGORIES.value: 0.8,
        VectorSpace.COMPOSITES.value: 0.8,
        VectorSpace.FUNCTIONALITY.value: 0.7,
        VectorSpace.ALIASES.value: 0.6,
    },
}


@dataclass
class _Accumulator:
    """Per-item fusion state, seeded by the earliest-seen record."""

    item_id: str
    first_record: VectorSearchResult
    rankings: Dict[str, int] = field(default_factory=dict)
    scores: Dict[str, float] = field(default_factory=dict)


class ResultFusionEngine:
    """
    Fuses ranked lists from multiple vector spaces.

    Supports:
    - Reciprocal Rank Fusion (default)
    - Weighted average of similarity scores
    - Source priority by intent
    - Hybrid RRF / weighted average
    - Optional category diversity promotion

    Output order is deterministic: fused score descending, then number of
    contributing sources descending, then item id ascending.
    """

    def __init__(
        self,
        config: Optional[FusionConfig] = None,
        space_weights: Optional[Dict[str, float]] = None,
    ):
        """
        Initialize fusion engine.

        Args:
            config: Fusion configuration
            space_weights: Weight per space name (WEIGHTED_AVERAGE / HYBRID)
        """
        search_config = get_search_config() if config is None or space_weights is None else None
        self.config = config or search_config.fusion

        if space_weights is None:
            space_weights = {
                space.value: space_config.weight
                for space, space_config in search_config.multi_vector.spaces.items()
            }
        self.space_weights = space_weights

        logger.info(f"Result fusion engine initialized (k={self.config.rrf_k})")

    def fuse(
        self,
        results_by_space: Mapping[str, Sequence[VectorSearchResult]],
        strategy: MergeStrategy = MergeStrategy.RECIPROCAL_RANK_FUSION,
        intent: Optional[IntentLabel] = None,
        diversify: bool = False,
    ) -> List[FusedCandidate]:
        """
        Fuse per-space ranked lists into one candidate list.

        Args:
            results_by_space: Space name -> ranked results (rank order is authoritative)
            strategy: Merge strategy
            intent: Query intent (SOURCE_PRIORITY)
            diversify: Apply diversity promotion to the top-K

        Returns:
            Fused candidates, best first. Empty input yields an empty list.
        """
        accumulators = self._collect(results_by_space)

        if not accumulators:
            logger.debug("Fusion input empty, returning no candidates")
            return []

        input_spaces = sorted(results_by_space.keys())

        if strategy == MergeStrategy.RECIPROCAL_RANK_FUSION:
            fused_scores = {cid: self._rrf_score(acc) for cid, acc in accumulators.items()}
        elif strategy == MergeStrategy.WEIGHTED_AVERAGE:
            fused_scores = {
                cid: self._weighted_average(acc, input_spaces) for cid, acc in accumulators.items()
            }
        elif strategy == MergeStrategy.SOURCE_PRIORITY:
            priorities = INTENT_SPACE_PRIORITIES[intent or IntentLabel.EXPLORATION]
            fused_scores = {
                cid: self._rrf_score(acc, priorities) for cid, acc in accumulators.items()
            }
        elif strategy == MergeStrategy.HYBRID:
            fused_scores = self._hybrid_scores(accumulators, input_spaces)
        else:
            raise ValueError(f"Unsupported merge strategy: {strategy}")

        candidates = [
            self._build_candidate(acc, fused_scores[cid]) for cid, acc in accumulators.items()
        ]
        candidates.sort(key=lambda c: (-c.fused_score, -len(c.contributing_sources), c.item_id))

        if diversify:
            candidates = promote_diversity(candidates, self.config.diversity_top_k)

        logger.info(
            f"Fused {sum(len(r) for r in results_by_space.values())} results from "
            f"{len(results_by_space)} spaces into {len(candidates)} candidates "
            f"(strategy={strategy.value})"
        )

        return candidates

    def _collect(
        self, results_by_space: Mapping[str, Sequence[VectorSearchResult]]
    ) -> Dict[str, _Accumulator]:
        """Deduplicate by canonical id; the earliest-seen record wins conflicts."""
        accumulators: Dict[str, _Accumulator] = {}

        # Sorted space order makes "earliest seen" reproducible
        for space in sorted(results_by_space.keys()):
            for record in results_by_space[space]:
                cid = canonical_item_id(record.item_id)

                payload_id = record.metadata.get("item_id")
                if payload_id is not None and canonical_item_id(payload_id) != cid:
                    logger.warning(
                        f"Payload id '{payload_id}' disagrees with record id '{cid}' "
                        f"in space '{space}'; keeping record id"
                    )

                acc = accumulators.get(cid)
                if acc is None:
                    acc = _Accumulator(item_id=cid, first_record=record)
                    accumulators[cid] = acc
                elif space in acc.rankings:
                    logger.warning(
                        f"Duplicate record for item '{cid}' in space '{space}' "
                        f"(ranks {acc.rankings[space]} and {record.rank}); keeping earliest"
                    )
                    continue
                elif (
                    record.metadata
                    and acc.first_record.metadata
                    and record.metadata != acc.first_record.metadata
                ):
                    logger.warning(
                        f"Conflicting payloads for item '{cid}' from spaces "
                        f"'{acc.first_record.source_space}' and '{space}'; keeping earliest"
                    )

                acc.rankings[space] = record.rank
                acc.scores[space] = float(record.score)

        return accumulators

    def rrf_contribution(self, rank: int) -> float:
        """Score contributed by one space for a 1-based rank."""
        return 1.0 / (self.config.rrf_k + rank)

    def _rrf_score(self, acc: _Accumulator, priorities: Optional[Dict[str, float]] = None) -> float:
        total = 0.0
        for space in sorted(acc.rankings):
            multiplier = 1.0 if priorities is None else priorities.get(space, 0.5)
            total += multiplier * self.rrf_contribution(acc.rankings[space])
        return total

    def _weighted_average(self, acc: _Accumulator, input_spaces: List[str]) -> float:
        """Weighted score over all input spaces; a missing space contributes 0."""
        total_weight = sum(self.space_weights.get(space, 1.0) for space in input_spaces)
        if total_weight <= 0:
            return 0.0
        weighted = sum(
            self.space_weights.get(space, 1.0) * acc.scores[space] for space in sorted(acc.scores)
        )
        return weighted / total_weight

    def _hybrid_scores(
        self, accumulators: Dict[str, _Accumulator], input_spaces: List[str]
    ) -> Dict[str, float]:
        rrf = {cid: self._rrf_score(acc) for cid, acc in accumulators.items()}
        weighted = {cid: self._weighted_average(acc, input_spaces) for cid, acc in accumulators.items()}

        max_rrf = max(rrf.values()) or 1.0
        max_weighted = max(weighted.values()) or 1.0
        alpha = self.config.hybrid_rrf_weight

        return {
            cid: alpha * rrf[cid] / max_rrf + (1 - alpha) * weighted[cid] / max_weighted
            for cid in accumulators
        }

    def _build_candidate(self, acc: _Accumulator, fused_score: float) -> FusedCandidate:
        sources = sorted(acc.rankings, key=lambda space: (acc.rankings[space], space))
        return FusedCandidate(
            item_id=acc.item_id,
            fused_score=fused_score,
            per_source_scores=dict(acc.scores),
            contributing_sources=sources,
            explanation=self.explain(sources, acc.rankings),
            original_rankings=dict(acc.rankings),
            category=_category_from_payload(acc.first_record.metadata),
        )

    @staticmethod
    def explain(sources: List[str], rankings: Dict[str, int]) -> str:
        """
        Human-readable attribution.

        Example: "matched via category and alias vectors (best rank 1 in category)"
        """
        labels = [SPACE_LABELS.get(space, space) for space in sources]
        if len(labels) == 1:
            joined = f"{labels[0]} vector"
        else:
            joined = f"{', '.join(labels[:-1])} and {labels[-1]} vectors"

        best_space = sources[0]
        return (
            f"matched via {joined} "
            f"(best rank {rankings[best_space]} in {SPACE_LABELS.get(best_space, best_space)})"
        )


def _category_from_payload(payload: Dict) -> Optional[str]:
    category = payload.get("category")
    if category:
        return str(category)
    categories = payload.get("categories")
    if isinstance(categories, (list, tuple)) and categories:
        return str(categories[0])
    if isinstance(categories, str) and categories:
        return categories
    return None
