"""
Fusion Module
Rank fusion, deduplication, attribution and diversity promotion.
"""

from .diversity import promote_diversity
from .result_fusion import INTENT_SPACE_PRIORITIES, SPACE_LABELS, MergeStrategy, ResultFusionEngine

__all__ = [
    "promote_diversity",
    "INTENT_SPACE_PRIORITIES",
    "SPACE_LABELS",
    "MergeStrategy",
    "ResultFusionEngine",
]
