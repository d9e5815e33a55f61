"""
Extraction Module
Query understanding: entities and intent with local models, remote fallback and rules.
"""

from .local_extraction import INTENT_DESCRIPTIONS, LocalExtractionService, merge_entities
from .remote_reasoning import RemoteReasoningClient
from .rules import (
    CONTROLLED_VOCABULARY,
    DEFAULT_INTENT,
    VocabularyMatcher,
    is_stop_word,
    map_ner_label,
)

__all__ = [
    "INTENT_DESCRIPTIONS",
    "LocalExtractionService",
    "merge_entities",
    "RemoteReasoningClient",
    "CONTROLLED_VOCABULARY",
    "DEFAULT_INTENT",
    "VocabularyMatcher",
    "is_stop_word",
    "map_ner_label",
]
