"""
Rule-Based Extraction
Controlled-vocabulary and pattern matching for entities, keyword rules for intent.
"""

import re
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from ..models import ExtractedEntity, IntentClassification, IntentLabel

RULE_CONFIDENCE = 0.8

STOP_WORDS = frozenset(
    [
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do",
        "does", "did", "will", "would", "could", "should", "may", "might", "must", "can",
        "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they", "me",
        "him", "her", "us", "them", "my", "some", "any", "tool", "tools", "app", "apps",
    ]
)

# Token-classification labels -> entity types
NER_LABEL_MAP: Dict[str, str] = {
    "PER": "person",
    "ORG": "organization",
    "LOC": "location",
    "MISC": "miscellaneous",
    "MONEY": "pricing",
}

CONTROLLED_VOCABULARY: Dict[str, Sequence[str]] = {
    "category": [
        "AI", "Machine Learning", "Development", "Productivity", "Analytics", "Chatbot",
        "Code Editor", "IDE", "App Builder", "UI Builder", "No-Code", "Cloud IDE",
        "Desktop App", "Local LLM", "Privacy", "Collaboration", "Deployment", "Full-Stack",
        "Rapid Prototyping", "Offline", "Frontend", "Backend", "Database", "DevOps",
        "Testing", "Monitoring",
    ],
    "interface": ["Web", "Desktop", "Mobile", "CLI", "API", "GUI", "SDK", "IDE Extension"],
    "pricing": ["Free", "Freemium", "Paid", "Premium", "Open Source", "Commercial"],
    "functionality": [
        "Code Generation", "Code Completion", "Debugging", "Refactoring", "Documentation",
        "AI Chat", "Text Generation", "Translation", "Image Generation", "Authentication",
        "Hosting", "Caching", "Logging", "UI Prototyping", "Local Inference", "Document RAG",
    ],
    "deployment": ["Cloud", "Self-Hosted", "On-Premise"],
}

PATTERN_RULES: List[Tuple[str, Pattern]] = [
    (
        "technology",
        re.compile(
            r"\b(react|vue|angular|node\.js|python|javascript|typescript|django|flask)\b",
            re.IGNORECASE,
        ),
    ),
    ("pricing", re.compile(r"\b(free|paid|premium|open source|commercial)\b", re.IGNORECASE)),
    ("interface", re.compile(r"\b(api|cli|gui|sdk|library|framework)\b", re.IGNORECASE)),
]

# First matching rule wins
INTENT_RULES: List[Tuple[Pattern, IntentLabel, float]] = [
    (re.compile(r"\b(compare|comparison|vs|versus)\b", re.IGNORECASE), IntentLabel.COMPARISON, 0.9),
    (re.compile(r"\b(free|open source)\b", re.IGNORECASE), IntentLabel.FILTER_SEARCH, 0.8),
    (
        re.compile(r"\b(find|search|looking for)\b", re.IGNORECASE),
        IntentLabel.DISCOVERY,
        0.7,
    ),
]
DEFAULT_INTENT = IntentClassification(label=IntentLabel.EXPLORATION, confidence=0.6)


def map_ner_label(label: str) -> str:
    """Map B-/I- prefixed or grouped NER labels to entity types."""
    label = (label or "").upper()
    if label[:2] in ("B-", "I-"):
        label = label[2:]
    return NER_LABEL_MAP.get(label, label.lower() or "miscellaneous")


def is_stop_word(text: str) -> bool:
    """True for stop words and fragments too short to be entities."""
    cleaned = text.strip().lower()
    return len(cleaned) < 2 or cleaned in STOP_WORDS


def _term_pattern(term: str) -> Pattern:
    return re.compile(r"(?<!\w)" + re.escape(term) + r"(?!\w)", re.IGNORECASE)


class VocabularyMatcher:
    """
    Entity and intent extraction from controlled vocabulary and keyword rules.

    Used alongside the local NER model and as the last-resort extractor when
    neither the local model nor the remote fallback is available.
    """

    def __init__(
        self,
        vocabulary: Optional[Dict[str, Sequence[str]]] = None,
        confidence: float = RULE_CONFIDENCE,
    ):
        self.confidence = confidence
        self._terms: List[Tuple[str, str, Pattern]] = []

        for entity_type, terms in (vocabulary or CONTROLLED_VOCABULARY).items():
            for term in terms:
                self._terms.append((entity_type, term, _term_pattern(term)))

        # Longest terms first so "Open Source" wins over shorter overlaps
        self._terms.sort(key=lambda t: -len(t[1]))

    def match_entities(self, text: str) -> List[ExtractedEntity]:
        """
        Find vocabulary terms and pattern matches in text.

        Returns entities in order of appearance; overlapping matches keep the longest.
        """
        spans: List[Tuple[int, int, ExtractedEntity]] = []

        def overlaps(start: int, end: int) -> bool:
            return any(start < s_end and end > s_start for s_start, s_end, _ in spans)

        for entity_type, _, pattern in self._terms:
            for match in pattern.finditer(text):
                if overlaps(match.start(), match.end()):
                    continue
                spans.append(
                    (
                        match.start(),
                        match.end(),
                        ExtractedEntity(match.group(0), entity_type, self.confidence),
                    )
                )

        for entity_type, pattern in PATTERN_RULES:
            for match in pattern.finditer(text):
                if overlaps(match.start(), match.end()):
                    continue
                spans.append(
                    (
                        match.start(),
                        match.end(),
                        ExtractedEntity(match.group(0), entity_type, self.confidence),
                    )
                )

        spans.sort(key=lambda span: span[0])
        return [entity for _, _, entity in spans if not is_stop_word(entity.text)]

    def classify_intent(self, text: str) -> IntentClassification:
        """Keyword intent rules; exploration when nothing matches."""
        for pattern, label, confidence in INTENT_RULES:
            if pattern.search(text):
                return IntentClassification(label=label, confidence=confidence)
        return DEFAULT_INTENT
