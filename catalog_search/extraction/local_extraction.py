"""
Local Extraction Service
Entity and intent extraction with local models, escalating to remote reasoning on low confidence.
"""

import asyncio
import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..caching import SearchCache
from ..config import ExtractionConfig, get_search_config
from ..embedding import NER_MODEL, ZERO_SHOT_MODEL, ModelRegistry
from ..errors import ExtractionUnavailable, RemoteReasoningError
from ..models import (
    ExtractedEntity,
    ExtractionResult,
    IntentClassification,
    IntentLabel,
    ProcessingStrategy,
    normalize_text,
)
from .remote_reasoning import RemoteReasoningClient
from .rules import DEFAULT_INTENT, VocabularyMatcher, is_stop_word, map_ner_label

logger = logging.getLogger(__name__)

# Candidate labels offered to the zero-shot classifier
INTENT_DESCRIPTIONS: Dict[str, IntentLabel] = {
    "filter tools by specific requirements": IntentLabel.FILTER_SEARCH,
    "compare tools against each other": IntentLabel.COMPARISON,
    "find a specific kind of tool": IntentLabel.DISCOVERY,
    "explore what tools exist": IntentLabel.EXPLORATION,
}


def merge_entities(
    primary: Sequence[ExtractedEntity], secondary: Sequence[ExtractedEntity]
) -> List[ExtractedEntity]:
    """
    Union of two entity lists keyed by lowercased text.

    Order of first appearance is kept; a duplicate keeps the higher confidence.
    """
    merged: Dict[str, ExtractedEntity] = {}
    for entity in list(primary) + list(secondary):
        key = entity.text.strip().lower()
        existing = merged.get(key)
        if existing is None:
            merged[key] = entity
        elif entity.confidence > existing.confidence:
            merged[key] = ExtractedEntity(existing.text, existing.entity_type, entity.confidence)
    return list(merged.values())


class LocalExtractionService:
    """
    Query understanding: entities plus one intent label.

    Flow:
    1. Local NER and zero-shot intent models (in a worker thread)
    2. If max entity confidence or intent confidence is below the threshold,
       escalate to the remote reasoning client
    3. If the local models are unavailable, use the remote client directly
    4. If both fail, fall back to controlled-vocabulary rules (degraded)

    Every path returns the same ExtractionResult shape, tagged with the
    processing strategy that produced it.
    """

    def __init__(
        self,
        model_registry: ModelRegistry,
        remote_client: Optional[RemoteReasoningClient] = None,
        cache: Optional[SearchCache] = None,
        config: Optional[ExtractionConfig] = None,
        matcher: Optional[VocabularyMatcher] = None,
    ):
        """
        Initialize local extraction service.

        Args:
            model_registry: Registry holding the NER and zero-shot models
            remote_client: Remote reasoning fallback (optional)
            cache: Search cache for repeated identical text (optional)
            config: Extraction configuration
            matcher: Controlled-vocabulary matcher
        """
        self.model_registry = model_registry
        self.remote_client = remote_client
        self.cache = cache
        self.config = config or get_search_config().extraction
        self.matcher = matcher or VocabularyMatcher()

        self._strategy_counts: Counter = Counter()
        self._degraded_count = 0

        logger.info(
            f"Local extraction service initialized "
            f"(threshold={self.config.confidence_threshold}, "
            f"remote_fallback={'on' if remote_client else 'off'})"
        )

    async def extract(self, text: str) -> ExtractionResult:
        """
        Extract entities and intent from query text.

        Args:
            text: Raw query text

        Returns:
            ExtractionResult tagged local, remote or hybrid
        """
        start_time = time.time()

        if not normalize_text(text):
            return ExtractionResult(
                entities=(), intent=DEFAULT_INTENT, processing_strategy=ProcessingStrategy.LOCAL
            )

        if self.cache is not None:
            cached = await asyncio.to_thread(self.cache.get_extraction, text)
            if cached is not None:
                logger.debug(f"Extraction cache hit for '{text}'")
                return cached

        local: Optional[Tuple[List[ExtractedEntity], IntentClassification]] = None
        local_error: Optional[str] = None
        try:
            local = await asyncio.to_thread(self._extract_local, text)
        except ExtractionUnavailable as e:
            local_error = e.message
            logger.warning(f"Local extraction unavailable, escalating to fallback: {e.message}")
        except Exception as e:
            local_error = f"Local inference failed: {e}"
            logger.warning(f"Local inference failed for '{text}', escalating to fallback: {e}")

        if local is not None:
            raw_entities, intent = local
            entities = self._filter(raw_entities)
            if not self._is_low_confidence(raw_entities, intent):
                result = self._build(entities, intent, ProcessingStrategy.LOCAL, start_time)
                return await self._finish(text, result)

            logger.info(
                f"Low local confidence for '{text}' (intent={intent.confidence:.2f}), "
                f"escalating to remote reasoning"
            )
            remote, remote_error = await self._classify_remote(text)
            if remote is None:
                result = self._build(
                    entities,
                    intent,
                    ProcessingStrategy.LOCAL,
                    start_time,
                    degraded_reason=f"Remote fallback unavailable: {remote_error}",
                )
                return await self._finish(text, result)

            remote_entities, remote_intent = remote
            remote_entities = self._filter(remote_entities)
            if entities:
                result = self._build(
                    merge_entities(entities, remote_entities),
                    remote_intent,
                    ProcessingStrategy.HYBRID,
                    start_time,
                )
            else:
                result = self._build(
                    remote_entities, remote_intent, ProcessingStrategy.REMOTE, start_time
                )
            return await self._finish(text, result)

        remote, remote_error = await self._classify_remote(text)
        if remote is not None:
            remote_entities, remote_intent = remote
            result = self._build(
                self._filter(remote_entities), remote_intent, ProcessingStrategy.REMOTE, start_time
            )
            return await self._finish(text, result)

        logger.warning(f"Local and remote extraction unavailable, using vocabulary rules for '{text}'")
        result = self.extract_with_rules(
            text,
            f"Local model unavailable ({local_error}); remote fallback failed ({remote_error})",
            start_time,
        )
        return await self._finish(text, result)

    def extract_with_rules(
        self, text: str, reason: str, start_time: Optional[float] = None
    ) -> ExtractionResult:
        """
        Vocabulary-rule extraction, tagged degraded with the given reason.

        Used when neither model path can answer, including when the caller's
        deadline expires before they do.
        """
        return self._build(
            self.matcher.match_entities(text),
            self.matcher.classify_intent(text),
            ProcessingStrategy.LOCAL,
            time.time() if start_time is None else start_time,
            degraded_reason=reason,
        )

    async def extract_batch(self, texts: Sequence[str]) -> List[ExtractionResult]:
        """
        Extract several texts, max_batch_size at a time.

        Args:
            texts: Query texts

        Returns:
            Results in input order
        """
        results: List[ExtractionResult] = []
        batch_size = max(1, self.config.max_batch_size)

        for i in range(0, len(texts), batch_size):
            chunk = texts[i : i + batch_size]
            results.extend(await asyncio.gather(*(self.extract(text) for text in chunk)))

        logger.info(f"Extracted batch of {len(texts)} texts")
        return results

    def _extract_local(self, text: str) -> Tuple[List[ExtractedEntity], IntentClassification]:
        """
        Run both local models. Blocking; called from a worker thread.

        Raises:
            ExtractionUnavailable: If either model cannot be loaded
        """
        ner = self.model_registry.get_model(NER_MODEL)
        classifier = self.model_registry.get_model(ZERO_SHOT_MODEL)

        entities = [
            entity
            for entity in (self._convert_ner(raw) for raw in ner(text) or [])
            if entity is not None
        ]
        if self.config.use_vocabulary_rules:
            entities = merge_entities(entities, self.matcher.match_entities(text))

        output = classifier(
            text,
            candidate_labels=list(INTENT_DESCRIPTIONS),
            hypothesis_template=self.config.hypothesis_template,
        )
        labels = output.get("labels") or []
        scores = output.get("scores") or []
        if labels and scores and labels[0] in INTENT_DESCRIPTIONS:
            intent = IntentClassification(
                label=INTENT_DESCRIPTIONS[labels[0]], confidence=float(scores[0])
            )
        else:
            logger.warning(f"Zero-shot classifier returned no usable label for '{text}'")
            intent = IntentClassification(label=IntentLabel.EXPLORATION, confidence=0.0)

        return entities, intent

    @staticmethod
    def _convert_ner(raw: Dict[str, Any]) -> Optional[ExtractedEntity]:
        word = str(raw.get("word", "")).replace(" ##", "").replace("##", "").strip()
        if is_stop_word(word):
            return None
        label = raw.get("entity_group") or raw.get("entity") or ""
        return ExtractedEntity(
            text=word, entity_type=map_ner_label(label), confidence=float(raw.get("score", 0.0))
        )

    def _is_low_confidence(
        self, raw_entities: Sequence[ExtractedEntity], intent: IntentClassification
    ) -> bool:
        # No entities: only the intent counts
        threshold = self.config.confidence_threshold
        if intent.confidence < threshold:
            return True
        if raw_entities and max(e.confidence for e in raw_entities) < threshold:
            return True
        return False

    def _filter(self, entities: Sequence[ExtractedEntity]) -> List[ExtractedEntity]:
        """Drop entities below the threshold and stop words."""
        kept = [
            e
            for e in entities
            if e.confidence >= self.config.confidence_threshold and not is_stop_word(e.text)
        ]
        return kept[: self.config.max_entities]

    async def _classify_remote(
        self, text: str
    ) -> Tuple[Optional[Tuple[List[ExtractedEntity], IntentClassification]], Optional[str]]:
        if self.remote_client is None:
            return None, "no remote client configured"
        try:
            return await self.remote_client.classify(text), None
        except RemoteReasoningError as e:
            logger.warning(f"Remote reasoning failed for '{text}': {e.message}")
            return None, e.message

    def _build(
        self,
        entities: Sequence[ExtractedEntity],
        intent: IntentClassification,
        strategy: ProcessingStrategy,
        start_time: float,
        degraded_reason: Optional[str] = None,
    ) -> ExtractionResult:
        return ExtractionResult(
            entities=tuple(entities[: self.config.max_entities]),
            intent=intent,
            processing_strategy=strategy,
            degraded_reason=degraded_reason,
            duration_ms=(time.time() - start_time) * 1000,
        )

    async def _finish(self, text: str, result: ExtractionResult) -> ExtractionResult:
        self._strategy_counts[result.processing_strategy.value] += 1
        if result.degraded_reason:
            self._degraded_count += 1
        elif self.cache is not None:
            await asyncio.to_thread(self.cache.set_extraction, text, result)

        logger.debug(
            f"Extracted {len(result.entities)} entities, intent={result.intent.label.value} "
            f"via {result.processing_strategy.value} in {result.duration_ms:.2f}ms"
        )
        return result

    def health_check(self) -> Dict[str, Any]:
        """
        Report model and fallback availability.

        Returns:
            Health status dictionary
        """
        models = self.model_registry.model_status()
        local_available = self.model_registry.is_available(
            NER_MODEL
        ) and self.model_registry.is_available(ZERO_SHOT_MODEL)

        if local_available:
            status = "healthy"
        elif self.remote_client is not None:
            status = "degraded"
        else:
            status = "unhealthy"

        return {
            "status": status,
            "models": models,
            "local_available": local_available,
            "remote_fallback": self.remote_client is not None,
            "confidence_threshold": self.config.confidence_threshold,
            "requests_by_strategy": dict(self._strategy_counts),
            "degraded_requests": self._degraded_count,
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        """Extraction cache statistics."""
        if self.cache is None:
            return {"enabled": False}
        return {"enabled": True, **self.cache.get_stats()}
