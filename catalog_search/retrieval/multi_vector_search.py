"""
Multi-Vector Search Coordinator
Parallel fan-out search across named vector spaces with per-space timeouts and failure isolation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from ..caching import SearchCache
from ..config import EmbeddingStrategy, MultiVectorConfig, SpaceConfig, VectorSpace, get_search_config
from ..errors import AllSpacesFailed, SpaceSearchFailed, SpaceSearchTimeout
from ..models import VectorSearchResult, normalize_text
from .backends import TextEmbedder, VectorBackend

logger = logging.getLogger(__name__)


class SpaceStatus(Enum):
    """Outcome of one space search."""

    OK = "ok"
    CACHED = "cached"
    TIMEOUT = "timeout"
    FAILED = "failed"
    CANCELLED = "cancelled"  # Caller deadline expired


@dataclass
class SpaceSearchReport:
    """Diagnostics for one space search."""

    space: str
    status: SpaceStatus
    result_count: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status in (SpaceStatus.OK, SpaceStatus.CACHED)

    def to_dict(self) -> dict:
        return {
            "space": self.space,
            "status": self.status.value,
            "result_count": self.result_count,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class MultiVectorSearchResult:
    """
    Per-space ranked lists plus availability metadata.

    Unavailable spaces map to an empty list.
    """

    results_by_space: Dict[str, List[VectorSearchResult]]
    reports: Dict[str, SpaceSearchReport]
    partial: bool = False
    total_time_ms: float = 0.0

    @property
    def unavailable_spaces(self) -> List[str]:
        return [space for space, report in self.reports.items() if not report.available]

    @property
    def total_results(self) -> int:
        return sum(len(results) for results in self.results_by_space.values())

    def to_dict(self) -> dict:
        return {
            "results_by_space": {
                space: [r.to_dict() for r in results]
                for space, results in self.results_by_space.items()
            },
            "reports": {space: report.to_dict() for space, report in self.reports.items()},
            "partial": self.partial,
            "unavailable_spaces": self.unavailable_spaces,
            "total_time_ms": self.total_time_ms,
        }


@dataclass
class SpaceMetrics:
    """Rolling per-space performance metrics."""

    searches: int = 0
    last_result_count: int = 0
    last_latency_ms: float = 0.0
    avg_latency_ms: float = 0.0
    avg_similarity: float = 0.0
    errors: int = 0
    timeouts: int = 0
    cancellations: int = 0

    def to_dict(self) -> dict:
        return {
            "searches": self.searches,
            "last_result_count": self.last_result_count,
            "last_latency_ms": self.last_latency_ms,
            "avg_latency_ms": self.avg_latency_ms,
            "avg_similarity": self.avg_similarity,
            "errors": self.errors,
            "timeouts": self.timeouts,
            "cancellations": self.cancellations,
        }


class MultiVectorSearchCoordinator:
    """
    Fans a query out across N named vector spaces concurrently.

    - Embeds once per distinct space-specific text (cache-checked)
    - Bounds every space search by its own timeout
    - A failing space yields an empty list and never aborts its siblings
    - A caller deadline cancels in-flight spaces individually (result flagged partial)
    - Raises AllSpacesFailed when every space failed, so callers can degrade
    """

    def __init__(
        self,
        backend: VectorBackend,
        embedder: TextEmbedder,
        cache: Optional[SearchCache] = None,
        config: Optional[MultiVectorConfig] = None,
    ):
        """
        Initialize coordinator.

        Args:
            backend: Vector similarity backend
            embedder: Text embedder (blocking, run in worker threads)
            cache: Search cache for embeddings and result sets (optional)
            config: Multi-vector configuration
        """
        self.backend = backend
        self.embedder = embedder
        self.cache = cache
        self.config = config or get_search_config().multi_vector
        self.metrics: Dict[str, SpaceMetrics] = {}

        logger.info("Multi-vector search coordinator initialized")

    async def search(
        self,
        query: str,
        spaces: Optional[Sequence[Union[VectorSpace, str]]] = None,
        limit_per_space: Optional[int] = None,
        entity_texts: Sequence[str] = (),
        min_score: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> MultiVectorSearchResult:
        """
        Search every requested space for the query.

        Args:
            query: Query text
            spaces: Spaces to search (default: all configured spaces)
            limit_per_space: Max results per space
            entity_texts: Entity texts for ENTITY_TERMS spaces
            min_score: Minimum similarity for hits
            deadline: Absolute time.monotonic() deadline for the whole fan-out

        Returns:
            MultiVectorSearchResult keyed by space name

        Raises:
            AllSpacesFailed: If every space errored or timed out
        """
        start_time = time.time()
        space_configs = self._resolve_spaces(spaces)
        limit = limit_per_space or self.config.limit_per_space
        min_score = self.config.min_score if min_score is None else min_score

        if not space_configs:
            return MultiVectorSearchResult(results_by_space={}, reports={})

        texts = {
            config.space.value: self._text_for_space(config, query, entity_texts)
            for config in space_configs
        }

        # One embedding task per distinct text, shared by the spaces that need it
        embed_tasks: Dict[str, asyncio.Task] = {}

        def embedding_for(text: str) -> asyncio.Task:
            if text not in embed_tasks:
                embed_tasks[text] = asyncio.ensure_future(
                    asyncio.to_thread(self.embedder.encode, text)
                )
            return embed_tasks[text]

        logger.debug(
            f"Multi-vector search: {len(space_configs)} spaces, limit={limit}, "
            f"distinct texts={len(set(texts.values()))}"
        )

        try:
            if self.config.parallel:
                outcomes, partial = await self._run_parallel(
                    space_configs, texts, embedding_for, limit, min_score, deadline
                )
            else:
                outcomes, partial = await self._run_sequential(
                    space_configs, texts, embedding_for, limit, min_score, deadline
                )
        finally:
            for task in embed_tasks.values():
                if not task.done():
                    task.cancel()

        results_by_space = {space: results for space, (results, _) in outcomes.items()}
        reports = {space: report for space, (_, report) in outcomes.items()}

        for report in reports.values():
            self._update_metrics(report, results_by_space[report.space])

        total_time_ms = (time.time() - start_time) * 1000
        result = MultiVectorSearchResult(
            results_by_space=results_by_space,
            reports=reports,
            partial=partial,
            total_time_ms=total_time_ms,
        )

        if not partial and not any(r.available for r in reports.values()):
            failures = {space: report.error for space, report in reports.items()}
            logger.error(f"All vector spaces failed: {failures}")
            raise AllSpacesFailed(failures)

        if result.unavailable_spaces:
            logger.warning(
                f"Multi-vector search degraded: unavailable spaces {result.unavailable_spaces}"
            )

        logger.info(
            f"Multi-vector search completed: {result.total_results} results from "
            f"{len(reports) - len(result.unavailable_spaces)}/{len(reports)} spaces "
            f"in {total_time_ms:.2f}ms{' (partial)' if partial else ''}"
        )

        return result

    async def _run_parallel(self, space_configs, texts, embedding_for, limit, min_score, deadline):
        tasks = {
            config.space.value: asyncio.create_task(
                self._run_space(config, texts[config.space.value], embedding_for, limit, min_score)
            )
            for config in space_configs
        }

        timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        done, pending = await asyncio.wait(tasks.values(), timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes = {}
        for space, task in tasks.items():
            if task in done:
                outcomes[space] = task.result()
            else:
                outcomes[space] = ([], self._cancelled_report(space))
        return outcomes, bool(pending)

    async def _run_sequential(self, space_configs, texts, embedding_for, limit, min_score, deadline):
        outcomes = {}
        partial = False

        for config in space_configs:
            space = config.space.value
            if deadline is not None and time.monotonic() >= deadline:
                outcomes[space] = ([], self._cancelled_report(space))
                partial = True
                continue

            task = asyncio.create_task(
                self._run_space(config, texts[space], embedding_for, limit, min_score)
            )
            timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            done, _ = await asyncio.wait([task], timeout=timeout)
            if task in done:
                outcomes[space] = task.result()
            else:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                outcomes[space] = ([], self._cancelled_report(space))
                partial = True

        return outcomes, partial

    async def _run_space(self, config: SpaceConfig, text, embedding_for, limit, min_score):
        """Run one space search and convert failures into an empty, reported result."""
        space = config.space.value
        start_time = time.time()

        try:
            results, cached = await asyncio.wait_for(
                self._search_space(config, text, embedding_for, limit, min_score),
                timeout=config.timeout_s,
            )
        except asyncio.TimeoutError:
            error = SpaceSearchTimeout(space, config.timeout_s)
            logger.warning(error.message)
            return [], SpaceSearchReport(
                space=space,
                status=SpaceStatus.TIMEOUT,
                duration_ms=(time.time() - start_time) * 1000,
                error=error.message,
            )
        except Exception as e:
            error = SpaceSearchFailed(space, f"Search in space '{space}' failed: {e}")
            logger.warning(error.message)
            return [], SpaceSearchReport(
                space=space,
                status=SpaceStatus.FAILED,
                duration_ms=(time.time() - start_time) * 1000,
                error=error.message,
            )

        return results, SpaceSearchReport(
            space=space,
            status=SpaceStatus.CACHED if cached else SpaceStatus.OK,
            result_count=len(results),
            duration_ms=(time.time() - start_time) * 1000,
        )

    async def _search_space(self, config: SpaceConfig, text, embedding_for, limit, min_score):
        space = config.space.value
        query_signature = f"{space}|{normalize_text(text)}"
        filter_signature = f"limit={limit}|min_score={min_score}"

        if self.cache is not None:
            cached = await asyncio.to_thread(
                self.cache.get_result_set, query_signature, filter_signature
            )
            if cached is not None:
                return cached, True

        embedding = await self._get_embedding(space, text, embedding_for)
        hits = await self.backend.search(space, embedding, limit, min_score)

        # Rank order as returned by the space is authoritative
        results = [
            VectorSearchResult(
                item_id=str(hit.item_id),
                score=float(hit.score),
                source_space=space,
                rank=rank,
                metadata=dict(hit.payload),
            )
            for rank, hit in enumerate(hits[:limit], start=1)
        ]

        if self.cache is not None:
            await asyncio.to_thread(
                self.cache.set_result_set, query_signature, filter_signature, results
            )

        return results, False

    async def _get_embedding(self, space: str, text: str, embedding_for) -> np.ndarray:
        if self.cache is not None:
            cached = await asyncio.to_thread(self.cache.get_embedding, text, space)
            if cached is not None:
                return cached

        # Shielded: a cancelled space must not cancel an embedding its siblings share
        embedding = await asyncio.shield(embedding_for(text))

        if self.cache is not None:
            await asyncio.to_thread(self.cache.set_embedding, text, space, embedding)
        return embedding

    def _resolve_spaces(self, spaces) -> List[SpaceConfig]:
        if spaces is None:
            spaces = list(self.config.spaces.keys())

        resolved = []
        seen = set()
        for space in spaces:
            space = VectorSpace(space)
            if space in seen:
                continue
            seen.add(space)
            resolved.append(self.config.get_space(space))
        return resolved

    def _text_for_space(self, config: SpaceConfig, query: str, entity_texts: Sequence[str]) -> str:
        if config.embedding_strategy == EmbeddingStrategy.QUERY_TEXT:
            return query
        elif config.embedding_strategy == EmbeddingStrategy.ENTITY_TERMS:
            terms = " ".join(t for t in entity_texts if t and t.strip())
            return terms or query
        else:
            raise ValueError(f"Unsupported embedding strategy: {config.embedding_strategy}")

    def _cancelled_report(self, space: str) -> SpaceSearchReport:
        logger.warning(f"Search in space '{space}' cancelled at caller deadline")
        return SpaceSearchReport(
            space=space, status=SpaceStatus.CANCELLED, error="cancelled at deadline"
        )

    def _update_metrics(self, report: SpaceSearchReport, results: List[VectorSearchResult]):
        metrics = self.metrics.setdefault(report.space, SpaceMetrics())
        alpha = self.config.metrics_alpha

        metrics.searches += 1
        metrics.last_result_count = report.result_count
        metrics.last_latency_ms = report.duration_ms

        if report.status == SpaceStatus.TIMEOUT:
            metrics.timeouts += 1
        elif report.status == SpaceStatus.FAILED:
            metrics.errors += 1
        elif report.status == SpaceStatus.CANCELLED:
            metrics.cancellations += 1

        if metrics.searches == 1:
            metrics.avg_latency_ms = report.duration_ms
        else:
            metrics.avg_latency_ms = alpha * report.duration_ms + (1 - alpha) * metrics.avg_latency_ms

        if results:
            similarity = sum(r.score for r in results) / len(results)
            if metrics.avg_similarity == 0.0:
                metrics.avg_similarity = similarity
            else:
                metrics.avg_similarity = alpha * similarity + (1 - alpha) * metrics.avg_similarity

    def get_space_metrics(self) -> Dict[str, dict]:
        """Per-space metrics."""
        return {space: metrics.to_dict() for space, metrics in self.metrics.items()}

    def health_check(self) -> Dict[str, object]:
        """
        Health derived from per-space metrics.

        A space is unhealthy when more than half of its searches failed or timed out.
        """
        spaces = {}
        for space_config in self.config.spaces.values():
            space = space_config.space.value
            metrics = self.metrics.get(space)
            if metrics is None or metrics.searches == 0:
                spaces[space] = "unknown"
                continue
            failure_rate = (metrics.errors + metrics.timeouts) / metrics.searches
            spaces[space] = "unhealthy" if failure_rate > 0.5 else "healthy"

        healthy = all(status != "unhealthy" for status in spaces.values())
        return {"status": "healthy" if healthy else "degraded", "spaces": spaces}
