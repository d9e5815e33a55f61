"""
Search Orchestrator
Runs query -> extraction -> enrichment -> fan-out search -> fusion and builds the response.
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import PipelineConfig, VectorSpace, get_search_config
from ..enrichment import ContextEnrichmentService, EnrichmentReport, MetadataContext
from ..errors import AllSpacesFailed, SearchEngineError
from ..extraction import DEFAULT_INTENT, LocalExtractionService
from ..fusion import ResultFusionEngine, promote_diversity
from ..models import EntityStatistic, ExtractionResult, FusedCandidate, ProcessingStrategy, Query
from ..monitoring import PerformanceMonitor
from ..retrieval import CatalogStore, MultiVectorSearchCoordinator, MultiVectorSearchResult
from .execution_plan import ExecutionPlan, ExecutionPlanner, PipelineState, SearchOptions
from .outcomes import Degraded, Err, Ok, StageOutcome

logger = logging.getLogger(__name__)


@dataclass
class ResponseMetadata:
    """Everything a caller needs to tell "no matches" from "degraded execution"."""

    request_id: str
    execution_path: List[str] = field(default_factory=list)
    timings_by_stage: Dict[str, float] = field(default_factory=dict)
    degraded_stages: List[str] = field(default_factory=list)
    stage_outcomes: Dict[str, str] = field(default_factory=dict)
    entity_statistics: Dict[str, EntityStatistic] = field(default_factory=dict)
    extraction: Optional[ExtractionResult] = None
    context: Optional[MetadataContext] = None
    plan: Optional[ExecutionPlan] = None
    space_reports: Dict[str, dict] = field(default_factory=dict)
    partial: bool = False
    final_state: str = PipelineState.RECEIVED.value
    error: Optional[str] = None
    total_time_ms: float = 0.0

    def add_degraded(self, name: str) -> None:
        if name not in self.degraded_stages:
            self.degraded_stages.append(name)

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "execution_path": list(self.execution_path),
            "timings_by_stage": dict(self.timings_by_stage),
            "degraded_stages": list(self.degraded_stages),
            "stage_outcomes": dict(self.stage_outcomes),
            "entity_statistics": {k: v.to_dict() for k, v in self.entity_statistics.items()},
            "extraction": self.extraction.to_dict() if self.extraction else None,
            "context": self.context.to_dict() if self.context else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "space_reports": dict(self.space_reports),
            "partial": self.partial,
            "final_state": self.final_state,
            "error": self.error,
            "total_time_ms": self.total_time_ms,
        }


@dataclass
class SearchResponse:
    """Ranked candidates plus execution metadata. Always well-formed, possibly empty."""

    query: Query
    candidates: List[FusedCandidate]
    metadata: ResponseMetadata

    @property
    def degraded(self) -> bool:
        return bool(self.metadata.degraded_stages)

    def to_dict(self) -> dict:
        return {
            "query": self.query.raw_text,
            "candidates": [c.to_dict() for c in self.candidates],
            "metadata": self.metadata.to_dict(),
        }


class SearchOrchestrator:
    """
    Execution orchestrator (state machine).

    received -> extracting -> enriching (optional) -> searching -> fusing -> completed

    Each stage yields a StageOutcome. Degraded outcomes still advance the
    pipeline and are listed in metadata.degraded_stages. The run ends in
    "errored" only when searching exhausts the all-spaces search and the
    semantic-only retry. run_search never raises.
    """

    def __init__(
        self,
        extraction: LocalExtractionService,
        enrichment: ContextEnrichmentService,
        coordinator: MultiVectorSearchCoordinator,
        fusion: ResultFusionEngine,
        catalog_store: Optional[CatalogStore] = None,
        monitor: Optional[PerformanceMonitor] = None,
        planner: Optional[ExecutionPlanner] = None,
        config: Optional[PipelineConfig] = None,
    ):
        """
        Initialize search orchestrator.

        Args:
            extraction: Local extraction service
            enrichment: Context enrichment service
            coordinator: Multi-vector search coordinator
            fusion: Result fusion engine
            catalog_store: Item store used to hydrate candidates (optional)
            monitor: Performance monitor (optional)
            planner: Execution planner
            config: Pipeline configuration
        """
        self.extraction = extraction
        self.enrichment = enrichment
        self.coordinator = coordinator
        self.fusion = fusion
        self.catalog_store = catalog_store
        self.monitor = monitor or PerformanceMonitor()
        self.planner = planner or ExecutionPlanner()
        self.config = config or get_search_config().pipeline

        logger.info("Search orchestrator initialized")

    async def run_search(
        self, query: str, options: Optional[SearchOptions] = None
    ) -> SearchResponse:
        """
        Run the full pipeline for one query.

        Args:
            query: Free-text user query
            options: Per-request overrides

        Returns:
            SearchResponse; errors are reported in metadata, never raised
        """
        start_time = time.time()
        options = options or SearchOptions()
        accepted = Query.create(query, options.request_id)
        metadata = ResponseMetadata(request_id=accepted.request_id)
        self._enter(metadata, PipelineState.RECEIVED)

        logger.info(f"Search request {accepted.request_id}: query='{accepted.raw_text}'")

        if not accepted.normalized_text:
            logger.info(f"Search request {accepted.request_id} has no searchable text")
            metadata.extraction = ExtractionResult(
                entities=(), intent=DEFAULT_INTENT, processing_strategy=ProcessingStrategy.LOCAL
            )
            self._enter(metadata, PipelineState.COMPLETED)
            return self._respond(accepted, [], metadata, start_time)

        try:
            candidates = await self._run(accepted, options, metadata)
        except Exception as e:
            logger.error(f"Search request {accepted.request_id} failed: {e}", exc_info=True)
            candidates = []
            self._fail(metadata, f"Unexpected pipeline error: {e}")

        return self._respond(accepted, candidates, metadata, start_time)

    def _respond(
        self,
        query: Query,
        candidates: List[FusedCandidate],
        metadata: ResponseMetadata,
        start_time: float,
    ) -> SearchResponse:
        metadata.total_time_ms = (time.time() - start_time) * 1000
        self.monitor.record_request(
            metadata.total_time_ms, metadata.final_state, request_id=query.request_id
        )

        logger.info(
            f"Search request {query.request_id} {metadata.final_state}: "
            f"{len(candidates)} candidates in {metadata.total_time_ms:.2f}ms "
            f"(degraded: {metadata.degraded_stages or 'none'})"
        )

        return SearchResponse(query=query, candidates=candidates, metadata=metadata)

    async def _run(
        self, query: Query, options: SearchOptions, metadata: ResponseMetadata
    ) -> List[FusedCandidate]:
        # One deadline covers every stage, extraction included
        deadline = time.monotonic() + self.planner.deadline_budget(options)

        # Extracting
        outcome = await self._timed(
            metadata, PipelineState.EXTRACTING, self._extract(query, deadline)
        )
        extraction = self._value(outcome)
        if extraction is None:
            extraction = ExtractionResult(
                entities=(), intent=DEFAULT_INTENT, processing_strategy=ProcessingStrategy.LOCAL
            )
            self._degrade(metadata, PipelineState.EXTRACTING, outcome.reason)
        metadata.extraction = extraction

        plan = self.planner.build_plan(query, extraction, options)
        metadata.plan = plan

        # Enriching (optional)
        if plan.includes(PipelineState.ENRICHING):
            outcome = await self._timed(
                metadata, PipelineState.ENRICHING, self._enrich(extraction, deadline)
            )
            report = self._value(outcome)
            if report is not None:
                metadata.entity_statistics = report.statistics
                metadata.context = self.enrichment.build_context(query.raw_text, report.statistics)
        else:
            logger.debug(f"Skipping enrichment for request {query.request_id}")

        # Searching
        requested = [VectorSpace(space) for space in plan.spaces]
        outcome = await self._timed(
            metadata,
            PipelineState.SEARCHING,
            self._search(query, extraction, plan, requested, deadline, metadata),
        )
        if isinstance(outcome, Err):
            self._fail(metadata, outcome.reason)
            return []

        search: MultiVectorSearchResult = outcome.value
        metadata.partial = search.partial
        metadata.space_reports = {space: r.to_dict() for space, r in search.reports.items()}
        for space in search.unavailable_spaces:
            metadata.add_degraded(space)

        # Fusing
        outcome = await self._timed(
            metadata, PipelineState.FUSING, self._fuse(search, extraction, plan)
        )
        if isinstance(outcome, Err):
            self._fail(metadata, outcome.reason)
            return []

        self._enter(metadata, PipelineState.COMPLETED)
        return outcome.value

    # ========== Stages ==========

    async def _extract(self, query: Query, deadline: float) -> StageOutcome:
        remaining = max(deadline - time.monotonic(), 0.0)
        try:
            result = await asyncio.wait_for(
                self.extraction.extract(query.raw_text), timeout=remaining
            )
        except asyncio.TimeoutError:
            reason = f"Extraction did not finish within the request deadline ({remaining:.2f}s)"
            logger.warning(f"{reason}; using vocabulary rules")
            return Degraded(self.extraction.extract_with_rules(query.raw_text, reason), reason)
        except SearchEngineError as e:
            logger.warning(f"Extraction failed, continuing without entities: {e.message}")
            return Err(f"Extraction failed: {e.message}", e)
        except Exception as e:
            logger.warning(f"Extraction failed, continuing without entities: {e}", exc_info=True)
            return Err(f"Extraction failed: {e}", e)

        if result.degraded_reason:
            return Degraded(result, result.degraded_reason)
        return Ok(result)

    async def _enrich(self, extraction: ExtractionResult, deadline: float) -> StageOutcome:
        try:
            report: EnrichmentReport = await self.enrichment.enrich_with_report(
                extraction.entities, deadline=deadline
            )
        except SearchEngineError as e:
            logger.warning(f"Enrichment failed, continuing without statistics: {e.message}")
            return Degraded(EnrichmentReport(statistics={}), e.message)

        if report.degraded:
            return Degraded(report, f"Minimal statistics for {report.degraded_entities}")
        return Ok(report)

    async def _search(
        self,
        query: Query,
        extraction: ExtractionResult,
        plan: ExecutionPlan,
        requested: List[VectorSpace],
        deadline: float,
        metadata: ResponseMetadata,
    ) -> StageOutcome:
        entity_texts = [e.text for e in extraction.entities]

        try:
            search = await self.coordinator.search(
                query.raw_text,
                spaces=requested,
                limit_per_space=plan.limit_per_space,
                entity_texts=entity_texts,
                deadline=deadline,
            )
        except AllSpacesFailed as e:
            logger.warning(f"{e.message}; retrying with the semantic space only")
            for space in requested:
                metadata.add_degraded(space.value)
        else:
            if search.unavailable_spaces or search.partial:
                return Degraded(search, f"Unavailable spaces: {search.unavailable_spaces}")
            return Ok(search)

        try:
            search = await self.coordinator.search(
                query.raw_text,
                spaces=[VectorSpace.SEMANTIC],
                limit_per_space=plan.limit_per_space,
                entity_texts=entity_texts,
                deadline=deadline,
            )
        except AllSpacesFailed as e:
            return Err(f"All vector spaces and the semantic-only fallback failed: {e.message}", e)

        return Degraded(search, "Semantic-only fallback after all spaces failed")

    async def _fuse(
        self, search: MultiVectorSearchResult, extraction: ExtractionResult, plan: ExecutionPlan
    ) -> StageOutcome:
        candidates = self.fusion.fuse(
            search.results_by_space, plan.strategy, intent=extraction.intent.label
        )
        if plan.max_results is not None:
            candidates = candidates[: plan.max_results]

        reason = None
        if self.config.hydrate_candidates and self.catalog_store is not None and candidates:
            try:
                candidates = await self._hydrate(candidates)
            except Exception as e:
                reason = f"Candidate hydration failed: {e}"
                logger.warning(reason)

        if plan.enable_diversity:
            candidates = promote_diversity(candidates, self.fusion.config.diversity_top_k)

        if reason:
            return Degraded(candidates, reason)
        return Ok(candidates)

    async def _hydrate(self, candidates: List[FusedCandidate]) -> List[FusedCandidate]:
        """Attach catalog records; the hydrated category drives diversity."""
        items = await self.catalog_store.get_items_by_ids([c.item_id for c in candidates])
        by_id = {item.item_id: item for item in items}

        hydrated = []
        for candidate in candidates:
            item = by_id.get(candidate.item_id)
            if item is None:
                hydrated.append(candidate)
                continue
            hydrated.append(
                dataclasses.replace(
                    candidate, item=item.to_dict(), category=item.category or candidate.category
                )
            )

        missing = sum(1 for c in candidates if c.item_id not in by_id)
        if missing:
            logger.debug(f"{missing} fused candidates not found in catalog store")
        return hydrated

    # ========== State bookkeeping ==========

    async def _timed(
        self, metadata: ResponseMetadata, state: PipelineState, stage
    ) -> StageOutcome:
        self._enter(metadata, state)
        start_time = time.time()
        outcome = await stage
        duration_ms = (time.time() - start_time) * 1000

        metadata.timings_by_stage[state.value] = duration_ms
        metadata.stage_outcomes[state.value] = outcome.kind
        self.monitor.record_stage(
            state.value,
            duration_ms,
            request_id=metadata.request_id,
            outcome=outcome.kind,
            detail=getattr(outcome, "reason", None),
        )

        if isinstance(outcome, Degraded):
            self._degrade(metadata, state, outcome.reason)
        return outcome

    @staticmethod
    def _value(outcome: StageOutcome) -> Any:
        return None if isinstance(outcome, Err) else outcome.value

    @staticmethod
    def _enter(metadata: ResponseMetadata, state: PipelineState) -> None:
        metadata.execution_path.append(state.value)
        metadata.final_state = state.value

    @staticmethod
    def _degrade(metadata: ResponseMetadata, state: PipelineState, reason: str) -> None:
        logger.warning(f"Stage '{state.value}' degraded: {reason}")
        metadata.execution_path.append(state.degraded())
        metadata.add_degraded(state.value)

    @staticmethod
    def _fail(metadata: ResponseMetadata, reason: str) -> None:
        logger.error(f"Search request {metadata.request_id} errored: {reason}")
        metadata.execution_path.append(PipelineState.ERRORED.value)
        metadata.final_state = PipelineState.ERRORED.value
        metadata.error = reason

    def health_check(self) -> Dict[str, Any]:
        """
        Aggregate component health.

        Returns:
            Overall status plus per-component details and performance summary
        """
        components = {
            "extraction": self.extraction.health_check(),
            "search": self.coordinator.health_check(),
        }
        statuses = {c["status"] for c in components.values()}
        if "unhealthy" in statuses:
            status = "unhealthy"
        elif statuses - {"healthy"}:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "components": components,
            "performance": self.monitor.get_performance_summary(),
        }
