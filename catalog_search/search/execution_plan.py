"""
Execution Planning
Chooses which pipeline stages run for a query and records why.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..config import SearchConfig, VectorSpace, get_search_config
from ..fusion import MergeStrategy
from ..models import ExtractionResult, IntentLabel, Query

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Pipeline states; degraded sub-states are reported as 'degraded-<stage>'."""

    RECEIVED = "received"
    EXTRACTING = "extracting"
    ENRICHING = "enriching"
    SEARCHING = "searching"
    FUSING = "fusing"
    COMPLETED = "completed"
    ERRORED = "errored"

    def degraded(self) -> str:
        return f"degraded-{self.value}"


class QueryComplexity(Enum):
    """Rough query complexity used to decide on optional stages."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


@dataclass
class SearchOptions:
    """
    Per-request overrides.

    Anything left as None falls back to configuration.
    """

    spaces: Optional[List[VectorSpace]] = None
    limit_per_space: Optional[int] = None
    strategy: Optional[MergeStrategy] = None
    deadline_s: Optional[float] = None
    enable_diversity: Optional[bool] = None
    max_results: Optional[int] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class StageDescriptor:
    """One planned stage."""

    stage: PipelineState
    optional: bool
    reason: str
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "optional": self.optional,
            "reason": self.reason,
            "skipped": self.skipped,
        }


@dataclass
class ExecutionPlan:
    """Ordered stages plus the resolved search parameters."""

    stages: List[StageDescriptor]
    complexity: QueryComplexity
    strategy: MergeStrategy
    spaces: List[VectorSpace]
    limit_per_space: int
    deadline_s: float
    enable_diversity: bool
    max_results: Optional[int] = None
    notes: List[str] = field(default_factory=list)

    def includes(self, stage: PipelineState) -> bool:
        """True when the stage is planned and not skipped."""
        return any(d.stage == stage and not d.skipped for d in self.stages)

    def to_dict(self) -> dict:
        return {
            "stages": [d.to_dict() for d in self.stages],
            "complexity": self.complexity.value,
            "strategy": self.strategy.value,
            "spaces": [space.value for space in self.spaces],
            "limit_per_space": self.limit_per_space,
            "deadline_s": self.deadline_s,
            "enable_diversity": self.enable_diversity,
            "max_results": self.max_results,
            "notes": list(self.notes),
        }


class ExecutionPlanner:
    """
    Builds an execution plan from the query and its extraction result.

    Enrichment is optional: it is skipped when nothing was extracted, or
    when a simple query came with a high-confidence intent.
    """

    COMPLEX_QUERY_WORDS = 8
    COMPLEX_QUERY_ENTITIES = 3

    def __init__(self, config: Optional[SearchConfig] = None):
        self.config = config or get_search_config()

    def deadline_budget(self, options: Optional[SearchOptions] = None) -> float:
        """Seconds the whole request may take; an explicit 0 is an already expired deadline."""
        if options is None or options.deadline_s is None:
            return self.config.pipeline.default_deadline_s
        return max(options.deadline_s, 0.0)

    def classify_complexity(self, query: Query, extraction: ExtractionResult) -> QueryComplexity:
        words = len(query.normalized_text.split())
        entities = len(extraction.entities)

        if (
            extraction.intent.label == IntentLabel.COMPARISON
            or entities >= self.COMPLEX_QUERY_ENTITIES
            or words > self.COMPLEX_QUERY_WORDS
        ):
            return QueryComplexity.COMPLEX
        if words <= self.config.pipeline.simple_query_max_words and entities <= 1:
            return QueryComplexity.SIMPLE
        return QueryComplexity.MODERATE

    def build_plan(
        self, query: Query, extraction: ExtractionResult, options: Optional[SearchOptions] = None
    ) -> ExecutionPlan:
        """
        Build the plan for one query.

        Args:
            query: Accepted query
            extraction: Extraction stage result
            options: Per-request overrides

        Returns:
            ExecutionPlan with a reason for every stage
        """
        options = options or SearchOptions()
        pipeline = self.config.pipeline
        complexity = self.classify_complexity(query, extraction)
        intent = extraction.intent

        stages = [
            StageDescriptor(
                PipelineState.EXTRACTING,
                optional=False,
                reason=f"entities and intent via {extraction.processing_strategy.value} extraction",
            )
        ]

        if not extraction.entities:
            stages.append(
                StageDescriptor(
                    PipelineState.ENRICHING, optional=True, reason="no entities extracted", skipped=True
                )
            )
        elif (
            complexity == QueryComplexity.SIMPLE
            and intent.confidence > pipeline.skip_enrichment_confidence
        ):
            stages.append(
                StageDescriptor(
                    PipelineState.ENRICHING,
                    optional=True,
                    reason=(
                        f"simple query with high-confidence intent "
                        f"({intent.label.value} {intent.confidence:.2f})"
                    ),
                    skipped=True,
                )
            )
        else:
            stages.append(
                StageDescriptor(
                    PipelineState.ENRICHING,
                    optional=True,
                    reason=f"{complexity.value} query with {len(extraction.entities)} entities",
                )
            )

        spaces = list(options.spaces or self.config.multi_vector.spaces.keys())
        limit = options.limit_per_space or self.config.multi_vector.limit_per_space
        stages.append(
            StageDescriptor(
                PipelineState.SEARCHING,
                optional=False,
                reason=f"fan-out over {len(spaces)} spaces, {limit} results each",
            )
        )

        notes = []
        if options.strategy is not None:
            strategy = options.strategy
            notes.append(f"merge strategy forced to {strategy.value}")
        else:
            strategy = MergeStrategy.RECIPROCAL_RANK_FUSION
        stages.append(
            StageDescriptor(PipelineState.FUSING, optional=False, reason=f"{strategy.value} fusion")
        )

        enable_diversity = (
            pipeline.enable_diversity if options.enable_diversity is None else options.enable_diversity
        )

        plan = ExecutionPlan(
            stages=stages,
            complexity=complexity,
            strategy=strategy,
            spaces=spaces,
            limit_per_space=limit,
            deadline_s=self.deadline_budget(options),
            enable_diversity=enable_diversity,
            max_results=(
                self.config.fusion.max_results if options.max_results is None else options.max_results
            ),
            notes=notes,
        )

        logger.debug(
            f"Execution plan: complexity={complexity.value}, "
            f"enrichment={'on' if plan.includes(PipelineState.ENRICHING) else 'skipped'}, "
            f"strategy={strategy.value}"
        )
        return plan
