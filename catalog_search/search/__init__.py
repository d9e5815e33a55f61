"""
Search Module
Execution planning and the search pipeline entry point.
"""

from .execution_plan import (
    ExecutionPlan,
    ExecutionPlanner,
    PipelineState,
    QueryComplexity,
    SearchOptions,
    StageDescriptor,
)
from .orchestrator import ResponseMetadata, SearchOrchestrator, SearchResponse
from .outcomes import Degraded, Err, Ok, StageOutcome

__all__ = [
    "ExecutionPlan",
    "ExecutionPlanner",
    "PipelineState",
    "QueryComplexity",
    "SearchOptions",
    "StageDescriptor",
    "ResponseMetadata",
    "SearchOrchestrator",
    "SearchResponse",
    "Degraded",
    "Err",
    "Ok",
    "StageOutcome",
]
