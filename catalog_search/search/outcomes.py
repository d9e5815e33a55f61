"""
Stage Outcomes
Result values threaded through the pipeline so the path taken is observable.
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Stage produced its value on the primary path."""

    value: T

    @property
    def kind(self) -> str:
        return "ok"


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """Stage produced a usable value through a fallback or with partial data."""

    value: T
    reason: str

    @property
    def kind(self) -> str:
        return "degraded"


@dataclass(frozen=True)
class Err:
    """Stage exhausted every fallback."""

    reason: str
    error: Optional[Exception] = None

    @property
    def kind(self) -> str:
        return "error"


StageOutcome = Union[Ok[T], Degraded[T], Err]
