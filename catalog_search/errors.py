"""
Error Taxonomy
Exceptions raised by the search engine components.
"""

from typing import Optional


class SearchEngineError(Exception):
    """Base exception for search engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(SearchEngineError):
    """Raised when configuration values are inconsistent."""

    pass


class ExtractionUnavailable(SearchEngineError):
    """Local extraction model failed to load or the circuit breaker is open."""

    pass


class RemoteReasoningError(SearchEngineError):
    """Remote reasoning fallback could not produce a result."""

    pass


class EnrichmentDegraded(SearchEngineError):
    """Similarity backend unreachable while building entity statistics."""

    pass


class VectorBackendError(SearchEngineError):
    """Raised by vector backends for invalid requests or index failures."""

    pass


class SpaceSearchFailed(SearchEngineError):
    """A single vector space search raised an error."""

    def __init__(self, space: str, message: str, details: Optional[dict] = None):
        self.space = space
        super().__init__(message, details={"space": space, **(details or {})})


class SpaceSearchTimeout(SpaceSearchFailed):
    """A single vector space search exceeded its timeout."""

    def __init__(self, space: str, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(
            space, f"Search in space '{space}' timed out after {timeout_s}s", {"timeout_s": timeout_s}
        )


class AllSpacesFailed(SearchEngineError):
    """Every requested vector space failed; the search stage must degrade."""

    def __init__(self, failures: dict):
        self.failures = failures
        super().__init__(
            f"All {len(failures)} vector spaces failed", details={"failures": failures}
        )
