"""
Enrichment Module
Entity statistics grounded in catalog data.
"""

from .context_enrichment import (
    ContextEnrichmentService,
    EnrichmentReport,
    MetadataContext,
    compute_attribute_distributions,
    statistic_confidence,
)

__all__ = [
    "ContextEnrichmentService",
    "EnrichmentReport",
    "MetadataContext",
    "compute_attribute_distributions",
    "statistic_confidence",
]
