"""
Aggregation package for the sweep pipeline.

Turns message header metadata into per-domain aggregates backed by canonical
service rows.
"""

from .service import DomainAggregationService, ServiceResolutionError

__all__ = ["DomainAggregationService", "ServiceResolutionError"]
