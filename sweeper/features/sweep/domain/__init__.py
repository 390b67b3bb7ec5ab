"""
Domain subpackage for the sweep feature.
"""

from .models import (
    PLAN_LIMITS,
    BreachRecord,
    CanonicalService,
    DomainAggregate,
    GmailAccount,
    MessageMetadata,
    MetadataFetchResult,
    NewService,
    Plan,
    PlanLimits,
    ScoredCandidate,
    SweepJob,
    SweepMetrics,
    SweepStatus,
)

__all__ = [
    "PLAN_LIMITS",
    "BreachRecord",
    "CanonicalService",
    "DomainAggregate",
    "GmailAccount",
    "MessageMetadata",
    "MetadataFetchResult",
    "NewService",
    "Plan",
    "PlanLimits",
    "ScoredCandidate",
    "SweepJob",
    "SweepMetrics",
    "SweepStatus",
]
