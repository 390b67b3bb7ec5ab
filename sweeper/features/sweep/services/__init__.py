"""
Service layer for the sweep feature.
"""

from .orchestrator import (
    PreconditionError,
    SweepOrchestrator,
    SweepOutcome,
    build_sweep_orchestrator,
)

__all__ = [
    "PreconditionError",
    "SweepOrchestrator",
    "SweepOutcome",
    "build_sweep_orchestrator",
]
