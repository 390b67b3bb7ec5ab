"""
Sweep scoring package.

Ranks domain aggregates by how likely they are to be real accounts.
"""

from .service import ScoringService, scoring_service

__all__ = ["ScoringService", "scoring_service"]
