"""
Pipeline components for the mailbox sweep.

Subpackages expose the aggregation and scoring services the orchestrator uses.
"""

__all__ = ["aggregation", "scoring"]
