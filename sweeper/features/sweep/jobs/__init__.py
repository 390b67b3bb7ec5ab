"""
Job runners for the sweep feature.
"""

from .poller import JobPoller, run_single_sweep, start_sweep_poller

__all__ = ["JobPoller", "run_single_sweep", "start_sweep_poller"]
