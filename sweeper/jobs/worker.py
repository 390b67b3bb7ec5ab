"""
Process entry point for the sweep worker (``sweeper-worker``).

The job is chosen by the first CLI argument, then WORKER_JOB, defaulting to
the long-running poller.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from sweeper.config import settings
from sweeper.features.sweep.jobs import run_single_sweep, start_sweep_poller
from sweeper.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

DEFAULT_JOB = "sweep_poller"

JOB_REGISTRY: dict[str, Callable[[], Awaitable[None]]] = {
    "sweep_poller": start_sweep_poller,
    "sweep_once": run_single_sweep,
}


def _resolve_job_name(argv: list[str] | None = None) -> str:
    args = sys.argv[1:] if argv is None else argv
    name = args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return name.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    name = (job_name or _resolve_job_name()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}")

    logger.info("Starting background worker", job=name)
    await job()


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
