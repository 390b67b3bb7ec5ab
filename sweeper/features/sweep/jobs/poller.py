"""
Sweep job poller.

Looks for the next claimable sweep on a fixed interval and hands it to the
orchestrator. Stopping is explicit: stop() sets the cancellation token and
the loop exits at its next wait.
"""

import asyncio
import signal
from typing import Protocol

from sweeper.config import settings
from sweeper.db.pool import db_pool
from sweeper.features.sweep.services import build_sweep_orchestrator
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class JobProcessor(Protocol):
    async def process_next_job(self) -> bool: ...


class JobPoller:
    def __init__(self, processor: JobProcessor, interval_seconds: float | None = None):
        self._processor = processor
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.WORKER_POLL_INTERVAL_SECONDS
        )
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.jobs_processed = 0

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        """Poll until stop() is called. A processed job triggers an immediate re-poll."""
        logger.info("Sweep poller started", interval_seconds=self.interval_seconds)

        while not self.stopped:
            try:
                processed = await self._processor.process_next_job()
            except Exception as e:
                logger.error("Sweep poll iteration failed", error=str(e), exc_info=True)
                processed = False

            if processed:
                self.jobs_processed += 1
                continue

            await self._wait()

        logger.info("Sweep poller stopped", jobs_processed=self.jobs_processed)

    async def _wait(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            pass

    def request_stop(self) -> None:
        """Set the cancellation token without waiting (safe from signal handlers)."""
        self._stop_event.set()

    def start(self) -> asyncio.Task:
        if not self.is_running:
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run(), name="sweep-poller")
        return self._task

    async def stop(self, timeout: float | None = None) -> None:
        """Set the cancellation token and wait for the current iteration to finish."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Sweep poller did not stop in time, cancelling")
            self._task.cancel()
        finally:
            self._task = None


async def start_sweep_poller() -> None:
    """Worker entry point: poll forever with the production orchestrator."""
    await db_pool.initialize()
    orchestrator = build_sweep_orchestrator()
    try:
        poller = JobPoller(orchestrator)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, poller.request_stop)
        await poller.run()
    finally:
        await orchestrator.close()
        await db_pool.close()


async def run_single_sweep() -> None:
    """Worker entry point: process at most one pending sweep and exit."""
    await db_pool.initialize()
    orchestrator = build_sweep_orchestrator()
    try:
        processed = await orchestrator.process_next_job()
        logger.info("Single sweep run finished", processed=processed)
    finally:
        await orchestrator.close()
        await db_pool.close()
