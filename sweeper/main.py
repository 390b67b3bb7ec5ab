"""
HTTP process boundary for the sweep worker.

Logging is configured at import. The lifespan owns the database pool, the
orchestrator and the background job poller.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from sweeper.config import settings
from sweeper.db.pool import db_pool
from sweeper.features.sweep.jobs import JobPoller
from sweeper.features.sweep.services import build_sweep_orchestrator
from sweeper.infrastructure.observability.logging import get_logger, setup_logging
from sweeper.routes import health, worker

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pool and start the poller; on shutdown stop the poller before closing the pool."""
    logger.info("Sweeper starting", environment=settings.environment, debug=settings.debug)

    await db_pool.initialize()
    try:
        orchestrator = build_sweep_orchestrator()
    except Exception as e:
        logger.error("Failed to build sweep orchestrator", error=str(e))
        await db_pool.close()
        raise

    poller = JobPoller(orchestrator)
    app.state.orchestrator = orchestrator
    app.state.poller = poller
    poller.start()

    yield

    logger.info("Sweeper shutting down")
    shutdown_steps = (
        ("poller", lambda: poller.stop(timeout=30)),
        ("gmail_client", orchestrator.close),
        ("database", db_pool.close),
    )
    failed = []
    for name, step in shutdown_steps:
        try:
            await step()
        except Exception as e:
            logger.error("Shutdown step failed", step=name, error=str(e))
            failed.append(name)

    if failed:
        logger.warning("Sweeper stopped with shutdown errors", failed_steps=failed)
    else:
        logger.info("Sweeper stopped cleanly")


app = FastAPI(
    title="Mailbox Sweeper",
    description="Gmail account-discovery sweep worker",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(worker.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response
