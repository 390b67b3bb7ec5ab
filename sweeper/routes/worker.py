"""
Manual worker trigger.
"""

from fastapi import APIRouter, HTTPException, Request

from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/trigger-worker")
async def trigger_worker(request: Request):
    """Process at most one pending sweep right now."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sweep worker not initialized")

    logger.info("Manual sweep trigger received")
    processed = await orchestrator.process_next_job()
    return {"success": True, "processed": processed}
