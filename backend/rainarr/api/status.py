"""
Status API routes: health probes for container orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text

from rainarr import __version__
from rainarr.database import AsyncSessionLocal

router = APIRouter(prefix="/api/status", tags=["status"])


@router.get("/health")
async def health_check(request: Request):
    """Overall health, including whether the background loops are alive."""
    reconciler = getattr(request.app.state, "reconciler", None)
    task_monitor = getattr(request.app.state, "task_monitor", None)
    return {
        "status": "healthy",
        "version": __version__,
        "event_loop_running": reconciler.scheduler.is_running if reconciler else False,
        "background_tasks": task_monitor.task_states() if task_monitor else {},
    }


@router.get("/live")
async def liveness_check():
    """Liveness probe: the process is up and serving requests."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness_check():
    """Readiness probe: the database answers queries."""
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "database unavailable"})
    return {"status": "ready"}
