"""
Global event loop (reconciliation ticker) routes.
"""
from fastapi import APIRouter, Request
from loguru import logger

from rainarr.utils.errors import log_and_raise_500

router = APIRouter(prefix="/api/event-loop", tags=["event-loop"])


@router.post("/start")
async def start_event_loop(request: Request):
    try:
        await request.app.state.reconciler.scheduler.start()
        return {"message": "Event loop started"}
    except Exception as e:
        log_and_raise_500(e, "start event loop")


@router.post("/stop")
async def stop_event_loop(request: Request):
    try:
        await request.app.state.reconciler.scheduler.stop()
        return {"message": "Event loop stopped"}
    except Exception as e:
        log_and_raise_500(e, "stop event loop")


@router.get("/status")
async def get_event_loop_status(request: Request):
    scheduler = request.app.state.reconciler.scheduler
    queued = scheduler.queued_query_ids()
    logger.debug(f"event-loop/status: running={scheduler.is_running}, queued={queued}")
    return {
        "running": scheduler.is_running,
        "interval_seconds": scheduler.interval,
        "queued_query_ids": queued,
    }
