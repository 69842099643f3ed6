"""Health and metrics endpoints."""

from fastapi import APIRouter, Request

from callsync.tasks.scheduler import is_running

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/metrics")
async def metrics(request: Request):
    """Basic metrics endpoint for observability."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "service": "callsync",
        "version": "0.1.0",
        "scheduler_running": is_running(scheduler),
    }
