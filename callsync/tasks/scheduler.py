"""Background task running the periodic all-tenant sync sweep."""

import asyncio
import logging

from callsync.engine.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


async def run_periodic_sync(orchestrator: SyncOrchestrator, interval: float) -> None:
    """Sweep all tenants every `interval` seconds until cancelled."""
    while True:
        try:
            reports = await orchestrator.sync_all()
            failed = sum(1 for r in reports if r.state.value == "failed")
            logger.info("Periodic sync swept %d tenants (%d failed)", len(reports), failed)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Periodic sync sweep crashed; retrying next interval")
        await asyncio.sleep(interval)


def start_scheduler(orchestrator: SyncOrchestrator, interval: float) -> asyncio.Task:
    """Start the sweep loop on the running event loop."""
    task = asyncio.create_task(run_periodic_sync(orchestrator, interval), name="callsync-sweep")
    logger.info("Periodic sync started (every %.0fs)", interval)
    return task


async def stop_scheduler(task: asyncio.Task | None) -> None:
    """Cancel the sweep loop and wait for it to exit."""
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    logger.info("Periodic sync stopped")


def is_running(task: asyncio.Task | None) -> bool:
    return task is not None and not task.done()
