"""Sync trigger and cached-read endpoints."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from callsync.auth.middleware import MasterKeyDep
from callsync.config import settings
from callsync.database import get_db
from callsync.engine.orchestrator import SyncOrchestrator, UnknownTenantError
from callsync.engine.usage import cycle_stats, usage_status
from callsync.schemas.calls import CallRecord, as_utc
from callsync.schemas.sync import CycleStats, SyncReport, UsageStatus
from callsync.storage.repositories import get_tenant_by_email, tenant_to_schema

router = APIRouter()


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Orchestrator built in the app lifespan."""
    return request.app.state.orchestrator


OrchestratorDep = Annotated[SyncOrchestrator, Depends(get_orchestrator)]


def _not_found(tenant_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Tenant not found: {tenant_id}",
    )


@router.post("/sync", response_model=list[SyncReport])
async def sync_all_tenants(_: MasterKeyDep, orchestrator: OrchestratorDep):
    """Sync every tenant now."""
    return await orchestrator.sync_all()


@router.post("/tenants/{tenant_id}/sync", response_model=SyncReport)
async def sync_tenant(tenant_id: str, _: MasterKeyDep, orchestrator: OrchestratorDep):
    """On-demand sync for one tenant."""
    try:
        return await orchestrator.sync_tenant(tenant_id)
    except UnknownTenantError:
        raise _not_found(tenant_id)


@router.get("/tenants/{tenant_id}/calls", response_model=list[CallRecord])
async def list_tenant_calls(
    tenant_id: str,
    _: MasterKeyDep,
    orchestrator: OrchestratorDep,
    refresh: bool = Query(True, description="Sync with the provider before reading"),
):
    """Cached calls for a tenant, newest first. Falls back to the cache if the sync fails."""
    try:
        if refresh:
            await orchestrator.sync_tenant(tenant_id)
        return list(await orchestrator.get_calls(tenant_id))
    except UnknownTenantError:
        raise _not_found(tenant_id)


@router.get("/tenants/{tenant_id}/stats", response_model=CycleStats)
async def tenant_stats(tenant_id: str, _: MasterKeyDep, orchestrator: OrchestratorDep):
    """Current billing-cycle minutes, call count and end-reason breakdown."""
    state = await orchestrator.store.load(tenant_id)
    if state is None:
        raise _not_found(tenant_id)
    return cycle_stats(state.tenant, state.cache.records, datetime.now(timezone.utc))


@router.get("/calls", response_model=list[CallRecord])
async def list_all_calls(
    _: MasterKeyDep,
    orchestrator: OrchestratorDep,
    started_after: datetime | None = None,
):
    """Every tenant's cached calls, newest first."""
    if started_after is not None:
        started_after = as_utc(started_after)
    return await orchestrator.get_all_calls(started_after)


@router.get("/status", response_model=UsageStatus)
async def tenant_status(
    _: MasterKeyDep,
    db: Annotated[AsyncSession, Depends(get_db)],
    email: str = Query(..., min_length=3),
):
    """Usage status lookup for external automation tools."""
    row = await get_tenant_by_email(db, email)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return usage_status(tenant_to_schema(row), settings.usage_warning_percent)
