"""Repository functions and the per-tenant state store."""

from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callsync.models import CallCacheEntry, CallRecordRow, Notification, Tenant
from callsync.schemas.calls import CallRecord, as_utc
from callsync.schemas.tenants import (
    NotificationEvent,
    TenantAccount,
    TenantCacheEntry,
    TenantState,
)


class StaleStateError(Exception):
    """Tenant state changed since it was loaded (optimistic version check failed)."""


class TenantStateStore(Protocol):
    """Per-tenant partitioned persistence used by the sync orchestrator."""

    async def list_tenant_ids(self) -> list[str]: ...

    async def load(self, tenant_id: str) -> TenantState | None: ...

    async def save(self, state: TenantState) -> None: ...


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back naive
    return as_utc(value) if value is not None else None


def tenant_to_schema(row: Tenant) -> TenantAccount:
    return TenantAccount(
        tenant_id=row.tenant_id,
        name=row.name,
        email=row.email,
        created_at=_utc(row.created_at),
        minute_limit=row.minute_limit,
        used_minutes=row.used_minutes,
        overages_enabled=row.overages_enabled,
        webhook_url=row.webhook_url,
        provider_api_key=row.provider_api_key,
    )


def record_to_schema(row: CallRecordRow) -> CallRecord:
    return CallRecord(
        id=row.call_id,
        tenant_id=row.tenant_id,
        started_at=_utc(row.started_at),
        duration_seconds=row.duration_seconds,
        end_reason=row.end_reason,
        status=row.status,
        customer_phone=row.customer_phone,
        assistant_id=row.assistant_id,
        recording_url=row.recording_url,
        transcript=row.transcript,
        summary=row.summary,
        cost=row.cost,
    )


def record_to_row(tenant_id: str, record: CallRecord) -> CallRecordRow:
    return CallRecordRow(
        tenant_id=tenant_id,
        call_id=record.id,
        started_at=record.started_at,
        duration_seconds=record.duration_seconds,
        end_reason=record.end_reason.value,
        status=record.status.value,
        customer_phone=record.customer_phone,
        assistant_id=record.assistant_id,
        recording_url=record.recording_url,
        transcript=record.transcript,
        summary=record.summary,
        cost=record.cost,
    )


def notification_to_schema(row: Notification) -> NotificationEvent:
    return NotificationEvent(
        id=row.notification_id,
        tenant_id=row.tenant_id,
        title=row.title,
        message=row.message,
        kind=row.kind,
        created_at=_utc(row.created_at),
        read=row.read,
        delivered=row.delivered,
        delivery_attempts=row.delivery_attempts,
        next_attempt_at=_utc(row.next_attempt_at),
    )


def notification_to_row(event: NotificationEvent) -> Notification:
    return Notification(
        notification_id=event.id,
        tenant_id=event.tenant_id,
        title=event.title,
        message=event.message,
        kind=event.kind.value,
        created_at=event.created_at,
        read=event.read,
        delivered=event.delivered,
        delivery_attempts=event.delivery_attempts,
        next_attempt_at=event.next_attempt_at,
    )


async def get_tenant(db: AsyncSession, tenant_id: str) -> Tenant | None:
    """Get tenant row by ID."""
    return await db.get(Tenant, tenant_id)


async def get_tenant_by_email(db: AsyncSession, email: str) -> Tenant | None:
    """Case-insensitive lookup by contact email."""
    result = await db.execute(select(Tenant).where(Tenant.email.ilike(email)))
    return result.scalars().first()


async def get_cached_records(db: AsyncSession, tenant_id: str) -> list[CallRecord]:
    """Cached calls for a tenant, newest first."""
    result = await db.execute(
        select(CallRecordRow)
        .where(CallRecordRow.tenant_id == tenant_id)
        .order_by(CallRecordRow.started_at.desc(), CallRecordRow.call_id.desc())
    )
    return [record_to_schema(r) for r in result.scalars().all()]


async def load_tenant_state(db: AsyncSession, tenant_id: str) -> TenantState | None:
    """Load tenant, cache entry and notifications (newest first)."""
    tenant = await get_tenant(db, tenant_id)
    if tenant is None:
        return None
    entry = await db.get(CallCacheEntry, tenant_id)
    records = await get_cached_records(db, tenant_id)
    result = await db.execute(
        select(Notification)
        .where(Notification.tenant_id == tenant_id)
        .order_by(Notification.created_at.desc())
    )
    return TenantState(
        tenant=tenant_to_schema(tenant),
        cache=TenantCacheEntry(
            last_sync_watermark=_utc(entry.last_sync_watermark) if entry else None,
            records=tuple(records),
        ),
        notifications=[notification_to_schema(n) for n in result.scalars().all()],
        version=tenant.version,
    )


async def save_tenant_state(db: AsyncSession, state: TenantState) -> None:
    """
    Write the recomputed tenant state inside the caller's transaction.
    Raises StaleStateError if another writer saved since the state was loaded.
    """
    tenant_id = state.tenant.tenant_id
    result = await db.execute(
        update(Tenant)
        .where(Tenant.tenant_id == tenant_id, Tenant.version == state.version)
        .values(used_minutes=state.tenant.used_minutes, version=state.version + 1)
    )
    if result.rowcount != 1:
        raise StaleStateError(f"Tenant {tenant_id} changed since load (version {state.version})")

    await db.merge(
        CallCacheEntry(tenant_id=tenant_id, last_sync_watermark=state.cache.last_sync_watermark)
    )
    if state.records_changed:
        await db.execute(delete(CallRecordRow).where(CallRecordRow.tenant_id == tenant_id))
        db.add_all(record_to_row(tenant_id, r) for r in state.cache.records)

    await db.execute(delete(Notification).where(Notification.tenant_id == tenant_id))
    db.add_all(notification_to_row(n) for n in state.notifications)
    await db.flush()

    state.version += 1
    state.records_changed = False


class SqlTenantStateStore:
    """TenantStateStore backed by async SQLAlchemy; one transaction per save."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def list_tenant_ids(self) -> list[str]:
        async with self._session_maker() as db:
            result = await db.execute(select(Tenant.tenant_id).order_by(Tenant.tenant_id))
            return list(result.scalars().all())

    async def load(self, tenant_id: str) -> TenantState | None:
        async with self._session_maker() as db:
            return await load_tenant_state(db, tenant_id)

    async def save(self, state: TenantState) -> None:
        async with self._session_maker() as db, db.begin():
            await save_tenant_state(db, state)


def _iso(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat() if value is not None else None


async def read_document(db: AsyncSession) -> dict[str, Any]:
    """Whole-store snapshot as one JSON-serializable document."""
    result = await db.execute(select(Tenant.tenant_id).order_by(Tenant.tenant_id))
    clients: list[dict[str, Any]] = []
    call_cache: dict[str, Any] = {}
    for tenant_id in result.scalars().all():
        state = await load_tenant_state(db, tenant_id)
        client = state.tenant.model_dump(mode="json")
        client["notifications"] = [n.model_dump(mode="json") for n in state.notifications]
        clients.append(client)
        call_cache[tenant_id] = {
            "lastSync": _iso(state.cache.last_sync_watermark),
            "calls": [r.model_dump(mode="json") for r in state.cache.records],
        }
    return {"clients": clients, "callCache": call_cache}


async def write_document(db: AsyncSession, document: dict[str, Any]) -> int:
    """Replace the tenants named in a snapshot document. Returns tenants written."""
    call_cache = document.get("callCache") or {}
    written = 0
    for client in document.get("clients") or []:
        account = TenantAccount.model_validate(client)
        tenant_id = account.tenant_id
        await db.execute(delete(Notification).where(Notification.tenant_id == tenant_id))
        await db.execute(delete(CallRecordRow).where(CallRecordRow.tenant_id == tenant_id))
        await db.execute(delete(CallCacheEntry).where(CallCacheEntry.tenant_id == tenant_id))
        await db.execute(delete(Tenant).where(Tenant.tenant_id == tenant_id))
        await db.flush()

        db.add(Tenant(**account.model_dump(), version=0))
        await db.flush()
        cached = call_cache.get(tenant_id) or {}
        last_sync = cached.get("lastSync")
        db.add(
            CallCacheEntry(
                tenant_id=tenant_id,
                last_sync_watermark=as_utc(datetime.fromisoformat(last_sync)) if last_sync else None,
            )
        )
        for raw in cached.get("calls") or []:
            record = CallRecord.model_validate({**raw, "tenant_id": tenant_id})
            db.add(record_to_row(tenant_id, record))
        for raw in client.get("notifications") or []:
            db.add(notification_to_row(NotificationEvent.model_validate({**raw, "tenant_id": tenant_id})))
        written += 1
    await db.flush()
    return written
