"""Sync orchestrator - per-tenant fetch, merge, reconcile, notify, persist."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from callsync.config import settings
from callsync.engine import cache
from callsync.engine.notifier import ThresholdNotifier, add_notification, build_event
from callsync.engine.paginator import BatchPaginator, FetchOutcome
from callsync.engine.usage import reconcile
from callsync.engine.webhooks import WebhookDispatcher
from callsync.schemas.calls import CallRecord
from callsync.schemas.sync import SyncReport, SyncState
from callsync.schemas.tenants import NotificationEvent, NotificationKind, TenantState
from callsync.storage.repositories import StaleStateError, TenantStateStore

logger = logging.getLogger(__name__)


class UnknownTenantError(LookupError):
    """No tenant with the requested id."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """
    Entry point for tenant syncs.
    One writer per tenant at a time; different tenants sync in parallel
    up to `workers` at once.
    """

    def __init__(
        self,
        store: TenantStateStore,
        paginator: BatchPaginator,
        dispatcher: WebhookDispatcher,
        notifier: ThresholdNotifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
        workers: int | None = None,
        total_limit: int | None = None,
    ):
        self.store = store
        self.paginator = paginator
        self.dispatcher = dispatcher
        self.notifier = notifier or ThresholdNotifier()
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._workers = asyncio.Semaphore(workers or settings.sync_workers)
        self.total_limit = settings.fetch_total_limit if total_limit is None else total_limit
        self.first_sync_floor = settings.first_sync_floor
        self.overlap = timedelta(minutes=settings.sync_overlap_minutes)

    async def sync_tenant(self, tenant_id: str) -> SyncReport:
        """Run one full sync cycle for a tenant. Provider and webhook failures never raise."""
        async with self._locks[tenant_id]:
            state = await self.store.load(tenant_id)
            if state is not None:
                return await self._run_cycle(state)
        self._forget(tenant_id)
        raise UnknownTenantError(tenant_id)

    async def sync_all(self) -> list[SyncReport]:
        """Sync every tenant; the webhook retry sweep runs even for tenants without a key."""
        tenant_ids = await self.store.list_tenant_ids()

        async def bounded(tenant_id: str) -> SyncReport | None:
            async with self._workers:
                try:
                    return await self.sync_tenant(tenant_id)
                except UnknownTenantError:
                    # Deleted between listing and loading
                    return None

        reports = await asyncio.gather(*(bounded(t) for t in tenant_ids))
        return [r for r in reports if r is not None]

    async def _run_cycle(self, state: TenantState) -> SyncReport:
        tenant = state.tenant
        report = SyncReport(tenant_id=tenant.tenant_id)
        now = self._clock()

        report.webhooks_delivered = await self.dispatcher.retry_pending([state], now)

        if tenant.syncable:
            self._enter(report, SyncState.FETCHING)
            since = cache.fetch_window_start(state.cache, self.first_sync_floor, self.overlap)
            result = await self.paginator.fetch(tenant.provider_api_key, self.total_limit, since)
            report.fetched = len(result.records)
            report.history_truncated = result.retried

            if result.outcome is FetchOutcome.FAILED:
                # Serve the existing cache; discard the partial pages
                self._enter(report, SyncState.FAILED)
                report.error = result.error
            else:
                if result.outcome is FetchOutcome.DEGRADED:
                    report.error = result.error
                now = self._clock()
                await self._apply(state, result.records, now, report)

        self._enter(report, SyncState.PERSISTING)
        try:
            await self.store.save(state)
        except StaleStateError as exc:
            logger.error("Discarding sync result for tenant %s: %s", tenant.tenant_id, exc)
            report.state = SyncState.FAILED
            report.error = str(exc)
            return report

        if report.state is not SyncState.FAILED:
            self._enter(report, SyncState.IDLE)
        report.total_records = len(state.cache.records)
        report.used_minutes = tenant.used_minutes
        report.watermark = state.cache.last_sync_watermark
        logger.info(
            "Sync for tenant %s finished in state %s (fetched=%d, used=%.2f)",
            tenant.tenant_id,
            report.state.value,
            report.fetched,
            tenant.used_minutes,
        )
        return report

    async def _apply(
        self, state: TenantState, fresh: list[CallRecord], now: datetime, report: SyncReport
    ) -> None:
        tenant = state.tenant

        self._enter(report, SyncState.MERGING)
        merged = cache.merge(state.cache, fresh, now, tenant_id=tenant.tenant_id)
        if merged is not state.cache:
            state.cache = merged
            state.records_changed = True

        self._enter(report, SyncState.RECONCILING)
        before = tenant.used_minutes
        reconcile(tenant, state.cache.records, now)
        report.usage_changed = tenant.used_minutes != before

        self._enter(report, SyncState.NOTIFYING)
        event = self.notifier.evaluate(tenant, state.notifications, now)
        if event is not None:
            report.notification_id = event.id
            if await self.dispatcher.dispatch(tenant, event, now):
                report.webhooks_delivered += 1

    def _forget(self, tenant_id: str) -> None:
        # Unknown ids must not accumulate locks
        lock = self._locks.get(tenant_id)
        if lock is not None and not lock.locked():
            del self._locks[tenant_id]

    def _enter(self, report: SyncReport, next_state: SyncState) -> None:
        if report.state is SyncState.FAILED:
            report.transitions.append(next_state)
            return
        report.state = next_state
        report.transitions.append(next_state)

    async def notify(
        self, tenant_id: str, title: str, message: str, kind: NotificationKind
    ) -> NotificationEvent:
        """Add a notification for a tenant and attempt immediate webhook delivery."""
        async with self._locks[tenant_id]:
            state = await self.store.load(tenant_id)
            if state is not None:
                now = self._clock()
                event = build_event(tenant_id, title, message, kind, now)
                add_notification(state.notifications, event, self.notifier.cap)
                await self.dispatcher.dispatch(state.tenant, event, now)
                await self.store.save(state)
                return event
        self._forget(tenant_id)
        raise UnknownTenantError(tenant_id)

    async def get_calls(self, tenant_id: str) -> tuple[CallRecord, ...]:
        """Read-only snapshot of a tenant's cached calls, newest first."""
        state = await self.store.load(tenant_id)
        if state is None:
            raise UnknownTenantError(tenant_id)
        return state.cache.records

    async def get_all_calls(self, started_after: datetime | None = None) -> list[CallRecord]:
        """All tenants' cached calls, newest first, optionally from a start time."""
        records: list[CallRecord] = []
        for tenant_id in await self.store.list_tenant_ids():
            state = await self.store.load(tenant_id)
            if state is not None:
                records.extend(state.cache.records)
        if started_after is not None:
            records = [r for r in records if r.started_at >= started_after]
        return list(cache.sort_newest_first(records))
