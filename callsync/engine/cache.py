"""Tenant call cache - id-keyed merge and incremental fetch window."""

from collections.abc import Iterable
from datetime import datetime, timedelta

from callsync.schemas.calls import CallRecord
from callsync.schemas.tenants import TenantCacheEntry


def sort_newest_first(records: Iterable[CallRecord]) -> tuple[CallRecord, ...]:
    """Order records by started_at descending (id breaks ties for a stable order)."""
    return tuple(sorted(records, key=lambda r: (r.started_at, r.id), reverse=True))


def merge_records(
    existing: Iterable[CallRecord], fresh: Iterable[CallRecord], tenant_id: str = ""
) -> tuple[CallRecord, ...]:
    """
    Merge fresh records over existing ones by id.
    Fresh wins on collision - the provider is the source of truth for an id.
    """
    by_id: dict[str, CallRecord] = {r.id: r for r in existing}
    for record in fresh:
        if tenant_id and record.tenant_id != tenant_id:
            record = record.model_copy(update={"tenant_id": tenant_id})
        by_id[record.id] = record
    return sort_newest_first(by_id.values())


def merge(
    entry: TenantCacheEntry,
    fresh: list[CallRecord],
    now: datetime,
    tenant_id: str = "",
) -> TenantCacheEntry:
    """
    Return the entry with fresh records merged in and the watermark advanced.
    An empty fetch returns the existing entry untouched.
    """
    if not fresh:
        return entry
    watermark = now
    if entry.last_sync_watermark is not None and entry.last_sync_watermark > now:
        watermark = entry.last_sync_watermark
    return TenantCacheEntry(
        last_sync_watermark=watermark,
        records=merge_records(entry.records, fresh, tenant_id),
    )


def fetch_window_start(
    entry: TenantCacheEntry, floor: datetime, overlap: timedelta = timedelta(hours=1)
) -> datetime:
    """Lower bound for the next fetch: watermark minus overlap, or the floor on first sync."""
    if entry.last_sync_watermark is None or not entry.records:
        return floor
    return entry.last_sync_watermark - overlap
