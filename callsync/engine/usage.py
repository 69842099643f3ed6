"""Usage reconciliation against the tenant's monthly billing cycle."""

import calendar
import logging
from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from callsync.schemas.calls import CallRecord
from callsync.schemas.sync import CycleStats, UsageStatus
from callsync.schemas.tenants import TenantAccount

logger = logging.getLogger(__name__)

USAGE_EPSILON = 0.01


def _cycle_day(year: int, month: int, day: int, tzinfo) -> datetime:
    # Clamp e.g. day 31 to the last day of shorter months
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last_day), tzinfo=tzinfo)


def billing_cycle_start(created_at: datetime, now: datetime) -> datetime:
    """Midnight of the latest date on the creation day-of-month that is not after now."""
    start = _cycle_day(now.year, now.month, created_at.day, now.tzinfo)
    if start > now:
        year, month = (now.year - 1, 12) if now.month == 1 else (now.year, now.month - 1)
        start = _cycle_day(year, month, created_at.day, now.tzinfo)
    return start


def cycle_records(
    records: Iterable[CallRecord], cycle_start: datetime, now: datetime
) -> list[CallRecord]:
    """Records started within [cycle_start, now)."""
    return [r for r in records if cycle_start <= r.started_at < now]


def cycle_minutes(records: Iterable[CallRecord]) -> float:
    return round(sum(max(r.duration_seconds, 0.0) for r in records) / 60, 2)


def reconcile(tenant: TenantAccount, records: Iterable[CallRecord], now: datetime) -> float:
    """
    Recompute used minutes for the current cycle.
    tenant.used_minutes is only overwritten when it moved by more than 0.01.
    """
    cycle_start = billing_cycle_start(tenant.created_at, now)
    minutes = cycle_minutes(cycle_records(records, cycle_start, now))
    if abs(minutes - tenant.used_minutes) > USAGE_EPSILON:
        logger.info(
            "Tenant %s usage %.2f -> %.2f minutes", tenant.tenant_id, tenant.used_minutes, minutes
        )
        tenant.used_minutes = minutes
    return tenant.used_minutes


def cycle_stats(tenant: TenantAccount, records: Iterable[CallRecord], now: datetime) -> CycleStats:
    """Minutes, call count and end-reason breakdown for the current cycle."""
    cycle_start = billing_cycle_start(tenant.created_at, now)
    in_cycle = cycle_records(records, cycle_start, now)
    reasons = Counter(r.end_reason.value for r in in_cycle)
    return CycleStats(
        cycle_start=cycle_start,
        total_minutes=cycle_minutes(in_cycle),
        total_calls=len(in_cycle),
        reason_counts=dict(reasons),
    )


def usage_percent(tenant: TenantAccount) -> float:
    """Used share of the minute limit; 0 when no positive limit is set."""
    if tenant.minute_limit <= 0:
        return 0.0
    return tenant.used_minutes / tenant.minute_limit * 100


def usage_status(tenant: TenantAccount, warning_percent: float = 80.0) -> UsageStatus:
    percent = usage_percent(tenant)
    return UsageStatus(
        tenant_id=tenant.tenant_id,
        name=tenant.name,
        minute_limit=tenant.minute_limit,
        used_minutes=tenant.used_minutes,
        usage_percentage=round(percent, 2),
        overages_enabled=tenant.overages_enabled,
        is_at_capacity=percent >= 100,
        is_near_capacity=percent >= warning_percent,
    )
