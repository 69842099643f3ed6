"""Sync report and usage read-model schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    """States of one tenant sync cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    RECONCILING = "reconciling"
    NOTIFYING = "notifying"
    PERSISTING = "persisting"
    FAILED = "failed"


class SyncReport(BaseModel):
    """Outcome of one tenant sync cycle."""

    tenant_id: str
    state: SyncState = SyncState.IDLE
    transitions: list[SyncState] = Field(default_factory=list)
    fetched: int = 0
    total_records: int = 0
    used_minutes: float = 0.0
    usage_changed: bool = False
    watermark: datetime | None = None
    notification_id: str | None = None
    webhooks_delivered: int = 0
    history_truncated: bool = False
    error: str | None = None


class CycleStats(BaseModel):
    """Current billing-cycle call stats for one tenant."""

    cycle_start: datetime
    total_minutes: float
    total_calls: int
    reason_counts: dict[str, int] = Field(default_factory=dict)


class UsageStatus(BaseModel):
    """Usage summary for external tools (CRMs, automation platforms)."""

    tenant_id: str
    name: str
    minute_limit: float
    used_minutes: float
    usage_percentage: float
    overages_enabled: bool
    is_at_capacity: bool
    is_near_capacity: bool
