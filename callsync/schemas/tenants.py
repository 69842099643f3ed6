"""Tenant, cache and notification schemas used by the sync engine."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from callsync.schemas.calls import CallRecord, as_utc


class NotificationKind(str, Enum):
    """Severity of a notification."""

    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


class TenantAccount(BaseModel):
    """Tenant fields the engine reads, plus the derived used_minutes it writes."""

    tenant_id: str
    name: str
    email: str | None = None
    created_at: datetime
    minute_limit: float = 0.0
    used_minutes: float = 0.0
    overages_enabled: bool = False
    webhook_url: str | None = None
    provider_api_key: str | None = None

    @field_validator("created_at", mode="after")
    @classmethod
    def created_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def syncable(self) -> bool:
        """True when a usable provider key is configured."""
        return bool(self.provider_api_key) and len(self.provider_api_key) > 5


class TenantCacheEntry(BaseModel):
    """Last synchronized watermark and merged call records (newest first)."""

    model_config = {"frozen": True}

    last_sync_watermark: datetime | None = None
    records: tuple[CallRecord, ...] = ()


class NotificationEvent(BaseModel):
    """Notification shown on the dashboard and pushed to the tenant webhook."""

    id: str
    tenant_id: str
    title: str
    message: str
    kind: NotificationKind
    created_at: datetime
    read: bool = False
    delivered: bool = False
    delivery_attempts: int = 0
    next_attempt_at: datetime | None = None

    @field_validator("created_at", "next_attempt_at", mode="after")
    @classmethod
    def timestamps_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


class TenantState(BaseModel):
    """Everything persisted for one tenant in a single atomic save."""

    tenant: TenantAccount
    cache: TenantCacheEntry = Field(default_factory=TenantCacheEntry)
    notifications: list[NotificationEvent] = Field(default_factory=list)
    version: int = 0
    # Set by the merge step so the store can skip rewriting unchanged records
    records_changed: bool = False
