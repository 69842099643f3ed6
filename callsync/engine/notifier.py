"""Threshold notifier - usage warnings and the capped per-tenant notification list."""

from datetime import datetime, timedelta
from uuid import uuid4

from callsync.config import settings
from callsync.engine.usage import usage_percent
from callsync.schemas.tenants import NotificationEvent, NotificationKind, TenantAccount

CRITICAL_USAGE_TITLE = "Critical Usage Warning"
DEDUP_WINDOW = timedelta(hours=24)


def build_event(
    tenant_id: str, title: str, message: str, kind: NotificationKind, now: datetime
) -> NotificationEvent:
    """Create a new undelivered notification."""
    return NotificationEvent(
        id=f"evt_{int(now.timestamp() * 1000)}_{uuid4().hex[:5]}",
        tenant_id=tenant_id,
        title=title,
        message=message,
        kind=kind,
        created_at=now,
    )


def add_notification(
    notifications: list[NotificationEvent], event: NotificationEvent, cap: int | None = None
) -> None:
    """Prepend event and drop the oldest entries beyond the cap."""
    if cap is None:
        cap = settings.notification_cap
    notifications.insert(0, event)
    del notifications[cap:]


def has_recent(
    notifications: list[NotificationEvent], title: str, now: datetime, window: timedelta = DEDUP_WINDOW
) -> bool:
    return any(n.title == title and n.created_at > now - window for n in notifications)


class ThresholdNotifier:
    """Raises one critical usage warning per tenant per rolling 24 hours."""

    def __init__(self, warning_percent: float | None = None, cap: int | None = None):
        self.warning_percent = settings.usage_warning_percent if warning_percent is None else warning_percent
        self.cap = settings.notification_cap if cap is None else cap

    def evaluate(
        self, tenant: TenantAccount, notifications: list[NotificationEvent], now: datetime
    ) -> NotificationEvent | None:
        """Enqueue and return a warning if the tenant crossed the threshold, else None."""
        if tenant.overages_enabled or tenant.minute_limit <= 0:
            return None
        percent = usage_percent(tenant)
        if percent < self.warning_percent:
            return None
        if has_recent(notifications, CRITICAL_USAGE_TITLE, now):
            return None

        event = build_event(
            tenant.tenant_id,
            CRITICAL_USAGE_TITLE,
            f"You have used {round(percent)}% of your monthly minute limit. Please top up.",
            NotificationKind.WARNING,
            now,
        )
        add_notification(notifications, event, self.cap)
        return event
