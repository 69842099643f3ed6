"""Database models."""

from callsync.models.tenant import Tenant
from callsync.models.call_cache import CallCacheEntry, CallRecordRow
from callsync.models.notification import Notification

__all__ = ["Tenant", "CallCacheEntry", "CallRecordRow", "Notification"]
