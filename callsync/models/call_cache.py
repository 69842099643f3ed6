"""Per-tenant call cache models."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from callsync.database import Base


class CallCacheEntry(Base):
    """Sync watermark per tenant."""

    __tablename__ = "call_cache_entries"

    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.tenant_id", ondelete="CASCADE"), primary_key=True
    )
    last_sync_watermark: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class CallRecordRow(Base):
    """Cached provider call, keyed by (tenant_id, call_id)."""

    __tablename__ = "call_records"

    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.tenant_id", ondelete="CASCADE"), primary_key=True
    )
    call_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    end_reason: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_phone: Mapped[str] = mapped_column(Text, nullable=False)
    assistant_id: Mapped[str] = mapped_column(Text, nullable=False)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
