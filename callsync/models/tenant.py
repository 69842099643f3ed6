"""Tenant model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from callsync.database import Base


class Tenant(Base):
    """Tenant table - one per client account billed for provider minutes."""

    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    minute_limit: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    used_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    overages_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    webhook_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Optimistic concurrency token, bumped on every state save
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
