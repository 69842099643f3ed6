"""Call record schemas - provider payload and cached record."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CallStatus(str, Enum):
    """Lifecycle status of a call."""

    COMPLETED = "completed"
    ONGOING = "ongoing"
    FAILED = "failed"


class EndReason(str, Enum):
    """Why a call ended."""

    CUSTOMER_ENDED = "customer-ended-call"
    ASSISTANT_ENDED = "assistant-ended-call"
    SILENCE_TIMEOUT = "silence-timeout"
    ERROR = "error"


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalize aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CallRecord(BaseModel):
    """Immutable snapshot of one provider call."""

    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str = ""
    started_at: datetime
    duration_seconds: float = 0.0
    end_reason: EndReason = EndReason.ERROR
    status: CallStatus = CallStatus.COMPLETED
    customer_phone: str = "Unknown"
    assistant_id: str = "Unknown"
    recording_url: str | None = None
    transcript: str | None = None
    summary: str | None = None
    cost: float = 0.0

    @field_validator("started_at", mode="after")
    @classmethod
    def started_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("duration_seconds", "cost", mode="after")
    @classmethod
    def non_negative(cls, v: float) -> float:
        """Negative amounts from the provider are treated as zero."""
        return max(v, 0.0)


class ProviderCustomer(BaseModel):
    """Customer block of a provider call."""

    model_config = {"extra": "allow"}

    number: str | None = None


class ProviderAnalysis(BaseModel):
    """Post-call analysis block of a provider call."""

    model_config = {"extra": "allow"}

    summary: str | None = None
    structuredData: Any = None


class ProviderCall(BaseModel):
    """Raw call object as returned by the provider's call-listing endpoint."""

    model_config = {"extra": "allow"}

    id: str = Field(min_length=1)
    status: str | None = None
    startedAt: datetime
    endedAt: datetime | None = None
    endedReason: str | None = None
    cost: float | None = None
    customer: ProviderCustomer | None = None
    assistantId: str | None = None
    recordingUrl: str | None = None
    transcript: str | None = None
    analysis: ProviderAnalysis | None = None
    durationSeconds: float | None = None

    def duration(self) -> float:
        """Reported duration, else derived from start/end timestamps."""
        if self.durationSeconds:
            return max(self.durationSeconds, 0.0)
        if self.endedAt is not None:
            delta = as_utc(self.endedAt) - as_utc(self.startedAt)
            return max(delta.total_seconds(), 0.0)
        return 0.0

    def call_status(self) -> CallStatus:
        if self.status in ("active", "in-progress"):
            return CallStatus.ONGOING
        if self.status == "failed":
            return CallStatus.FAILED
        return CallStatus.COMPLETED

    def end_reason(self) -> EndReason:
        reason = self.endedReason or ""
        if "customer" in reason:
            return EndReason.CUSTOMER_ENDED
        if "assistant" in reason or "bot" in reason:
            return EndReason.ASSISTANT_ENDED
        if "silence" in reason:
            return EndReason.SILENCE_TIMEOUT
        return EndReason.ERROR

    def to_record(self) -> CallRecord:
        """Map the provider shape to the cached CallRecord shape."""
        summary = self.analysis.summary if self.analysis else None
        return CallRecord(
            id=self.id,
            started_at=self.startedAt,
            duration_seconds=self.duration(),
            end_reason=self.end_reason(),
            status=self.call_status(),
            customer_phone=(self.customer.number if self.customer else None) or "Unknown",
            assistant_id=self.assistantId or "Unknown",
            recording_url=self.recordingUrl,
            transcript=self.transcript or summary or "",
            summary=summary,
            cost=self.cost or 0.0,
        )
