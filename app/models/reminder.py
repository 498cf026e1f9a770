from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class ReminderChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"  # claimed by a dispatch pass, outcome not yet recorded
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReminderEvent(SQLModel, table=True):
    __tablename__ = "reminder_events"
    __table_args__ = (
        UniqueConstraint("appointment_id", "channel", "offset_hours", name="uq_reminder_channel_offset"),
        Index("ix_reminder_events_status_scheduled_for", "status", "scheduled_for"),
    )

    id: int | None = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointments.id", index=True)
    channel: str = Field(max_length=16)
    offset_hours: int
    scheduled_for: datetime = Field(sa_type=DateTime)
    status: str = Field(default=ReminderStatus.PENDING.value, max_length=16)
    message: str
    sent_at: datetime | None = Field(default=None, sa_type=DateTime)
    error: str | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime)


class ReminderEventPublic(SQLModel):
    id: int
    appointment_id: int
    channel: str
    offset_hours: int
    scheduled_for: datetime
    status: str
    sent_at: datetime | None = None
    error: str | None = None
