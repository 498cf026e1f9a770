from datetime import UTC, date, datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Index, text
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
)


class AppointmentType(str, Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow-up"
    EMERGENCY = "emergency"
    ROUTINE = "routine"


_ACTIVE_SLOT = text("status <> 'cancelled'")


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one non-cancelled booking per doctor/hospital/date/time
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "hospital_id",
            "slot_date",
            "slot_time",
            unique=True,
            postgresql_where=_ACTIVE_SLOT,
            sqlite_where=_ACTIVE_SLOT,
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    patient_id: str = Field(index=True, max_length=64)
    doctor_id: str = Field(index=True, max_length=64)
    hospital_id: str = Field(index=True, max_length=64)
    slot_date: date = Field(index=True)
    slot_time: str = Field(max_length=5)  # HH:MM
    status: str = Field(default=AppointmentStatus.PENDING.value, index=True, max_length=16)
    appointment_type: str = Field(default=AppointmentType.CONSULTATION.value, max_length=32)
    reason: str | None = None
    notes: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    remind_email: bool = False
    remind_sms: bool = False
    remind_whatsapp: bool = False
    reminder_intervals: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    cancelled_by: str | None = None
    cancelled_at: datetime | None = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime)

    @property
    def starts_at(self) -> datetime:
        hours, minutes = self.slot_time.split(":")
        return datetime(self.slot_date.year, self.slot_date.month, self.slot_date.day, int(hours), int(minutes))

    @property
    def is_terminal(self) -> bool:
        return AppointmentStatus(self.status) in TERMINAL_STATUSES


class ReminderPreferences(SQLModel):
    email: bool = False
    sms: bool = False
    whatsapp: bool = False
    intervals: list[int] | None = None

    def enabled_channels(self) -> list[str]:
        return [c for c in ("email", "sms", "whatsapp") if getattr(self, c)]


class AppointmentCreate(SQLModel):
    patient_id: str
    doctor_id: str
    hospital_id: str
    slot_date: date
    slot_time: str
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason: str | None = None
    notes: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    reminder_preferences: ReminderPreferences | None = None


class AppointmentPublic(SQLModel):
    id: int
    patient_id: str
    doctor_id: str
    hospital_id: str
    slot_date: date
    slot_time: str
    status: str
    appointment_type: str
    reason: str | None = None
    notes: str | None = None
    reminder_preferences: ReminderPreferences
    created_at: datetime
    updated_at: datetime
