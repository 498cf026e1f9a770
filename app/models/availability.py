from datetime import UTC, date, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class AvailabilityRecord(SQLModel, table=True):
    __tablename__ = "availability_records"
    __table_args__ = (UniqueConstraint("doctor_id", "hospital_id", name="uq_availability_doctor_hospital"),)

    id: int | None = Field(default=None, primary_key=True)
    doctor_id: str = Field(index=True, max_length=64)
    hospital_id: str = Field(index=True, max_length=64)
    appointment_duration_minutes: int = 30
    break_start: str | None = Field(default=None, max_length=5)
    break_end: str | None = Field(default=None, max_length=5)
    created_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=_utc_naive_now, sa_type=DateTime)


class WeeklyRange(SQLModel, table=True):
    __tablename__ = "availability_weekly_ranges"
    __table_args__ = (UniqueConstraint("record_id", "weekday", name="uq_weekly_range_weekday"),)

    id: int | None = Field(default=None, primary_key=True)
    record_id: int = Field(foreign_key="availability_records.id", index=True)
    weekday: int  # 0 = Sunday ... 6 = Saturday
    start_time: str = Field(max_length=5)
    end_time: str = Field(max_length=5)


class SpecificDate(SQLModel, table=True):
    __tablename__ = "availability_specific_dates"
    __table_args__ = (UniqueConstraint("record_id", "on_date", name="uq_specific_date_day"),)

    id: int | None = Field(default=None, primary_key=True)
    record_id: int = Field(foreign_key="availability_records.id", index=True)
    on_date: date
    is_available: bool = True
    start_time: str | None = Field(default=None, max_length=5)
    end_time: str | None = Field(default=None, max_length=5)


class AvailabilityException(SQLModel, table=True):
    __tablename__ = "availability_exceptions"
    __table_args__ = (UniqueConstraint("record_id", "on_date", name="uq_exception_day"),)

    id: int | None = Field(default=None, primary_key=True)
    record_id: int = Field(foreign_key="availability_records.id", index=True)
    on_date: date
    is_available: bool = False
    reason: str | None = None


# Read models. The slot generator works on these, never on table rows.


class TimeRange(SQLModel):
    start_time: str
    end_time: str


class SpecificDatePublic(SQLModel):
    on_date: date
    is_available: bool
    time_range: TimeRange | None = None


class ExceptionPublic(SQLModel):
    on_date: date
    is_available: bool = False
    reason: str | None = None


class AvailabilityPublic(SQLModel):
    doctor_id: str
    hospital_id: str
    weekly_template: dict[int, TimeRange] = {}
    specific_dates: list[SpecificDatePublic] = []
    exceptions: list[ExceptionPublic] = []
    appointment_duration_minutes: int = 30
    break_range: TimeRange | None = None
