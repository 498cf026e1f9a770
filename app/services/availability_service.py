import logging
from datetime import UTC, date, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import AvailabilityNotFound, InvalidRange, MissingTimeRange
from app.models.availability import (
    AvailabilityException,
    AvailabilityPublic,
    AvailabilityRecord,
    ExceptionPublic,
    SpecificDate,
    SpecificDatePublic,
    TimeRange,
    WeeklyRange,
)
from app.services.slot_service import validate_range

logger = logging.getLogger(__name__)


def _utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


async def get_availability_record(
    session: AsyncSession, doctor_id: str, hospital_id: str
) -> AvailabilityRecord | None:
    result = await session.execute(
        select(AvailabilityRecord).where(
            AvailabilityRecord.doctor_id == doctor_id,
            AvailabilityRecord.hospital_id == hospital_id,
        )
    )
    return result.scalar_one_or_none()


async def _get_or_create_record(
    session: AsyncSession, doctor_id: str, hospital_id: str
) -> AvailabilityRecord:
    record = await get_availability_record(session, doctor_id, hospital_id)
    if record:
        record.updated_at = _utc_naive_now()
        session.add(record)
        return record
    record = AvailabilityRecord(
        doctor_id=doctor_id,
        hospital_id=hospital_id,
        appointment_duration_minutes=settings.default_appointment_duration_minutes,
    )
    session.add(record)
    await session.flush()
    await session.refresh(record)
    logger.info("Created availability record doctor=%s hospital=%s", doctor_id, hospital_id)
    return record


async def _require_record(
    session: AsyncSession, doctor_id: str, hospital_id: str
) -> AvailabilityRecord:
    record = await get_availability_record(session, doctor_id, hospital_id)
    if not record:
        raise AvailabilityNotFound(
            f"No availability for doctor {doctor_id} at hospital {hospital_id}",
            doctor_id=doctor_id,
            hospital_id=hospital_id,
        )
    return record


async def _to_public(session: AsyncSession, record: AvailabilityRecord) -> AvailabilityPublic:
    weekly = (
        await session.execute(
            select(WeeklyRange).where(WeeklyRange.record_id == record.id).order_by(WeeklyRange.weekday)
        )
    ).scalars().all()
    dates = (
        await session.execute(
            select(SpecificDate).where(SpecificDate.record_id == record.id).order_by(SpecificDate.on_date)
        )
    ).scalars().all()
    exceptions = (
        await session.execute(
            select(AvailabilityException)
            .where(AvailabilityException.record_id == record.id)
            .order_by(AvailabilityException.on_date)
        )
    ).scalars().all()
    break_range = None
    if record.break_start and record.break_end:
        break_range = TimeRange(start_time=record.break_start, end_time=record.break_end)
    return AvailabilityPublic(
        doctor_id=record.doctor_id,
        hospital_id=record.hospital_id,
        weekly_template={
            w.weekday: TimeRange(start_time=w.start_time, end_time=w.end_time) for w in weekly
        },
        specific_dates=[
            SpecificDatePublic(
                on_date=s.on_date,
                is_available=s.is_available,
                time_range=TimeRange(start_time=s.start_time, end_time=s.end_time)
                if s.is_available and s.start_time and s.end_time
                else None,
            )
            for s in dates
        ],
        exceptions=[
            ExceptionPublic(on_date=e.on_date, is_available=e.is_available, reason=e.reason)
            for e in exceptions
        ],
        appointment_duration_minutes=record.appointment_duration_minutes,
        break_range=break_range,
    )


async def get_availability(
    session: AsyncSession, doctor_id: str, hospital_id: str
) -> AvailabilityPublic:
    """Load the availability for a doctor/hospital pair or raise AvailabilityNotFound.

    There is no fallback schedule: callers decide what to show when nothing is stored.
    """
    record = await _require_record(session, doctor_id, hospital_id)
    return await _to_public(session, record)


async def save_weekly_template(
    session: AsyncSession,
    doctor_id: str,
    hospital_id: str,
    template: dict[int, TimeRange],
) -> AvailabilityPublic:
    """Replace the whole weekly template. Weekdays missing from ``template`` become unavailable."""
    for weekday, time_range in template.items():
        if not 0 <= weekday <= 6:
            raise InvalidRange(f"weekday must be 0-6, got {weekday}", field=f"template.{weekday}")
        validate_range(time_range, field=f"template.{weekday}")
    record = await _get_or_create_record(session, doctor_id, hospital_id)
    await session.execute(delete(WeeklyRange).where(WeeklyRange.record_id == record.id))
    for weekday, time_range in sorted(template.items()):
        session.add(
            WeeklyRange(
                record_id=record.id,
                weekday=weekday,
                start_time=time_range.start_time,
                end_time=time_range.end_time,
            )
        )
    await session.flush()
    logger.info("Saved weekly template doctor=%s hospital=%s days=%s", doctor_id, hospital_id, sorted(template))
    return await _to_public(session, record)


async def update_settings(
    session: AsyncSession,
    doctor_id: str,
    hospital_id: str,
    appointment_duration_minutes: int | None = None,
    break_range: TimeRange | None = None,
    clear_break: bool = False,
) -> AvailabilityPublic:
    if appointment_duration_minutes is not None and appointment_duration_minutes <= 0:
        raise InvalidRange(
            "appointment_duration_minutes must be a positive number of minutes",
            field="appointment_duration_minutes",
        )
    if break_range is not None:
        validate_range(break_range, field="break_range")
    record = await _get_or_create_record(session, doctor_id, hospital_id)
    if appointment_duration_minutes is not None:
        record.appointment_duration_minutes = appointment_duration_minutes
    if clear_break:
        record.break_start = record.break_end = None
    elif break_range is not None:
        record.break_start = break_range.start_time
        record.break_end = break_range.end_time
    session.add(record)
    await session.flush()
    return await _to_public(session, record)


async def upsert_specific_date(
    session: AsyncSession,
    doctor_id: str,
    hospital_id: str,
    on_date: date,
    is_available: bool,
    time_range: TimeRange | None = None,
) -> AvailabilityPublic:
    """Insert or update the override for one date. Existing bookings are left untouched."""
    if is_available:
        if time_range is None:
            raise MissingTimeRange(
                f"time_range is required when {on_date.isoformat()} is marked available",
                field="time_range",
                date=on_date.isoformat(),
            )
        validate_range(time_range)
    record = await _get_or_create_record(session, doctor_id, hospital_id)
    result = await session.execute(
        select(SpecificDate).where(SpecificDate.record_id == record.id, SpecificDate.on_date == on_date)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = SpecificDate(record_id=record.id, on_date=on_date)
    entry.is_available = is_available
    entry.start_time = time_range.start_time if is_available else None
    entry.end_time = time_range.end_time if is_available else None
    session.add(entry)
    await session.flush()
    return await _to_public(session, record)


async def remove_specific_date(
    session: AsyncSession, doctor_id: str, hospital_id: str, on_date: date
) -> AvailabilityPublic:
    record = await _require_record(session, doctor_id, hospital_id)
    await session.execute(
        delete(SpecificDate).where(SpecificDate.record_id == record.id, SpecificDate.on_date == on_date)
    )
    await session.flush()
    return await _to_public(session, record)


async def upsert_exception(
    session: AsyncSession,
    doctor_id: str,
    hospital_id: str,
    on_date: date,
    is_available: bool = False,
    reason: str | None = None,
) -> AvailabilityPublic:
    record = await _get_or_create_record(session, doctor_id, hospital_id)
    result = await session.execute(
        select(AvailabilityException).where(
            AvailabilityException.record_id == record.id,
            AvailabilityException.on_date == on_date,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = AvailabilityException(record_id=record.id, on_date=on_date)
    entry.is_available = is_available
    entry.reason = reason
    session.add(entry)
    await session.flush()
    return await _to_public(session, record)


async def remove_exception(
    session: AsyncSession, doctor_id: str, hospital_id: str, on_date: date
) -> AvailabilityPublic:
    record = await _require_record(session, doctor_id, hospital_id)
    await session.execute(
        delete(AvailabilityException).where(
            AvailabilityException.record_id == record.id,
            AvailabilityException.on_date == on_date,
        )
    )
    await session.flush()
    return await _to_public(session, record)
