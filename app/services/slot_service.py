import re
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidRange, InvalidTime
from app.models.appointment import Appointment, AppointmentStatus
from app.models.availability import AvailabilityPublic, TimeRange

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class Slot:
    time: str
    end_time: str
    available: bool = True


def parse_hhmm(value: str, field: str = "time") -> int:
    """Minutes since midnight for a 24h ``HH:MM`` string."""
    if not isinstance(value, str) or not _HHMM.match(value):
        raise InvalidTime(f"{field} must be a 24h HH:MM time, got {value!r}", field=field)
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def validate_range(time_range: TimeRange, field: str = "time_range") -> TimeRange:
    start = parse_hhmm(time_range.start_time, f"{field}.start_time")
    end = parse_hhmm(time_range.end_time, f"{field}.end_time")
    if start >= end:
        raise InvalidRange(
            f"{field}: start_time {time_range.start_time} must be before end_time {time_range.end_time}",
            field=field,
        )
    return time_range


def weekday_index(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (d.weekday() + 1) % 7


def resolve_effective_range(availability: AvailabilityPublic, d: date) -> TimeRange | None:
    """Single time range governing ``d``, or None when the date is unavailable.

    Exceptions win over specific dates, which win over the weekly template. An
    exception marked available carries no hours of its own and defers to the
    layers below it.
    """
    for exc in availability.exceptions:
        if exc.on_date == d:
            if not exc.is_available:
                return None
            break
    for entry in availability.specific_dates:
        if entry.on_date == d:
            return entry.time_range if entry.is_available else None
    return availability.weekly_template.get(weekday_index(d))


def generate_slots(
    time_range: TimeRange | None,
    duration_minutes: int,
    break_range: TimeRange | None = None,
) -> list[Slot]:
    """Split ``[start, end)`` into back-to-back slots of ``duration_minutes``.

    A trailing remainder shorter than one slot is dropped. Slots overlapping the
    break window are skipped.
    """
    if time_range is None or duration_minutes <= 0:
        return []
    start = parse_hhmm(time_range.start_time, "start_time")
    end = parse_hhmm(time_range.end_time, "end_time")
    break_start = break_end = None
    if break_range is not None:
        break_start = parse_hhmm(break_range.start_time, "break_start")
        break_end = parse_hhmm(break_range.end_time, "break_end")
    slots: list[Slot] = []
    count = (end - start) // duration_minutes
    for i in range(max(count, 0)):
        slot_start = start + i * duration_minutes
        slot_end = slot_start + duration_minutes
        if break_start is not None and slot_start < break_end and slot_end > break_start:
            continue
        slots.append(Slot(time=format_hhmm(slot_start), end_time=format_hhmm(slot_end)))
    return slots


def slots_for_date(availability: AvailabilityPublic, d: date) -> list[Slot]:
    return generate_slots(
        resolve_effective_range(availability, d),
        availability.appointment_duration_minutes,
        availability.break_range,
    )


async def get_booked_slot_times(
    session: AsyncSession, doctor_id: str, hospital_id: str, d: date
) -> set[str]:
    result = await session.execute(
        select(Appointment.slot_time).where(
            Appointment.doctor_id == doctor_id,
            Appointment.hospital_id == hospital_id,
            Appointment.slot_date == d,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        )
    )
    return {row[0] for row in result.all()}


async def get_slots_with_availability(
    session: AsyncSession, availability: AvailabilityPublic, d: date
) -> list[Slot]:
    """Every generated slot for the date, flagged unavailable when already booked."""
    slots = slots_for_date(availability, d)
    if not slots:
        return []
    booked = await get_booked_slot_times(session, availability.doctor_id, availability.hospital_id, d)
    return [Slot(time=s.time, end_time=s.end_time, available=s.time not in booked) for s in slots]


async def get_open_slots(
    session: AsyncSession, availability: AvailabilityPublic, d: date
) -> list[Slot]:
    return [s for s in await get_slots_with_availability(session, availability, d) if s.available]
