"""Orchestration of slot lookups, bookings and their reminders."""

import logging
from datetime import date, datetime

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.errors import SlotNotAvailable, SlotTaken
from app.models.appointment import Appointment, AppointmentCreate
from app.models.availability import AvailabilityPublic
from app.services.appointment_service import book_slot, get_appointment, move_appointment
from app.services.availability_service import get_availability
from app.services.reminder_service import reschedule_reminders, schedule_reminders
from app.services.slot_service import Slot, get_open_slots, parse_hhmm, slots_for_date

logger = logging.getLogger(__name__)


async def open_slots_for(
    session: AsyncSession, doctor_id: str, hospital_id: str, d: date
) -> list[Slot]:
    availability = await get_availability(session, doctor_id, hospital_id)
    return await get_open_slots(session, availability, d)


async def _ensure_open(
    session: AsyncSession, availability: AvailabilityPublic, slot_date: date, slot_time: str
) -> None:
    """Check the request against freshly derived slots rather than what the client last saw."""
    parse_hhmm(slot_time, "slot_time")
    label = {
        "doctor_id": availability.doctor_id,
        "hospital_id": availability.hospital_id,
        "slot_date": slot_date.isoformat(),
        "slot_time": slot_time,
    }
    if slot_time not in {s.time for s in slots_for_date(availability, slot_date)}:
        raise SlotNotAvailable(f"{slot_time} on {slot_date.isoformat()} is outside the doctor's hours", **label)
    if slot_time not in {s.time for s in await get_open_slots(session, availability, slot_date)}:
        raise SlotTaken(f"{slot_time} on {slot_date.isoformat()} is already booked", **label)


def _committed_values(appointment: Appointment) -> dict:
    return {attr.key: getattr(appointment, attr.key) for attr in inspect(appointment).mapper.column_attrs}


async def _schedule_reminders_best_effort(session: AsyncSession, appointment: Appointment, reschedule: bool) -> None:
    committed = _committed_values(appointment)
    try:
        if reschedule:
            await reschedule_reminders(session, appointment)
        else:
            await schedule_reminders(session, appointment)
        await session.commit()
    except Exception as e:
        # The booking is already committed and stands without its reminders
        logger.exception("Reminder scheduling failed for appointment %s: %s", committed["id"], e)
        try:
            await session.rollback()
        except Exception:
            logger.exception("Rollback after reminder failure failed for appointment %s", committed["id"])
        # Rollback expires the instance; put back the committed state without a round trip
        for key, value in committed.items():
            set_committed_value(appointment, key, value)


async def request_booking(
    session: AsyncSession, data: AppointmentCreate, now: datetime | None = None
) -> Appointment:
    availability = await get_availability(session, data.doctor_id, data.hospital_id)
    await _ensure_open(session, availability, data.slot_date, data.slot_time)
    appointment = await book_slot(session, availability, data, now=now)
    await _schedule_reminders_best_effort(session, appointment, reschedule=False)
    return appointment


async def reschedule_booking(
    session: AsyncSession,
    appointment_id: int,
    slot_date: date,
    slot_time: str,
    now: datetime | None = None,
) -> Appointment:
    appointment = await get_appointment(session, appointment_id)
    availability = await get_availability(session, appointment.doctor_id, appointment.hospital_id)
    if (appointment.slot_date, appointment.slot_time) != (slot_date, slot_time):
        await _ensure_open(session, availability, slot_date, slot_time)
    appointment = await move_appointment(session, availability, appointment, slot_date, slot_time, now=now)
    await _schedule_reminders_best_effort(session, appointment, reschedule=True)
    return appointment
