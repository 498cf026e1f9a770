import asyncio
import logging
from datetime import UTC, date, datetime
from weakref import WeakValueDictionary

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    AlreadyTerminal,
    AppointmentNotFound,
    InvalidTransition,
    SlotNotAvailable,
    SlotTaken,
)
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    ReminderPreferences,
)
from app.models.availability import AvailabilityPublic
from app.services.reminder_service import cancel_pending_reminders
from app.services.slot_service import parse_hhmm, slots_for_date

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
    ),
}

# One lock per (doctor, hospital, date, time); entries vanish once no request holds them
_slot_locks: "WeakValueDictionary[tuple[str, str, date, str], asyncio.Lock]" = WeakValueDictionary()


def _utc_naive_now() -> datetime:
    """Naive UTC for comparison with TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(UTC).replace(tzinfo=None)


def _slot_lock(key: tuple[str, str, date, str]) -> asyncio.Lock:
    lock = _slot_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _slot_locks[key] = lock
    return lock


def _slot_label(doctor_id: str, hospital_id: str, slot_date: date, slot_time: str) -> dict:
    return {
        "doctor_id": doctor_id,
        "hospital_id": hospital_id,
        "slot_date": slot_date.isoformat(),
        "slot_time": slot_time,
    }


def reminder_preferences_of(appointment: Appointment) -> ReminderPreferences:
    return ReminderPreferences(
        email=appointment.remind_email,
        sms=appointment.remind_sms,
        whatsapp=appointment.remind_whatsapp,
        intervals=list(appointment.reminder_intervals or []),
    )


def ensure_slot_offered(
    availability: AvailabilityPublic, slot_date: date, slot_time: str, now: datetime | None = None
) -> None:
    """Raise SlotNotAvailable unless the generator offers ``slot_time`` on ``slot_date`` in the future."""
    parse_hhmm(slot_time, "slot_time")
    label = _slot_label(availability.doctor_id, availability.hospital_id, slot_date, slot_time)
    if slot_time not in {s.time for s in slots_for_date(availability, slot_date)}:
        raise SlotNotAvailable(
            f"{slot_time} on {slot_date.isoformat()} is outside the doctor's hours", **label
        )
    hours, minutes = slot_time.split(":")
    starts_at = datetime(slot_date.year, slot_date.month, slot_date.day, int(hours), int(minutes))
    if starts_at <= (now or _utc_naive_now()):
        raise SlotNotAvailable(f"{slot_time} on {slot_date.isoformat()} is in the past", **label)


async def get_active_appointment_for_slot(
    session: AsyncSession, doctor_id: str, hospital_id: str, slot_date: date, slot_time: str
) -> Appointment | None:
    result = await session.execute(
        select(Appointment).where(
            Appointment.doctor_id == doctor_id,
            Appointment.hospital_id == hospital_id,
            Appointment.slot_date == slot_date,
            Appointment.slot_time == slot_time,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        )
    )
    return result.scalars().first()


async def get_appointment(session: AsyncSession, appointment_id: int) -> Appointment:
    appointment = await session.get(Appointment, appointment_id)
    if not appointment:
        raise AppointmentNotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
    return appointment


async def book_slot(
    session: AsyncSession,
    availability: AvailabilityPublic,
    data: AppointmentCreate,
    now: datetime | None = None,
) -> Appointment:
    """Create an appointment if the slot is offered and free.

    The occupancy check, the insert and the commit run under a per-slot lock, and the
    partial unique index on active slots rejects anything that slips past it from
    another process. Either way the loser sees SlotTaken.
    """
    ensure_slot_offered(availability, data.slot_date, data.slot_time, now)
    label = _slot_label(data.doctor_id, data.hospital_id, data.slot_date, data.slot_time)
    prefs = data.reminder_preferences or ReminderPreferences(
        **{c: True for c in settings.default_reminder_channels if c in ("email", "sms", "whatsapp")}
    )
    intervals = prefs.intervals if prefs.intervals is not None else settings.default_reminder_intervals
    status = AppointmentStatus.CONFIRMED if settings.auto_confirm_bookings else AppointmentStatus.PENDING

    key = (data.doctor_id, data.hospital_id, data.slot_date, data.slot_time)
    async with _slot_lock(key):
        existing = await get_active_appointment_for_slot(session, *key)
        if existing:
            raise SlotTaken(f"{data.slot_time} on {data.slot_date.isoformat()} is already booked", **label)
        appointment = Appointment(
            patient_id=data.patient_id,
            doctor_id=data.doctor_id,
            hospital_id=data.hospital_id,
            slot_date=data.slot_date,
            slot_time=data.slot_time,
            status=status.value,
            appointment_type=data.appointment_type.value,
            reason=data.reason,
            notes=data.notes,
            contact_email=data.contact_email,
            contact_phone=data.contact_phone,
            remind_email=prefs.email,
            remind_sms=prefs.sms,
            remind_whatsapp=prefs.whatsapp,
            reminder_intervals=sorted(set(intervals), reverse=True),
        )
        session.add(appointment)
        try:
            await session.flush()
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise SlotTaken(
                f"{data.slot_time} on {data.slot_date.isoformat()} is already booked", **label
            ) from e
    logger.info(
        "Booked appointment %s doctor=%s hospital=%s %s %s status=%s",
        appointment.id, data.doctor_id, data.hospital_id, data.slot_date, data.slot_time, appointment.status,
    )
    return appointment


async def move_appointment(
    session: AsyncSession,
    availability: AvailabilityPublic,
    appointment: Appointment,
    slot_date: date,
    slot_time: str,
    now: datetime | None = None,
) -> Appointment:
    """Move a live appointment to another slot of the same doctor and hospital."""
    if appointment.is_terminal:
        raise AlreadyTerminal(
            f"Appointment {appointment.id} is {appointment.status} and cannot be rescheduled",
            appointment_id=appointment.id,
            status=appointment.status,
        )
    ensure_slot_offered(availability, slot_date, slot_time, now)
    label = _slot_label(appointment.doctor_id, appointment.hospital_id, slot_date, slot_time)
    key = (appointment.doctor_id, appointment.hospital_id, slot_date, slot_time)
    async with _slot_lock(key):
        existing = await get_active_appointment_for_slot(session, *key)
        if existing and existing.id != appointment.id:
            raise SlotTaken(f"{slot_time} on {slot_date.isoformat()} is already booked", **label)
        appointment.slot_date = slot_date
        appointment.slot_time = slot_time
        appointment.updated_at = _utc_naive_now()
        session.add(appointment)
        try:
            await session.flush()
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise SlotTaken(f"{slot_time} on {slot_date.isoformat()} is already booked", **label) from e
    logger.info("Rescheduled appointment %s to %s %s", appointment.id, slot_date, slot_time)
    return appointment


async def transition_status(
    session: AsyncSession,
    appointment_id: int,
    new_status: AppointmentStatus,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Apply one state-machine transition.

    Terminal appointments raise AlreadyTerminal and are never modified. Cancelling is
    only possible before the start time; completed and no-show only after it.
    """
    appointment = await get_appointment(session, appointment_id)
    current = AppointmentStatus(appointment.status)
    if appointment.is_terminal:
        raise AlreadyTerminal(
            f"Appointment {appointment_id} is already {current.value}",
            appointment_id=appointment_id,
            status=current.value,
        )
    if new_status not in _ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(
            f"Cannot move appointment {appointment_id} from {current.value} to {new_status.value}",
            appointment_id=appointment_id,
            status=current.value,
            requested=new_status.value,
        )
    now = now or _utc_naive_now()
    if new_status == AppointmentStatus.CANCELLED and now >= appointment.starts_at:
        raise InvalidTransition(
            f"Appointment {appointment_id} has already started and can no longer be cancelled",
            appointment_id=appointment_id,
            status=current.value,
            requested=new_status.value,
        )
    if new_status in (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW) and now < appointment.starts_at:
        raise InvalidTransition(
            f"Appointment {appointment_id} has not started yet",
            appointment_id=appointment_id,
            status=current.value,
            requested=new_status.value,
        )

    appointment.status = new_status.value
    appointment.updated_at = now
    if new_status == AppointmentStatus.CANCELLED:
        appointment.cancelled_by = actor_id
        appointment.cancelled_at = now
        cancelled = await cancel_pending_reminders(session, appointment.id)
        logger.info("Cancelled appointment %s by %s (%d reminder(s) dropped)", appointment_id, actor_id, cancelled)
    else:
        logger.info("Appointment %s: %s -> %s", appointment_id, current.value, new_status.value)
    session.add(appointment)
    await session.flush()
    return appointment


async def cancel_appointment(
    session: AsyncSession, appointment_id: int, actor_id: str, now: datetime | None = None
) -> Appointment:
    """Cancel and release the slot. Pending reminders are cancelled with it."""
    return await transition_status(session, appointment_id, AppointmentStatus.CANCELLED, actor_id, now)


async def list_appointments_for_patient(
    session: AsyncSession, patient_id: str, from_date: date | None = None
) -> list[Appointment]:
    q = (
        select(Appointment)
        .where(Appointment.patient_id == patient_id)
        .order_by(Appointment.slot_date, Appointment.slot_time)
    )
    if from_date:
        q = q.where(Appointment.slot_date >= from_date)
    result = await session.execute(q)
    return list(result.scalars().all())


async def list_appointments_for_doctor(
    session: AsyncSession,
    doctor_id: str,
    hospital_id: str | None = None,
    from_date: date | None = None,
) -> list[Appointment]:
    q = (
        select(Appointment)
        .where(Appointment.doctor_id == doctor_id)
        .order_by(Appointment.slot_date, Appointment.slot_time)
    )
    if hospital_id:
        q = q.where(Appointment.hospital_id == hospital_id)
    if from_date:
        q = q.where(Appointment.slot_date >= from_date)
    result = await session.execute(q)
    return list(result.scalars().all())
