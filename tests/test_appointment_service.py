import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select

from app.core.errors import (
    AlreadyTerminal,
    AppointmentNotFound,
    InvalidTime,
    InvalidTransition,
    SlotNotAvailable,
    SlotTaken,
)
from app.models.appointment import Appointment, AppointmentStatus
from app.models.reminder import ReminderEvent
from app.services import appointment_service
from app.services.booking_service import open_slots_for, request_booking, reschedule_booking

from tests.conftest import BEFORE_MONDAY, DOCTOR, HOSPITAL, MONDAY, TUESDAY, booking

AFTER_START = datetime(2030, 3, 11, 10, 45)


async def test_booking_creates_pending_appointment(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    assert appointment.id is not None
    assert appointment.status == AppointmentStatus.PENDING.value
    assert appointment.starts_at == datetime(2030, 3, 11, 10, 0)
    open_times = [s.time for s in await open_slots_for(session, DOCTOR, HOSPITAL, MONDAY)]
    assert "10:00" not in open_times
    assert len(open_times) == 5


async def test_auto_confirm_policy(session, monday_schedule, monkeypatch):
    monkeypatch.setattr(appointment_service.settings, "auto_confirm_bookings", True)
    appointment = await request_booking(session, booking("09:00"), now=BEFORE_MONDAY)
    assert appointment.status == AppointmentStatus.CONFIRMED.value


async def test_second_booking_for_same_slot_is_taken(session, monday_schedule):
    await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    with pytest.raises(SlotTaken) as exc:
        await request_booking(session, booking("10:00", patient_id="pat-2"), now=BEFORE_MONDAY)
    assert exc.value.context["slot_time"] == "10:00"


async def test_book_slot_rejects_taken_slot_directly(session, monday_schedule):
    await appointment_service.book_slot(session, monday_schedule, booking("11:00"), now=BEFORE_MONDAY)
    with pytest.raises(SlotTaken):
        await appointment_service.book_slot(
            session, monday_schedule, booking("11:00", patient_id="pat-2"), now=BEFORE_MONDAY
        )


@pytest.mark.parametrize(
    ("slot_date", "slot_time"),
    [
        (MONDAY, "08:30"),  # before hours
        (MONDAY, "12:00"),  # range end is exclusive
        (MONDAY, "09:15"),  # not on a slot boundary
        (TUESDAY, "10:00"),  # no template for Tuesday
    ],
)
async def test_slots_outside_hours_are_not_available(session, monday_schedule, slot_date, slot_time):
    with pytest.raises(SlotNotAvailable):
        await request_booking(session, booking(slot_time, slot_date=slot_date), now=BEFORE_MONDAY)


@pytest.mark.parametrize("slot_time", ["9:00", "25:00", "10:00am"])
async def test_malformed_slot_time_is_invalid(session, monday_schedule, slot_time):
    with pytest.raises(InvalidTime):
        await request_booking(session, booking(slot_time), now=BEFORE_MONDAY)


async def test_past_slot_is_not_available(session, monday_schedule):
    with pytest.raises(SlotNotAvailable):
        await request_booking(session, booking("10:00"), now=AFTER_START)


async def test_concurrent_requests_yield_exactly_one_booking(session_maker, monday_schedule):
    async def attempt(n: int):
        async with session_maker() as s:
            try:
                return await request_booking(s, booking("09:30", patient_id=f"pat-{n}"), now=BEFORE_MONDAY)
            except SlotTaken as e:
                return e

    results = await asyncio.gather(*(attempt(n) for n in range(8)))
    created = [r for r in results if isinstance(r, Appointment)]
    taken = [r for r in results if isinstance(r, SlotTaken)]
    assert len(created) == 1
    assert len(taken) == 7

    async with session_maker() as s:
        rows = (await s.execute(select(Appointment).where(Appointment.slot_time == "09:30"))).scalars().all()
    assert len(rows) == 1


async def test_concurrent_requests_for_different_slots_all_succeed(session_maker, monday_schedule):
    async def attempt(slot_time: str):
        async with session_maker() as s:
            return await request_booking(s, booking(slot_time), now=BEFORE_MONDAY)

    results = await asyncio.gather(*(attempt(t) for t in ("09:00", "09:30", "10:00", "10:30")))
    assert sorted(a.slot_time for a in results) == ["09:00", "09:30", "10:00", "10:30"]


async def test_cancellation_releases_slot(session, monday_schedule):
    first = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    await appointment_service.transition_status(
        session, first.id, AppointmentStatus.CONFIRMED, "doc-1", now=BEFORE_MONDAY
    )
    await session.commit()

    cancelled = await appointment_service.cancel_appointment(session, first.id, "pat-1", now=BEFORE_MONDAY)
    await session.commit()
    assert cancelled.status == AppointmentStatus.CANCELLED.value
    assert cancelled.cancelled_by == "pat-1"

    second = await request_booking(session, booking("10:00", patient_id="pat-2"), now=BEFORE_MONDAY)
    assert second.id != first.id
    assert second.status == AppointmentStatus.PENDING.value


async def test_cancellation_cancels_pending_reminders(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    await appointment_service.cancel_appointment(session, appointment.id, "pat-1", now=BEFORE_MONDAY)
    await session.commit()
    events = (
        await session.execute(select(ReminderEvent).where(ReminderEvent.appointment_id == appointment.id))
    ).scalars().all()
    assert len(events) == 2
    assert {e.status for e in events} == {"cancelled"}


async def test_cancel_unknown_appointment(session):
    with pytest.raises(AppointmentNotFound):
        await appointment_service.cancel_appointment(session, 999, "pat-1")


async def test_cannot_cancel_after_start(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    with pytest.raises(InvalidTransition):
        await appointment_service.cancel_appointment(session, appointment.id, "pat-1", now=AFTER_START)


async def test_full_lifecycle_to_completed(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    with pytest.raises(InvalidTransition):
        await appointment_service.transition_status(
            session, appointment.id, AppointmentStatus.COMPLETED, "doc-1", now=AFTER_START
        )
    await appointment_service.transition_status(
        session, appointment.id, AppointmentStatus.CONFIRMED, "doc-1", now=BEFORE_MONDAY
    )
    with pytest.raises(InvalidTransition):
        await appointment_service.transition_status(
            session, appointment.id, AppointmentStatus.NO_SHOW, "doc-1", now=BEFORE_MONDAY
        )
    done = await appointment_service.transition_status(
        session, appointment.id, AppointmentStatus.COMPLETED, "doc-1", now=AFTER_START
    )
    assert done.status == AppointmentStatus.COMPLETED.value


@pytest.mark.parametrize(
    "terminal", [AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW]
)
async def test_terminal_states_are_immutable(session, monday_schedule, terminal):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    if terminal == AppointmentStatus.CANCELLED:
        await appointment_service.cancel_appointment(session, appointment.id, "pat-1", now=BEFORE_MONDAY)
    else:
        await appointment_service.transition_status(
            session, appointment.id, AppointmentStatus.CONFIRMED, "doc-1", now=BEFORE_MONDAY
        )
        await appointment_service.transition_status(session, appointment.id, terminal, "doc-1", now=AFTER_START)
    await session.commit()
    updated_at = appointment.updated_at

    for target in AppointmentStatus:
        with pytest.raises(AlreadyTerminal):
            await appointment_service.transition_status(session, appointment.id, target, "doc-1", now=AFTER_START)
    await session.refresh(appointment)
    assert appointment.status == terminal.value
    assert appointment.updated_at == updated_at


async def test_reschedule_moves_booking_and_frees_old_slot(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    moved = await reschedule_booking(session, appointment.id, MONDAY, "11:30", now=BEFORE_MONDAY)
    assert moved.id == appointment.id
    assert moved.slot_time == "11:30"
    open_times = [s.time for s in await open_slots_for(session, DOCTOR, HOSPITAL, MONDAY)]
    assert "10:00" in open_times
    assert "11:30" not in open_times
    events = (
        await session.execute(select(ReminderEvent).where(ReminderEvent.appointment_id == appointment.id))
    ).scalars().all()
    assert sorted(e.scheduled_for for e in events) == [datetime(2030, 3, 10, 11, 30), datetime(2030, 3, 11, 10, 30)]


async def test_reschedule_into_taken_slot(session, monday_schedule):
    await request_booking(session, booking("11:00", patient_id="pat-2"), now=BEFORE_MONDAY)
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    with pytest.raises(SlotTaken):
        await reschedule_booking(session, appointment.id, MONDAY, "11:00", now=BEFORE_MONDAY)


async def test_list_appointments(session, monday_schedule):
    await request_booking(session, booking("11:00"), now=BEFORE_MONDAY)
    await request_booking(session, booking("09:00"), now=BEFORE_MONDAY)
    await request_booking(session, booking("10:00", patient_id="pat-2"), now=BEFORE_MONDAY)
    mine = await appointment_service.list_appointments_for_patient(session, "pat-1")
    assert [a.slot_time for a in mine] == ["09:00", "11:00"]
    doctors = await appointment_service.list_appointments_for_doctor(session, DOCTOR, HOSPITAL, from_date=MONDAY)
    assert len(doctors) == 3
