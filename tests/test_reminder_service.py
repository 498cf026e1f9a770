import asyncio
from datetime import date, datetime

from sqlalchemy import select

from app.models.appointment import Appointment, AppointmentStatus, ReminderPreferences
from app.models.availability import TimeRange
from app.models.reminder import ReminderEvent, ReminderStatus
from app.services import availability_service, booking_service
from app.services.appointment_service import cancel_appointment, transition_status
from app.services.booking_service import request_booking
from app.services.notification_service import DispatchResult, Notification
from app.services.reminder_service import dispatch_due_reminders, list_reminders, schedule_reminders

from tests.conftest import BEFORE_MONDAY, DOCTOR, HOSPITAL, booking


class RecordingDispatcher:
    def __init__(self, results: list[DispatchResult] | None = None) -> None:
        self.sent: list[Notification] = []
        self._results = list(results or [])

    async def send(self, notification: Notification) -> DispatchResult:
        self.sent.append(notification)
        return self._results.pop(0) if self._results else DispatchResult(True)


async def _events(session, appointment_id):
    result = await session.execute(
        select(ReminderEvent).where(ReminderEvent.appointment_id == appointment_id).order_by(ReminderEvent.scheduled_for)
    )
    return list(result.scalars().all())


async def test_reminders_derived_from_booking(session):
    await availability_service.save_weekly_template(
        session, DOCTOR, HOSPITAL, {1: TimeRange(start_time="09:00", end_time="12:00")}
    )
    await session.commit()
    appointment = await request_booking(
        session,
        booking(
            "10:00",
            slot_date=date(2025, 3, 10),
            reminder_preferences=ReminderPreferences(email=True, intervals=[24, 1]),
        ),
        now=datetime(2025, 3, 1, 8, 0),
    )
    events = await _events(session, appointment.id)
    assert [(e.channel, e.offset_hours, e.scheduled_for) for e in events] == [
        ("email", 24, datetime(2025, 3, 9, 10, 0)),
        ("email", 1, datetime(2025, 3, 10, 9, 0)),
    ]
    assert {e.status for e in events} == {ReminderStatus.PENDING.value}


async def test_one_event_per_channel_and_offset(session, monday_schedule):
    appointment = await request_booking(
        session,
        booking("09:00", reminder_preferences=ReminderPreferences(email=True, sms=True, intervals=[1, 24, 1])),
        now=BEFORE_MONDAY,
    )
    events = await _events(session, appointment.id)
    assert sorted((e.channel, e.offset_hours) for e in events) == [
        ("email", 1), ("email", 24), ("sms", 1), ("sms", 24),
    ]
    # Scheduling again adds nothing
    assert await schedule_reminders(session, appointment) == []


async def test_default_preferences_use_configured_channels(session, monday_schedule):
    appointment = await request_booking(session, booking("09:30", reminder_preferences=None), now=BEFORE_MONDAY)
    events = await list_reminders(session, appointment.id)
    assert [(e.channel, e.offset_hours) for e in events] == [("email", 24), ("email", 1)]


async def test_dispatch_sends_due_events_only(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    dispatcher = RecordingDispatcher()

    processed = await dispatch_due_reminders(session, dispatcher, now=datetime(2030, 3, 10, 12, 0))
    await session.commit()

    assert processed == 1
    assert dispatcher.sent[0].recipient == "patient@example.com"
    assert dispatcher.sent[0].scheduled_for == datetime(2030, 3, 10, 10, 0)
    statuses = {e.offset_hours: e.status for e in await _events(session, appointment.id)}
    assert statuses == {24: ReminderStatus.SENT.value, 1: ReminderStatus.PENDING.value}


async def test_past_due_events_go_out_on_next_poll(session, monday_schedule):
    # Booked 30 minutes before the slot: both reminders are already past due
    appointment = await request_booking(session, booking("10:00"), now=datetime(2030, 3, 11, 9, 30))
    events = await _events(session, appointment.id)
    assert len(events) == 2

    dispatcher = RecordingDispatcher()
    processed = await dispatch_due_reminders(session, dispatcher, now=datetime(2030, 3, 11, 9, 31))
    assert processed == 2
    assert {e.status for e in await _events(session, appointment.id)} == {ReminderStatus.SENT.value}


async def test_failed_dispatch_is_recorded_and_not_retried(session, monday_schedule):
    appointment = await request_booking(
        session,
        booking("10:00", reminder_preferences=ReminderPreferences(sms=True, intervals=[24])),
        now=BEFORE_MONDAY,
    )
    dispatcher = RecordingDispatcher([DispatchResult(False, "Rate limit exceeded for recipient")])
    now = datetime(2030, 3, 10, 12, 0)

    assert await dispatch_due_reminders(session, dispatcher, now=now) == 1
    [event] = await _events(session, appointment.id)
    assert event.status == ReminderStatus.FAILED.value
    assert event.error == "Rate limit exceeded for recipient"

    assert await dispatch_due_reminders(session, dispatcher, now=now) == 0
    assert len(dispatcher.sent) == 1


async def test_missing_recipient_fails_event(session, monday_schedule):
    appointment = await request_booking(
        session,
        booking(
            "10:00",
            contact_phone=None,
            reminder_preferences=ReminderPreferences(whatsapp=True, intervals=[24]),
        ),
        now=BEFORE_MONDAY,
    )
    dispatcher = RecordingDispatcher()
    await dispatch_due_reminders(session, dispatcher, now=datetime(2030, 3, 10, 12, 0))
    [event] = await _events(session, appointment.id)
    assert event.status == ReminderStatus.FAILED.value
    assert dispatcher.sent == []


async def test_cancelled_appointment_reminders_are_not_dispatched(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    await cancel_appointment(session, appointment.id, "pat-1", now=BEFORE_MONDAY)
    dispatcher = RecordingDispatcher()
    assert await dispatch_due_reminders(session, dispatcher, now=datetime(2030, 3, 11, 9, 30)) == 0
    assert dispatcher.sent == []


async def test_confirmed_appointment_reminders_are_dispatched(session, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    await transition_status(session, appointment.id, AppointmentStatus.CONFIRMED, "doc-1", now=BEFORE_MONDAY)
    dispatcher = RecordingDispatcher()
    assert await dispatch_due_reminders(session, dispatcher, now=datetime(2030, 3, 11, 9, 30)) == 2


async def test_reminder_failure_does_not_undo_booking(session, monday_schedule, monkeypatch):
    async def boom(session, appointment):
        raise RuntimeError("reminder store down")

    monkeypatch.setattr(booking_service, "schedule_reminders", boom)
    appointment = await request_booking(session, booking("11:00"), now=BEFORE_MONDAY)
    assert appointment.id is not None
    assert appointment.slot_time == "11:00"
    assert await _events(session, appointment.id) == []


async def test_empty_interval_list_means_no_reminders(session, monday_schedule):
    appointment = await request_booking(
        session,
        booking("10:30", reminder_preferences=ReminderPreferences(email=True, intervals=[])),
        now=BEFORE_MONDAY,
    )
    assert appointment.reminder_intervals == []
    assert await _events(session, appointment.id) == []


async def test_concurrent_dispatch_passes_send_each_reminder_once(session, session_maker, monday_schedule):
    appointment = await request_booking(session, booking("10:00"), now=BEFORE_MONDAY)
    dispatcher = RecordingDispatcher()

    async def dispatch_pass():
        async with session_maker() as s:
            processed = await dispatch_due_reminders(s, dispatcher, now=datetime(2030, 3, 11, 9, 30))
            await s.commit()
            return processed

    results = await asyncio.gather(dispatch_pass(), dispatch_pass())

    assert sum(results) == 2
    assert len(dispatcher.sent) == 2
    async with session_maker() as s:
        assert {e.status for e in await _events(s, appointment.id)} == {ReminderStatus.SENT.value}


async def test_booking_survives_failed_rollback_after_reminder_error(session, session_maker, monday_schedule, monkeypatch):
    async def boom(session, appointment):
        raise RuntimeError("reminder store down")

    async def broken_rollback():
        raise ConnectionError("connection lost")

    monkeypatch.setattr(booking_service, "schedule_reminders", boom)
    monkeypatch.setattr(session, "rollback", broken_rollback)
    appointment = await request_booking(session, booking("11:30"), now=BEFORE_MONDAY)

    assert appointment.slot_time == "11:30"
    assert appointment.status == AppointmentStatus.PENDING.value
    async with session_maker() as s:
        stored = await s.get(Appointment, appointment.id)
    assert stored is not None
    assert stored.slot_time == "11:30"
