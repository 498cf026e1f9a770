import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.appointment import Appointment, AppointmentStatus
from app.models.reminder import ReminderChannel, ReminderEvent, ReminderStatus
from app.services.email_service import build_reminder_text
from app.services.notification_service import Notification, NotificationDispatcher

logger = logging.getLogger(__name__)

_LIVE_APPOINTMENT_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


def _utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _enabled_channels(appointment: Appointment) -> list[ReminderChannel]:
    channels = []
    if appointment.remind_email:
        channels.append(ReminderChannel.EMAIL)
    if appointment.remind_sms:
        channels.append(ReminderChannel.SMS)
    if appointment.remind_whatsapp:
        channels.append(ReminderChannel.WHATSAPP)
    return channels


def _offsets(appointment: Appointment) -> list[int]:
    # Defaults are resolved at booking time; an empty list means no reminders
    return sorted({int(h) for h in appointment.reminder_intervals or [] if int(h) > 0}, reverse=True)


async def schedule_reminders(session: AsyncSession, appointment: Appointment) -> list[ReminderEvent]:
    """Create one pending reminder per enabled channel and offset.

    ``scheduled_for`` may already be in the past; such events stay pending and go out on
    the next dispatch pass.
    """
    starts_at = appointment.starts_at
    message = build_reminder_text(appointment)
    existing = await session.execute(
        select(ReminderEvent.channel, ReminderEvent.offset_hours).where(
            ReminderEvent.appointment_id == appointment.id
        )
    )
    already = {(channel, offset) for channel, offset in existing.all()}
    events: list[ReminderEvent] = []
    for channel in _enabled_channels(appointment):
        for offset in _offsets(appointment):
            if (channel.value, offset) in already:
                continue
            event = ReminderEvent(
                appointment_id=appointment.id,
                channel=channel.value,
                offset_hours=offset,
                scheduled_for=starts_at - timedelta(hours=offset),
                message=message,
            )
            session.add(event)
            events.append(event)
    await session.flush()
    logger.debug("Scheduled %d reminder(s) for appointment %s", len(events), appointment.id)
    return events


async def cancel_pending_reminders(session: AsyncSession, appointment_id: int) -> int:
    result = await session.execute(
        update(ReminderEvent)
        .where(
            ReminderEvent.appointment_id == appointment_id,
            ReminderEvent.status == ReminderStatus.PENDING.value,
        )
        .values(status=ReminderStatus.CANCELLED.value)
    )
    return result.rowcount or 0


async def reschedule_reminders(session: AsyncSession, appointment: Appointment) -> list[ReminderEvent]:
    """Drop reminders not yet sent and derive them again from the current slot."""
    await session.execute(
        delete(ReminderEvent)
        .where(
            ReminderEvent.appointment_id == appointment.id,
            ReminderEvent.status.in_((ReminderStatus.PENDING.value, ReminderStatus.CANCELLED.value)),
        )
    )
    await session.flush()
    return await schedule_reminders(session, appointment)


async def list_reminders(session: AsyncSession, appointment_id: int) -> list[ReminderEvent]:
    result = await session.execute(
        select(ReminderEvent)
        .where(ReminderEvent.appointment_id == appointment_id)
        .order_by(ReminderEvent.scheduled_for, ReminderEvent.channel)
    )
    return list(result.scalars().all())


def _recipient(appointment: Appointment, channel: str) -> str | None:
    if channel == ReminderChannel.EMAIL.value:
        return appointment.contact_email
    return appointment.contact_phone


async def _claim(session: AsyncSession, event_id: int) -> bool:
    """Move one event out of pending; False when another dispatch pass got there first.

    The conditional update blocks on a concurrent claim of the same row and then matches
    nothing, so each event is sent at most once.
    """
    result = await session.execute(
        update(ReminderEvent)
        .where(ReminderEvent.id == event_id, ReminderEvent.status == ReminderStatus.PENDING.value)
        .values(status=ReminderStatus.SENDING.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def dispatch_due_reminders(
    session: AsyncSession,
    dispatcher: NotificationDispatcher,
    now: datetime | None = None,
    limit: int | None = None,
) -> int:
    """Hand every due pending reminder to the dispatcher and record the outcome.

    Each event is claimed before it is sent. Failures, including rate-limit rejections,
    mark the event failed; nothing is retried here. Returns the number of events this
    pass processed.
    """
    now = now or _utc_naive_now()
    result = await session.execute(
        select(ReminderEvent, Appointment)
        .join(Appointment, Appointment.id == ReminderEvent.appointment_id)
        .where(
            ReminderEvent.status == ReminderStatus.PENDING.value,
            ReminderEvent.scheduled_for <= now,
            Appointment.status.in_(_LIVE_APPOINTMENT_STATUSES),
        )
        .order_by(ReminderEvent.scheduled_for, ReminderEvent.id)
        .limit(limit or settings.reminder_batch_size)
    )
    processed = 0
    for event, appointment in result.all():
        if not await _claim(session, event.id):
            logger.debug("Reminder %s already claimed by another dispatch pass", event.id)
            continue
        processed += 1
        recipient = _recipient(appointment, event.channel)
        if not recipient:
            event.status = ReminderStatus.FAILED.value
            event.error = f"No recipient for channel {event.channel}"
        else:
            outcome = await dispatcher.send(
                Notification(
                    channel=event.channel,
                    recipient=recipient,
                    message=event.message,
                    scheduled_for=event.scheduled_for,
                )
            )
            if outcome.ok:
                event.status = ReminderStatus.SENT.value
                event.sent_at = now
                event.error = None
            else:
                event.status = ReminderStatus.FAILED.value
                event.error = outcome.error
        if event.status == ReminderStatus.FAILED.value:
            logger.warning("Reminder %s (%s) failed: %s", event.id, event.channel, event.error)
        else:
            logger.info("Reminder %s sent via %s for appointment %s", event.id, event.channel, appointment.id)
        session.add(event)
    await session.flush()
    return processed
