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
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentType,
    ReminderPreferences,
)
from app.models.reminder import ReminderChannel, ReminderEvent, ReminderEventPublic, ReminderStatus

__all__ = [
    "AvailabilityRecord",
    "WeeklyRange",
    "SpecificDate",
    "AvailabilityException",
    "TimeRange",
    "SpecificDatePublic",
    "ExceptionPublic",
    "AvailabilityPublic",
    "Appointment",
    "AppointmentCreate",
    "AppointmentPublic",
    "AppointmentStatus",
    "AppointmentType",
    "ReminderPreferences",
    "ReminderEvent",
    "ReminderEventPublic",
    "ReminderChannel",
    "ReminderStatus",
]
