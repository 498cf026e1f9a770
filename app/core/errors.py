"""Domain errors raised by the scheduling services.

Each error knows the HTTP status it maps to and a stable ``code`` so clients can
tell a conflict (offer another slot) from a state error (fix the request).
"""
from typing import Any


class SchedulingError(Exception):
    status_code: int = 400
    code: str = "scheduling_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        body.update(self.context)
        return body


# Validation


class InvalidTime(SchedulingError):
    status_code = 422
    code = "invalid_time"


class InvalidRange(SchedulingError):
    status_code = 422
    code = "invalid_range"


class MissingTimeRange(SchedulingError):
    status_code = 422
    code = "missing_time_range"


# Not found


class AvailabilityNotFound(SchedulingError):
    status_code = 404
    code = "availability_not_found"


class AppointmentNotFound(SchedulingError):
    status_code = 404
    code = "appointment_not_found"


# Booking conflicts


class SlotNotAvailable(SchedulingError):
    status_code = 400
    code = "slot_not_available"


class SlotTaken(SchedulingError):
    status_code = 409
    code = "slot_taken"


# State machine


class AlreadyTerminal(SchedulingError):
    status_code = 409
    code = "already_terminal"


class InvalidTransition(SchedulingError):
    status_code = 409
    code = "invalid_transition"
