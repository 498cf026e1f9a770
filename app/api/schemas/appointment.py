from datetime import date
from typing import Annotated, Literal

from pydantic import BaseModel, EmailStr, Field

from app.api.schemas.availability import HHMM
from app.models.appointment import AppointmentType

Hours = Annotated[int, Field(gt=0, le=24 * 14)]


class ReminderPreferencesIn(BaseModel):
    email: bool = False
    sms: bool = False
    whatsapp: bool = False
    intervals: list[Hours] | None = Field(default=None, max_length=5)


class BookAppointmentRequest(BaseModel):
    doctor_id: str = Field(min_length=1, max_length=64)
    hospital_id: str = Field(min_length=1, max_length=64)
    slot_date: date
    slot_time: HHMM
    patient_id: str | None = Field(default=None, max_length=64)  # admins booking for a patient
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason: str | None = Field(default=None, max_length=1000)
    notes: str | None = Field(default=None, max_length=2000)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=20)
    reminder_preferences: ReminderPreferencesIn | None = None


class StatusTransitionRequest(BaseModel):
    status: Literal["confirmed", "cancelled", "completed", "no-show"]


class RescheduleRequest(BaseModel):
    slot_date: date
    slot_time: HHMM


class DispatchResponse(BaseModel):
    processed: int
