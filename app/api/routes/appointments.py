import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_actor, get_session
from app.api.schemas.appointment import (
    BookAppointmentRequest,
    RescheduleRequest,
    StatusTransitionRequest,
)
from app.core.security import Actor
from app.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentPublic,
    AppointmentStatus,
    ReminderPreferences,
)
from app.models.reminder import ReminderEventPublic
from app.services.appointment_service import (
    cancel_appointment,
    get_appointment,
    list_appointments_for_doctor,
    list_appointments_for_patient,
    reminder_preferences_of,
    transition_status,
)
from app.services.booking_service import request_booking, reschedule_booking
from app.services.reminder_service import list_reminders

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


def _to_public(a: Appointment) -> AppointmentPublic:
    return AppointmentPublic(
        id=a.id,
        patient_id=a.patient_id,
        doctor_id=a.doctor_id,
        hospital_id=a.hospital_id,
        slot_date=a.slot_date,
        slot_time=a.slot_time,
        status=a.status,
        appointment_type=a.appointment_type,
        reason=a.reason,
        notes=a.notes,
        reminder_preferences=reminder_preferences_of(a),
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


def _is_party(actor: Actor, a: Appointment) -> bool:
    if actor.is_admin:
        return True
    if actor.is_patient:
        return a.patient_id == actor.id
    return actor.is_doctor and a.doctor_id == actor.id


def _ensure_party(actor: Actor, a: Appointment) -> None:
    if not _is_party(actor, a):
        # Same answer as a missing id so appointment ids cannot be enumerated
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    if actor.is_admin:
        if not body.patient_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="patient_id is required when booking on behalf of a patient",
            )
        patient_id = body.patient_id
        logger.info("Admin %s booking on behalf of patient %s", actor.id, patient_id)
    elif actor.is_patient:
        if body.patient_id and body.patient_id != actor.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Patients can only book for themselves",
            )
        patient_id = actor.id
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only patients can book appointments")

    prefs = None
    if body.reminder_preferences is not None:
        prefs = ReminderPreferences(**body.reminder_preferences.model_dump())
    data = AppointmentCreate(
        patient_id=patient_id,
        doctor_id=body.doctor_id,
        hospital_id=body.hospital_id,
        slot_date=body.slot_date,
        slot_time=body.slot_time,
        appointment_type=body.appointment_type,
        reason=body.reason,
        notes=body.notes,
        contact_email=str(body.contact_email) if body.contact_email else None,
        contact_phone=body.contact_phone,
        reminder_preferences=prefs,
    )
    appointment = await request_booking(session, data)
    return _to_public(appointment)


@router.get("", response_model=list[AppointmentPublic])
async def list_my_appointments(
    from_date: date | None = Query(None, alias="from_date"),
    hospital_id: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[AppointmentPublic]:
    if actor.is_doctor:
        appointments = await list_appointments_for_doctor(session, actor.id, hospital_id, from_date=from_date)
    else:
        appointments = await list_appointments_for_patient(session, actor.id, from_date=from_date)
    return [_to_public(a) for a in appointments]


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_one(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await get_appointment(session, appointment_id)
    _ensure_party(actor, appointment)
    return _to_public(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentPublic)
async def cancel(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await get_appointment(session, appointment_id)
    _ensure_party(actor, appointment)
    appointment = await cancel_appointment(session, appointment_id, actor.id)
    return _to_public(appointment)


@router.post("/{appointment_id}/status", response_model=AppointmentPublic)
async def change_status(
    appointment_id: int,
    body: StatusTransitionRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await get_appointment(session, appointment_id)
    _ensure_party(actor, appointment)
    new_status = AppointmentStatus(body.status)
    if new_status != AppointmentStatus.CANCELLED and actor.is_patient:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the doctor or an admin can mark an appointment {new_status.value}",
        )
    appointment = await transition_status(session, appointment_id, new_status, actor.id)
    return _to_public(appointment)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentPublic)
async def reschedule(
    appointment_id: int,
    body: RescheduleRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> AppointmentPublic:
    appointment = await get_appointment(session, appointment_id)
    _ensure_party(actor, appointment)
    appointment = await reschedule_booking(session, appointment_id, body.slot_date, body.slot_time)
    return _to_public(appointment)


@router.get("/{appointment_id}/reminders", response_model=list[ReminderEventPublic])
async def reminders(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> list[ReminderEventPublic]:
    appointment = await get_appointment(session, appointment_id)
    _ensure_party(actor, appointment)
    events = await list_reminders(session, appointment_id)
    return [ReminderEventPublic.model_validate(e, from_attributes=True) for e in events]
