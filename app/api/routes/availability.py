from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import ensure_can_edit_availability, get_session, require_doctor_or_admin
from app.api.schemas.availability import (
    AvailabilitySettingsRequest,
    ExceptionRequest,
    SpecificDateRequest,
    TimeRangeIn,
    WeeklyTemplateRequest,
)
from app.core.security import Actor
from app.models.availability import AvailabilityPublic, TimeRange
from app.services import availability_service

router = APIRouter(prefix="/availability", tags=["availability"])


def _time_range(r: TimeRangeIn | None) -> TimeRange | None:
    return TimeRange(start_time=r.start_time, end_time=r.end_time) if r else None


@router.get("/{doctor_id}/{hospital_id}", response_model=AvailabilityPublic)
async def get_availability(
    doctor_id: str,
    hospital_id: str,
    session: AsyncSession = Depends(get_session),
) -> AvailabilityPublic:
    return await availability_service.get_availability(session, doctor_id, hospital_id)


@router.put("/{doctor_id}/{hospital_id}/weekly", response_model=AvailabilityPublic)
async def save_weekly_template(
    doctor_id: str,
    hospital_id: str,
    body: WeeklyTemplateRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_doctor_or_admin),
) -> AvailabilityPublic:
    ensure_can_edit_availability(actor, doctor_id)
    template = {day: _time_range(r) for day, r in body.template.items()}
    return await availability_service.save_weekly_template(session, doctor_id, hospital_id, template)


@router.patch("/{doctor_id}/{hospital_id}/settings", response_model=AvailabilityPublic)
async def update_settings(
    doctor_id: str,
    hospital_id: str,
    body: AvailabilitySettingsRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_doctor_or_admin),
) -> AvailabilityPublic:
    ensure_can_edit_availability(actor, doctor_id)
    return await availability_service.update_settings(
        session,
        doctor_id,
        hospital_id,
        appointment_duration_minutes=body.appointment_duration_minutes,
        break_range=_time_range(body.break_range),
        clear_break=body.clear_break,
    )


@router.put("/{doctor_id}/{hospital_id}/dates/{on_date}", response_model=AvailabilityPublic)
async def upsert_specific_date(
    doctor_id: str,
    hospital_id: str,
    on_date: date,
    body: SpecificDateRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_doctor_or_admin),
) -> AvailabilityPublic:
    ensure_can_edit_availability(actor, doctor_id)
    return await availability_service.upsert_specific_date(
        session, doctor_id, hospital_id, on_date, body.is_available, _time_range(body.time_range)
    )


@router.delete("/{doctor_id}/{hospital_id}/dates/{on_date}", response_model=AvailabilityPublic)
async def remove_specific_date(
    doctor_id: str,
    hospital_id: str,
    on_date: date,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_doctor_or_admin),
) -> AvailabilityPublic:
    ensure_can_edit_availability(actor, doctor_id)
    return await availability_service.remove_specific_date(session, doctor_id, hospital_id, on_date)


@router.put("/{doctor_id}/{hospital_id}/exceptions/{on_date}", response_model=AvailabilityPublic)
async def upsert_exception(
    doctor_id: str,
    hospital_id: str,
    on_date: date,
    body: ExceptionRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_doctor_or_admin),
) -> AvailabilityPublic:
    ensure_can_edit_availability(actor, doctor_id)
    return await availability_service.upsert_exception(
        session, doctor_id, hospital_id, on_date, body.is_available, body.reason
    )


@router.delete("/{doctor_id}/{hospital_id}/exceptions/{on_date}", response_model=AvailabilityPublic)
async def remove_exception(
    doctor_id: str,
    hospital_id: str,
    on_date: date,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(require_doctor_or_admin),
) -> AvailabilityPublic:
    ensure_can_edit_availability(actor, doctor_id)
    return await availability_service.remove_exception(session, doctor_id, hospital_id, on_date)
