from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session
from app.api.schemas.availability import SlotInfo, SlotsResponse
from app.services.availability_service import get_availability
from app.services.booking_service import open_slots_for
from app.services.slot_service import get_slots_with_availability

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/open", response_model=SlotsResponse)
async def open_slots(
    doctor_id: str = Query(...),
    hospital_id: str = Query(...),
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> SlotsResponse:
    """Bookable slots for the date: generated from the doctor's hours, minus booked ones."""
    slots = await open_slots_for(session, doctor_id, hospital_id, date_param)
    return SlotsResponse(
        doctor_id=doctor_id,
        hospital_id=hospital_id,
        date=date_param.isoformat(),
        slots=[SlotInfo(time=s.time, end_time=s.end_time, available=True) for s in slots],
    )


@router.get("", response_model=SlotsResponse)
async def all_slots(
    doctor_id: str = Query(...),
    hospital_id: str = Query(...),
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> SlotsResponse:
    """All slots for the date. Each slot has time, end_time, and available (bool)."""
    availability = await get_availability(session, doctor_id, hospital_id)
    slots = await get_slots_with_availability(session, availability, date_param)
    return SlotsResponse(
        doctor_id=doctor_id,
        hospital_id=hospital_id,
        date=date_param.isoformat(),
        slots=[SlotInfo(time=s.time, end_time=s.end_time, available=s.available) for s in slots],
    )
