# barbershop/routers/staff_routes.py

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from barbershop.deps import get_service
from barbershop.schemas import AvailabilityResponse, SlotPublic
from barbershop.service import BarbershopService

router = APIRouter(
    prefix="/staff",
    tags=["staff"],
)


@router.get("")
async def list_staff(service: BarbershopService = Depends(get_service)) -> List[dict]:
    members = await service.staff.list_active()
    return [
        {
            "id": member.id,
            "name": member.name,
            "start_hour": member.start_hour,
            "end_hour": member.end_hour,
        }
        for member in members
    ]


@router.get("/{staff_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    staff_id: str,
    date: date,
    service: BarbershopService = Depends(get_service),
):
    member = await service.staff.get(staff_id)
    if member is None or not member.is_active:
        raise HTTPException(status_code=404, detail="Staff member not found")

    slots = await service.engine.available_slots(staff_id, date)
    return AvailabilityResponse(
        staff_id=staff_id,
        date=date,
        slots=[SlotPublic(time=slot.time, starts_at=slot.starts_at) for slot in slots],
    )
