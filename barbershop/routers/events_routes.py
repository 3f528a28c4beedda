# barbershop/routers/events_routes.py

from fastapi import APIRouter, Depends

from barbershop.deps import get_service
from barbershop.schemas import InboundEvent, SweepResponse
from barbershop.service import BarbershopService

router = APIRouter(
    tags=["events"],
)


@router.post("/events", status_code=202)
async def receive_event(
    event: InboundEvent,
    service: BarbershopService = Depends(get_service),
):
    # errors inside the conversation are answered in-chat, never as HTTP errors
    await service.handle_event(event)
    return {"status": "accepted"}


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def sweep(service: BarbershopService = Depends(get_service)):
    processed = await service.sweep_expired_appointments()
    return SweepResponse(processed=processed)
