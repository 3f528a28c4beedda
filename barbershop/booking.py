# barbershop/booking.py

import logging
from typing import Optional

from .availability import SlotAvailabilityEngine
from .clock import TimeProvider
from .errors import DuplicateAppointmentError, NotFoundError, SlotUnavailableError, ValidationError
from .models import Appointment
from .ports import AppointmentStore, ClientDirectory, StaffDirectory
from .schemas import AppointmentCreate

logger = logging.getLogger(__name__)


class BookingService:
    """Customer-side appointment lifecycle: book, look up, self-cancel, sweep."""

    def __init__(
        self,
        appointments: AppointmentStore,
        clients: ClientDirectory,
        staff: StaffDirectory,
        engine: SlotAvailabilityEngine,
        clock: TimeProvider,
    ):
        self._appointments = appointments
        self._clients = clients
        self._staff = staff
        self._engine = engine
        self._clock = clock

    async def active_for(self, phone: str) -> Optional[Appointment]:
        appointment = await self._appointments.find_active_by_customer(phone)
        # past but not yet swept rows do not count as active
        if appointment is None or self._clock.is_past(appointment.starts_at):
            return None
        return appointment

    async def ensure_can_book(self, phone: str) -> None:
        if await self.active_for(phone) is not None:
            raise DuplicateAppointmentError()

    async def book(self, request: AppointmentCreate) -> Appointment:
        # 1) The slot must start in the future
        if self._clock.is_past(request.starts_at):
            raise ValidationError("That time has already passed. Please pick another slot.")

        # 2) One active appointment per customer
        await self.ensure_can_book(request.customer_phone)

        # 3) Re-check the slot right before committing
        if not await self._engine.is_slot_free(request.staff_id, request.starts_at):
            raise SlotUnavailableError()

        # 4) Insert; the unique indexes reject a concurrent double booking
        appointment = Appointment(
            customer_phone=request.customer_phone,
            customer_name=request.customer_name,
            staff_id=request.staff_id,
            service=request.service.value,
            starts_at=request.starts_at,
        )
        appointment = await self._appointments.create(appointment, self._clock.now())

        await self._clients.record_booking(
            request.customer_phone, request.customer_name, request.starts_at
        )
        logger.info(
            "Appointment %s booked for staff %s at %s",
            appointment.short_id,
            appointment.staff_id,
            self._clock.format_instant(appointment.starts_at),
        )
        return appointment

    async def cancel_own(self, phone: str, prefix: Optional[str] = None) -> Appointment:
        appointment = await self.active_for(phone)
        if appointment is None:
            raise NotFoundError("You have no active appointment to cancel.")
        if prefix and not appointment.id.startswith(prefix.strip().lower()):
            raise NotFoundError(f"No appointment of yours matches the code {prefix.strip()}.")

        appointment.cancel()
        appointment = await self._appointments.save(appointment)
        logger.info("Appointment %s cancelled by the customer", appointment.short_id)
        return appointment

    async def sweep_expired_appointments(self) -> int:
        count = await self._appointments.archive_expired(self._clock.now())
        if count:
            logger.info("Archived %d expired appointment(s)", count)
        return count
