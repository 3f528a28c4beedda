# barbershop/service.py

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .admin import AdminService
from .auth import PasslibPinHasher
from .availability import SlotAvailabilityEngine
from .booking import BookingService
from .clock import TimeProvider
from .config import Settings
from .data import DEFAULT_HOURS, DEFAULT_STAFF
from .db import create_engine, init_db, make_session_factory
from .dispatcher import ChatDispatcher
from .flows.admin_flow import AdminFlow
from .flows.booking_flow import BookingFlow
from .models import Staff
from .ports import Messenger, PinHasher
from .schemas import InboundEvent
from .sessions import IdentityLocks, SessionStore
from .stores import (
    SqlAppointmentStore,
    SqlBlockedIntervalStore,
    SqlClientDirectory,
    SqlClientNoteStore,
    SqlStaffDirectory,
)
from .whatsapp import LogMessenger, WhatsAppMessenger

logger = logging.getLogger(__name__)


class BarbershopService:
    """Wires stores, engine, flows and dispatcher behind the two public entry points."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker,
        messenger: Messenger,
        clock: Optional[TimeProvider] = None,
        hasher: Optional[PinHasher] = None,
    ):
        self.settings = settings
        self.clock = clock or TimeProvider(settings.business_timezone)
        self.messenger = messenger
        self.hasher = hasher or PasslibPinHasher()

        self.appointments = SqlAppointmentStore(session_factory)
        self.blocks = SqlBlockedIntervalStore(session_factory)
        self.staff = SqlStaffDirectory(session_factory)
        self.clients = SqlClientDirectory(session_factory)
        self.notes = SqlClientNoteStore(session_factory)

        self.engine = SlotAvailabilityEngine(self.staff, self.appointments, self.blocks, self.clock)
        self.booking = BookingService(
            self.appointments, self.clients, self.staff, self.engine, self.clock
        )
        self.admin = AdminService(
            self.staff,
            self.appointments,
            self.blocks,
            self.notes,
            self.hasher,
            self.messenger,
            self.engine,
            self.clock,
            shop_name=settings.shop_name,
        )

        self.locks = IdentityLocks()
        self.sessions = SessionStore(settings.session_timeout_minutes * 60, self.locks)
        self.booking_flow = BookingFlow(
            self.booking,
            self.engine,
            self.staff,
            self.messenger,
            self.sessions,
            self.clock,
            days_ahead=settings.booking_days_ahead,
        )
        self.admin_flow = AdminFlow(self.admin, self.staff, self.messenger, self.sessions, self.clock)
        self.dispatcher = ChatDispatcher(
            self.booking,
            self.booking_flow,
            self.admin_flow,
            self.messenger,
            self.sessions,
            self.locks,
            self.clock,
            shop_name=settings.shop_name,
        )

    async def handle_event(self, event: Union[InboundEvent, Dict[str, Any]]) -> None:
        if not isinstance(event, InboundEvent):
            event = InboundEvent.model_validate(event)
        await self.dispatcher.handle_event(event)

    async def sweep_expired_appointments(self) -> int:
        return await self.booking.sweep_expired_appointments()

    async def seed_staff(self) -> int:
        """Adds any default roster member that is missing. Existing rows are left alone."""
        missing = [entry for entry in DEFAULT_STAFF if await self.staff.get(entry["id"]) is None]
        if not missing:
            return 0
        pin_hash = None
        if self.settings.default_staff_pin:
            pin_hash = await asyncio.to_thread(self.hasher.hash, self.settings.default_staff_pin)
        for entry in missing:
            await self.staff.add(Staff(pin_hash=pin_hash, **entry, **DEFAULT_HOURS))
        logger.info("Seeded %d staff members", len(missing))
        return len(missing)

    async def close(self) -> None:
        await self.sessions.close()
        if isinstance(self.messenger, WhatsAppMessenger):
            await self.messenger.aclose()


def build_messenger(settings: Settings) -> Messenger:
    if settings.whatsapp_access_token and settings.whatsapp_phone_number_id:
        return WhatsAppMessenger(
            settings.whatsapp_access_token,
            settings.whatsapp_phone_number_id,
            settings.whatsapp_api_version,
        )
    logger.warning("WhatsApp credentials missing; outbound messages are only logged")
    return LogMessenger()


async def create_service(settings: Settings) -> Tuple[BarbershopService, AsyncEngine]:
    engine = create_engine(settings.database_url)
    await init_db(engine)
    service = BarbershopService(settings, make_session_factory(engine), build_messenger(settings))
    if settings.seed_staff:
        await service.seed_staff()
    return service, engine
