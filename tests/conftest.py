"""
Pytest fixtures for the booking core tests.

Every test gets its own SQLite file, a clock frozen in the business timezone
and a messenger that records what would have been sent.
"""

from datetime import datetime, timedelta
from typing import List, Tuple
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from barbershop.auth import PasslibPinHasher
from barbershop.clock import TimeProvider
from barbershop.config import Settings
from barbershop.db import create_engine, init_db, make_session_factory
from barbershop.models import Staff
from barbershop.schemas import AppointmentCreate, ServiceType
from barbershop.service import BarbershopService

BOGOTA = ZoneInfo("America/Bogota")

# Wednesday 16 January 2030, 10:30 in the shop
NOW = datetime(2030, 1, 16, 10, 30, tzinfo=BOGOTA)

ALEX_PIN = "4321"
SAM_PIN = "5678"


class FrozenClock(TimeProvider):
    def __init__(self, current: datetime):
        super().__init__("America/Bogota")
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current = self.current + timedelta(**delta)


class RecordingMessenger:
    """AsyncMock-backed messenger that keeps an ordered outbox."""

    def __init__(self):
        self.outbox: List[Tuple[str, str, object]] = []
        self.send_text = AsyncMock(side_effect=self._record("text"))
        self.send_buttons = AsyncMock(side_effect=self._record("buttons"))
        self.send_list = AsyncMock(side_effect=self._record("list"))

    def _record(self, kind):
        def record(to, content):
            self.outbox.append((to, kind, content))
        return record

    def sent_to(self, identity: str):
        return [(kind, content) for to, kind, content in self.outbox if to == identity]

    def last(self, identity: str):
        messages = self.sent_to(identity)
        assert messages, f"nothing was sent to {identity}"
        return messages[-1]

    def texts_to(self, identity: str) -> List[str]:
        bodies = []
        for kind, content in self.sent_to(identity):
            bodies.append(content if kind == "text" else content.body)
        return bodies

    def clear(self) -> None:
        self.outbox.clear()


def row_ids(prompt) -> List[str]:
    return [row.id for section in prompt.sections for row in section.rows]


def button_ids(prompt) -> List[str]:
    return [button.id for button in prompt.buttons]


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        business_timezone="America/Bogota",
        shop_name="Test Barbers",
        session_timeout_minutes=10,
        seed_staff=False,
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_engine(settings.database_url)
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def service(settings, session_factory, messenger, clock):
    hasher = PasslibPinHasher()
    svc = BarbershopService(settings, session_factory, messenger, clock=clock, hasher=hasher)
    await svc.staff.add(
        Staff(
            id="barber_alex",
            alias="alex",
            name="Alex Rivera",
            start_hour=9,
            end_hour=17,
            pin_hash=hasher.hash(ALEX_PIN),
        )
    )
    await svc.staff.add(
        Staff(
            id="barber_sam",
            alias="sam",
            name="Sam Ortiz",
            start_hour=9,
            end_hour=19,
            pin_hash=hasher.hash(SAM_PIN),
        )
    )
    yield svc
    await svc.close()


@pytest.fixture
def book(service, clock):
    """Books directly through the service layer, bypassing the chat."""

    async def _book(phone, hour, day=None, staff_id="barber_alex", name="Test Customer",
                    service_type=ServiceType.haircut):
        day = day or clock.today()
        return await service.booking.book(
            AppointmentCreate(
                customer_phone=phone,
                customer_name=name,
                staff_id=staff_id,
                service=service_type,
                starts_at=clock.at(day, hour),
            )
        )

    return _book


@pytest.fixture
def send(service):
    """Feeds one inbound chat event to the dispatcher."""

    async def _send(identity, payload, kind="text"):
        await service.handle_event({"identity": identity, "kind": kind, "payload": payload})

    return _send
