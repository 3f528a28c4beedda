# barbershop/ports.py
"""Interfaces the scheduling core needs from storage, hashing and messaging.

Concrete SQL stores live in ``stores.py``; the WhatsApp messenger lives in
``whatsapp.py``. Tests substitute in-memory fakes.
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Protocol, Tuple

from .models import (
    Appointment,
    AppointmentHistory,
    BlockedInterval,
    Client,
    ClientNote,
    Staff,
)
from .schemas import ButtonPrompt, ListPrompt


class AppointmentStore(Protocol):
    async def create(self, appointment: Appointment, now: datetime) -> Appointment:
        """Insert atomically. Raises SlotUnavailableError or
        DuplicateAppointmentError when a uniqueness rule is violated."""

    async def save(self, appointment: Appointment) -> Appointment: ...

    async def get(self, appointment_id: str) -> Optional[Appointment]: ...

    async def find_by_id_prefix(self, prefix: str) -> List[Appointment]: ...

    async def find_active_by_customer(self, phone: str) -> Optional[Appointment]:
        """Live (not cancelled, not archived) appointment for ``phone``."""

    async def find_by_staff_and_range(
        self,
        staff_id: str,
        start: datetime,
        end: datetime,
        include_cancelled: bool = False,
    ) -> List[Appointment]: ...

    async def is_slot_free(self, staff_id: str, starts_at: datetime) -> bool: ...

    async def archive_expired(self, now: datetime) -> int: ...

    async def get_history(self, phone: str) -> Optional[AppointmentHistory]: ...

    async def count_by_dates(
        self, staff_id: str, windows: Dict[date, Tuple[datetime, datetime]]
    ) -> Dict[date, int]:
        """Live appointment count per day; ``windows`` maps day to its bounds."""


class BlockedIntervalStore(Protocol):
    async def create(self, block: BlockedInterval) -> BlockedInterval: ...

    async def delete(self, block_id: str) -> bool: ...

    async def delete_by_slot(self, staff_id: str, day: date, start_time: str) -> bool: ...

    async def find_for_day(self, staff_id: str, day: date) -> List[BlockedInterval]:
        """One-off blocks on ``day`` plus every recurring block."""


class StaffDirectory(Protocol):
    async def get(self, staff_id: str) -> Optional[Staff]: ...

    async def find_by_alias(self, alias: str) -> Optional[Staff]: ...

    async def list_active(self) -> List[Staff]: ...

    async def add(self, staff: Staff) -> Staff: ...

    async def set_pin_hash(self, staff_id: str, pin_hash: str) -> None: ...

    async def set_active(self, staff_id: str, active: bool) -> None: ...


class ClientDirectory(Protocol):
    async def record_booking(self, phone: str, name: str, at: datetime) -> Client: ...

    async def get(self, phone: str) -> Optional[Client]: ...


class ClientNoteStore(Protocol):
    async def add(self, note: ClientNote) -> ClientNote: ...

    async def list_for_client(self, phone: str, staff_id: str) -> List[ClientNote]: ...


class PinHasher(Protocol):
    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, hashed: str) -> bool: ...


class Messenger(Protocol):
    async def send_text(self, to: str, body: str) -> None: ...

    async def send_buttons(self, to: str, prompt: ButtonPrompt) -> None: ...

    async def send_list(self, to: str, prompt: ListPrompt) -> None: ...
