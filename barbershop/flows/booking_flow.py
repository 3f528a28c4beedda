# barbershop/flows/booking_flow.py
"""Customer booking dialogue.

    target (book-for-another only) -> name -> staff -> service -> date -> time

Every step either advances or re-prompts itself; nothing a customer types can
leave the session between steps. Reaching ``time`` with a free slot commits the
appointment and ends the session.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional

from ..availability import Slot, SlotAvailabilityEngine
from ..booking import BookingService
from ..clock import TimeProvider
from ..data import SERVICES, service_label
from ..errors import (
    DuplicateAppointmentError,
    InfrastructureError,
    SlotUnavailableError,
    ValidationError,
)
from ..models import Appointment
from ..ports import Messenger, StaffDirectory
from ..schemas import (
    MAX_LIST_ROWS,
    PHONE_MAX_DIGITS,
    PHONE_MIN_DIGITS,
    AppointmentCreate,
    Button,
    ButtonPrompt,
    ListPrompt,
    ListRow,
    ListSection,
    ServiceType,
    sanitize_phone,
)
from ..sessions import SessionStore

logger = logging.getLogger(__name__)

NAME_MIN, NAME_MAX = 2, 100
TIMES_PER_PAGE = MAX_LIST_ROWS - 1  # one row is kept for "more"

STAFF_PREFIX = "staff_"
SERVICE_PREFIX = "svc_"
DATE_PREFIX = "date_"
DATE_FULL_PREFIX = "date_full_"
TIME_PREFIX = "time_"
TIME_MORE = "time_more"


class BookingStep(str, Enum):
    target = "target"
    name = "name"
    staff = "staff"
    service = "service"
    date = "date"
    time = "time"


@dataclass
class ConversationSession:
    requester: str
    step: BookingStep = BookingStep.name
    target: Optional[str] = None
    customer_name: Optional[str] = None
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    service: Optional[ServiceType] = None
    day: Optional[date] = None
    time_page: int = 0

    @property
    def customer_phone(self) -> str:
        return self.target or self.requester


class BookingFlow:
    def __init__(
        self,
        booking: BookingService,
        engine: SlotAvailabilityEngine,
        staff: StaffDirectory,
        messenger: Messenger,
        sessions: SessionStore,
        clock: TimeProvider,
        days_ahead: int = 7,
    ):
        self._booking = booking
        self._engine = engine
        self._staff = staff
        self._messenger = messenger
        self._sessions = sessions
        self._clock = clock
        self._days_ahead = days_ahead

    async def start(self, identity: str, for_other: bool = False) -> None:
        if for_other:
            self._sessions.put(identity, ConversationSession(requester=identity, step=BookingStep.target))
            await self._messenger.send_text(
                identity,
                "*Book for someone else*\n\nWrite the phone number of the person the "
                "appointment is for (digits only, with country code).",
            )
            return

        await self._booking.ensure_can_book(identity)
        self._sessions.put(identity, ConversationSession(requester=identity))
        await self._ask_name(identity)

    async def handle(self, identity: str, session: ConversationSession, payload: str) -> None:
        payload = payload.strip()
        handler = {
            BookingStep.target: self._on_target,
            BookingStep.name: self._on_name,
            BookingStep.staff: self._on_staff,
            BookingStep.service: self._on_service,
            BookingStep.date: self._on_date,
            BookingStep.time: self._on_time,
        }[session.step]
        await handler(identity, session, payload)

    def abandon(self, identity: str) -> None:
        if self._sessions.delete(identity) is not None:
            logger.debug("Booking flow for %s abandoned", identity)

    # -- steps ---------------------------------------------------------------

    async def _on_target(self, identity: str, session: ConversationSession, payload: str) -> None:
        target = sanitize_phone(payload)
        if not PHONE_MIN_DIGITS <= len(target.lstrip("+")) <= PHONE_MAX_DIGITS:
            await self._messenger.send_text(
                identity, "That does not look like a phone number. Please write 7 to 15 digits."
            )
            return
        try:
            await self._booking.ensure_can_book(target)
        except DuplicateAppointmentError:
            self._sessions.delete(identity)
            await self._messenger.send_text(
                identity,
                f"{target} already has an active appointment. It must be cancelled before booking another.",
            )
            return

        session.target = target
        session.step = BookingStep.name
        await self._ask_name(identity, for_other=True)

    async def _on_name(self, identity: str, session: ConversationSession, payload: str) -> None:
        name = " ".join(payload.split())
        if not NAME_MIN <= len(name) <= NAME_MAX:
            await self._messenger.send_text(
                identity, f"Please write a name between {NAME_MIN} and {NAME_MAX} characters."
            )
            return
        session.customer_name = name
        session.step = BookingStep.staff
        await self._ask_staff(identity)

    async def _on_staff(self, identity: str, session: ConversationSession, payload: str) -> None:
        member = None
        if payload.startswith(STAFF_PREFIX):
            member = await self._staff.get(payload[len(STAFF_PREFIX):])
        if member is None or not member.is_active:
            await self._ask_staff(identity, notice="Please pick a barber from the list.")
            return
        session.staff_id = member.id
        session.staff_name = member.name
        session.step = BookingStep.service
        await self._ask_service(identity, session)

    async def _on_service(self, identity: str, session: ConversationSession, payload: str) -> None:
        service = None
        if payload.startswith(SERVICE_PREFIX):
            try:
                service = ServiceType(payload[len(SERVICE_PREFIX):])
            except ValueError:
                service = None
        if service is None:
            await self._ask_service(identity, session, notice="Please pick one of the services.")
            return
        session.service = service
        session.step = BookingStep.date
        await self._ask_date(identity, session)

    async def _on_date(self, identity: str, session: ConversationSession, payload: str) -> None:
        if payload.startswith(DATE_FULL_PREFIX):
            await self._ask_date(identity, session, notice="That day is fully booked. Please pick another.")
            return

        day = self._parse_day(payload)
        if day is None or day not in self._clock.next_days(self._days_ahead):
            await self._ask_date(identity, session, notice="Please pick a date from the list.")
            return

        slots = await self._engine.available_slots(session.staff_id, day)
        if not slots:
            await self._ask_date(identity, session, notice="That day is fully booked. Please pick another.")
            return
        session.day = day
        session.time_page = 0
        session.step = BookingStep.time
        await self._send_times(identity, session, slots)

    async def _on_time(self, identity: str, session: ConversationSession, payload: str) -> None:
        slots = await self._engine.available_slots(session.staff_id, session.day)
        if not slots:
            session.step = BookingStep.date
            await self._ask_date(
                identity, session, notice="There are no free times left that day. Please pick another date."
            )
            return

        if payload == TIME_MORE:
            if (session.time_page + 1) * TIMES_PER_PAGE < len(slots):
                session.time_page += 1
            await self._send_times(identity, session, slots)
            return

        chosen = self._parse_time(payload)
        if chosen is None:
            await self._send_times(identity, session, slots, notice="Please pick a time from the list.")
            return

        slot = next((slot for slot in slots if slot.time == chosen), None)
        if slot is None:
            await self._refresh_taken(identity, session, slots, chosen)
            return
        await self._commit(identity, session, slot)

    async def _commit(self, identity: str, session: ConversationSession, slot: Slot) -> None:
        request = AppointmentCreate(
            customer_phone=session.customer_phone,
            customer_name=session.customer_name,
            staff_id=session.staff_id,
            service=session.service,
            starts_at=slot.starts_at,
        )
        try:
            appointment = await self._booking.book(request)
        except (SlotUnavailableError, ValidationError):
            slots = await self._engine.available_slots(session.staff_id, session.day)
            await self._refresh_taken(identity, session, slots, slot.time)
            return
        except DuplicateAppointmentError as exc:
            self._sessions.delete(identity)
            await self._messenger.send_text(identity, exc.message)
            return

        self._sessions.delete(identity)
        await self._confirm(identity, session, appointment)

    # -- prompts -------------------------------------------------------------

    async def _ask_name(self, identity: str, for_other: bool = False) -> None:
        whose = "the customer's" if for_other else "your"
        await self._messenger.send_text(identity, f"*Book an appointment*\n\nPlease write {whose} *full name*:")

    async def _ask_staff(self, identity: str, notice: Optional[str] = None) -> None:
        members = (await self._staff.list_active())[:MAX_LIST_ROWS]
        if not members:
            self._sessions.delete(identity)
            await self._messenger.send_text(identity, "No barbers are taking bookings right now. Please try later.")
            return
        rows = [ListRow(id=f"{STAFF_PREFIX}{member.id}", title=member.name) for member in members]
        body = "Who would you like to book with?"
        await self._messenger.send_list(
            identity,
            ListPrompt(
                body=f"{notice}\n\n{body}" if notice else body,
                button_text="Barbers",
                sections=[ListSection(title="Barbers", rows=rows)],
            ),
        )

    async def _ask_service(
        self, identity: str, session: ConversationSession, notice: Optional[str] = None
    ) -> None:
        body = f"What service would you like with {session.staff_name}?"
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=f"{notice}\n\n{body}" if notice else body,
                buttons=[
                    Button(id=f"{SERVICE_PREFIX}{service.value}", title=label)
                    for service, label in SERVICES.items()
                ],
            ),
        )

    async def _ask_date(
        self, identity: str, session: ConversationSession, notice: Optional[str] = None
    ) -> None:
        days = self._clock.next_days(self._days_ahead)
        counts = await self._engine.free_slot_counts(session.staff_id, days)
        if not any(counts.values()):
            session.step = BookingStep.staff
            await self._ask_staff(
                identity,
                notice=f"{session.staff_name} has no free times in the next {self._days_ahead} days.",
            )
            return

        rows = []
        for day in days:
            label = self._clock.format_day(day)
            if counts[day]:
                rows.append(
                    ListRow(id=f"{DATE_PREFIX}{day.isoformat()}", title=label, description=f"{counts[day]} free")
                )
            else:
                rows.append(
                    ListRow(id=f"{DATE_FULL_PREFIX}{day.isoformat()}", title=f"{label} (full)", description="No free times")
                )
        body = "Which day suits you?"
        await self._messenger.send_list(
            identity,
            ListPrompt(
                body=f"{notice}\n\n{body}" if notice else body,
                button_text="Dates",
                sections=[ListSection(title="Next days", rows=rows)],
            ),
        )

    async def _send_times(
        self,
        identity: str,
        session: ConversationSession,
        slots: List[Slot],
        notice: Optional[str] = None,
    ) -> None:
        offset = session.time_page * TIMES_PER_PAGE
        if offset >= len(slots):
            session.time_page, offset = 0, 0
        remaining = slots[offset:]
        rows = [ListRow(id=f"{TIME_PREFIX}{slot.time}", title=slot.time) for slot in remaining[:MAX_LIST_ROWS]]
        if len(remaining) > MAX_LIST_ROWS:
            rows = rows[:TIMES_PER_PAGE]
            rows.append(ListRow(id=TIME_MORE, title="More times", description="Later slots"))

        body = f"Free times on {self._clock.format_day(session.day)}:"
        await self._messenger.send_list(
            identity,
            ListPrompt(
                body=f"{notice}\n\n{body}" if notice else body,
                button_text="Times",
                sections=[ListSection(title="Times", rows=rows)],
            ),
        )

    async def _refresh_taken(
        self, identity: str, session: ConversationSession, slots: List[Slot], chosen: str
    ) -> None:
        session.time_page = 0
        if not slots:
            session.step = BookingStep.date
            await self._ask_date(
                identity, session, notice=f"{chosen} was just taken and the day is now full."
            )
            return
        await self._send_times(
            identity, session, slots, notice=f"{chosen} is already taken. Here are the times still free."
        )

    async def _confirm(
        self, identity: str, session: ConversationSession, appointment: Appointment
    ) -> None:
        details = (
            f"Name: {appointment.customer_name}\n"
            f"Barber: {session.staff_name}\n"
            f"Service: {service_label(appointment.service)}\n"
            f"When: {self._clock.format_instant(appointment.starts_at)}\n"
            f"Code: {appointment.short_id}"
        )
        # already committed: send failures past this point are only logged
        if appointment.customer_phone == identity:
            await self._notify(
                identity,
                f"*Appointment booked*\n\n{details}\n\nTo cancel, write *cancel {appointment.short_id}*.",
            )
            return
        await self._notify(
            identity, f"*Appointment booked for {appointment.customer_phone}*\n\n{details}"
        )
        await self._notify(
            appointment.customer_phone,
            f"*Appointment booked*\n\n{details}\n\nTo cancel, write *cancel {appointment.short_id}*.",
        )

    async def _notify(self, to: str, body: str) -> None:
        try:
            await self._messenger.send_text(to, body)
        except InfrastructureError:
            logger.exception("Booking confirmation to %s could not be delivered", to)

    # -- parsing -------------------------------------------------------------

    @staticmethod
    def _parse_day(payload: str) -> Optional[date]:
        if not payload.startswith(DATE_PREFIX):
            return None
        try:
            return date.fromisoformat(payload[len(DATE_PREFIX):])
        except ValueError:
            return None

    @staticmethod
    def _parse_time(payload: str) -> Optional[str]:
        if not payload.startswith(TIME_PREFIX):
            return None
        value = payload[len(TIME_PREFIX):]
        if len(value) != 5 or value[2] != ":" or not (value[:2] + value[3:]).isdigit():
            return None
        return value
