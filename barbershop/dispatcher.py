# barbershop/dispatcher.py

import logging
import re
from typing import Any, Set

from .booking import BookingService
from .clock import TimeProvider
from .commands import AdminCommand
from .data import service_label
from .errors import BarbershopError, InfrastructureError
from .flows.admin_flow import AdminFlow, AdminSession
from .flows.booking_flow import BookingFlow, ConversationSession
from .ports import Messenger
from .schemas import Button, ButtonPrompt, EventKind, InboundEvent
from .sessions import IdentityLocks, SessionStore

logger = logging.getLogger(__name__)

MENU_WORDS = {"hola", "hi", "hello", "menu", "inicio", "start"}
BOOK_WORDS = {"1", "agendar", "book"}
MINE_WORDS = {"2", "mis citas", "mi cita", "my appointment"}
OTHER_WORDS = {"3", "agendar otro", "book other"}
CANCEL_RE = re.compile(r"^(?:cancelar|cancel)\s+([0-9a-z-]{4,36})$")

MENU_BOOK = "menu_book"
MENU_MINE = "menu_mine"
MENU_OTHER = "menu_other"
MENU_CANCEL_PREFIX = "menu_cancel_"

GENERIC_APOLOGY = "Something went wrong. Please try again."


class ChatDispatcher:
    """Routes one inbound chat event to the admin panel, the booking flow or the main menu.

    Events for the same identity are handled one at a time; different
    identities run concurrently.
    """

    def __init__(
        self,
        booking: BookingService,
        booking_flow: BookingFlow,
        admin_flow: AdminFlow,
        messenger: Messenger,
        sessions: SessionStore,
        locks: IdentityLocks,
        clock: TimeProvider,
        shop_name: str,
    ):
        self._booking = booking
        self._booking_flow = booking_flow
        self._admin_flow = admin_flow
        self._messenger = messenger
        self._sessions = sessions
        self._locks = locks
        self._clock = clock
        self._shop_name = shop_name
        self._welcomed: Set[str] = set()
        sessions.set_expire_callback(self.on_session_expired)

    def is_welcomed(self, identity: str) -> bool:
        return identity in self._welcomed

    async def handle_event(self, event: InboundEvent) -> None:
        identity = event.identity
        async with self._locks.hold(identity):
            try:
                await self._route(identity, event)
            except BarbershopError as exc:
                logger.info("%s for %s: %s", type(exc).__name__, identity, exc.message)
                await self._send_safely(identity, exc.message)
            except Exception:
                logger.exception("Unhandled error processing event from %s", identity)
                await self._send_safely(identity, GENERIC_APOLOGY)

    async def on_session_expired(self, identity: str, state: Any) -> None:
        self._welcomed.discard(identity)
        await self._send_safely(
            identity,
            "*Session closed for inactivity*\n\n"
            f"Thanks for contacting *{self._shop_name}*.\n\n"
            "Write *hi* whenever you want to book again.",
        )

    async def _route(self, identity: str, event: InboundEvent) -> None:
        payload = event.payload.strip()
        text = " ".join(payload.lower().split())
        self._sessions.touch(identity)

        if event.kind == EventKind.text:
            command = AdminCommand.parse(payload)
            if command is not None:
                self._welcomed.add(identity)
                await self._admin_flow.login(identity, command)
                return

        state = self._sessions.get(identity)
        if isinstance(state, AdminSession):
            await self._admin_flow.handle(identity, state, payload)
            return

        if state is None and identity not in self._welcomed:
            self._welcomed.add(identity)
            await self._send_menu(identity, welcome=True)
            return

        if text in MENU_WORDS:
            self._booking_flow.abandon(identity)
            await self._send_menu(identity)
            return

        cancel = CANCEL_RE.match(text)
        if cancel or payload.startswith(MENU_CANCEL_PREFIX):
            self._booking_flow.abandon(identity)
            prefix = cancel.group(1) if cancel else payload[len(MENU_CANCEL_PREFIX):]
            await self._cancel_own(identity, prefix)
            return

        if isinstance(state, ConversationSession):
            await self._booking_flow.handle(identity, state, payload)
            return

        if text in BOOK_WORDS or payload == MENU_BOOK:
            await self._booking_flow.start(identity)
        elif text in MINE_WORDS or payload == MENU_MINE:
            await self._show_mine(identity)
        elif text in OTHER_WORDS or payload == MENU_OTHER:
            await self._booking_flow.start(identity, for_other=True)
        else:
            await self._send_menu(identity)

    async def _send_menu(self, identity: str, welcome: bool = False) -> None:
        title = f"Welcome to *{self._shop_name}*!" if welcome else f"*{self._shop_name}*"
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=(
                    f"{title}\n\nWhat would you like to do?\n\n"
                    "*1.* Book an appointment\n"
                    "*2.* My appointment\n"
                    "*3.* Book for someone else\n\n"
                    "_Write the option number or tap a button_"
                ),
                buttons=[
                    Button(id=MENU_BOOK, title="Book"),
                    Button(id=MENU_MINE, title="My appointment"),
                    Button(id=MENU_OTHER, title="Book for someone"),
                ],
            ),
        )

    async def _show_mine(self, identity: str) -> None:
        appointment = await self._booking.active_for(identity)
        if appointment is None:
            await self._messenger.send_buttons(
                identity,
                ButtonPrompt(
                    body="You have no upcoming appointment.",
                    buttons=[Button(id=MENU_BOOK, title="Book")],
                ),
            )
            return
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=(
                    "*Your appointment*\n\n"
                    f"When: {self._clock.format_instant(appointment.starts_at)}\n"
                    f"Service: {service_label(appointment.service)}\n"
                    f"Code: {appointment.short_id}\n\n"
                    f"To cancel, write *cancel {appointment.short_id}*."
                ),
                buttons=[Button(id=f"{MENU_CANCEL_PREFIX}{appointment.short_id}", title="Cancel it")],
            ),
        )

    async def _cancel_own(self, identity: str, prefix: str) -> None:
        appointment = await self._booking.cancel_own(identity, prefix)
        await self._messenger.send_text(
            identity,
            "*Appointment cancelled*\n\n"
            f"{self._clock.format_instant(appointment.starts_at)} is free again.\n\n"
            "Write *menu* to book a new time.",
        )

    async def _send_safely(self, identity: str, body: str) -> None:
        try:
            await self._messenger.send_text(identity, body)
        except InfrastructureError:
            logger.exception("Could not deliver a message to %s", identity)
