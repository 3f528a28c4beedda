# barbershop/flows/admin_flow.py

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from ..admin import AdminService, DaySummary
from ..clock import TimeProvider
from ..commands import AdminAction, AdminCommand
from ..data import STATUS_ICONS, service_label
from ..errors import BarbershopError, ValidationError
from ..models import BlockedInterval, Staff
from ..ports import Messenger, StaffDirectory
from ..schemas import (
    MAX_LIST_ROWS,
    BlockReason,
    Button,
    ButtonPrompt,
    ListPrompt,
    ListRow,
    ListSection,
)
from ..sessions import SessionStore

logger = logging.getLogger(__name__)

NOTE_CANCEL_WORDS = {"cancel", "cancelar"}
BLOCK_DAYS = 7
VIEW_DAYS = 7
HOURS_PER_PAGE = MAX_LIST_ROWS - 1

MENU = "adm_menu"
EXIT = "adm_exit"
TODAY = "adm_today"
WEEK = "adm_week"
DAYS = "adm_days"
STATS = "adm_stats"
BLOCK = "adm_block"
MANAGE = "adm_manage"
BLOCK_MORE = "adm_bmore"
APPOINTMENT_PREFIX = "adm_apt_"
DAY_PREFIX = "adm_day_"
BLOCK_DAY_PREFIX = "adm_bday_"
BLOCK_PREFIX = "adm_block_"
BLOCK_ONCE_PREFIX = "adm_bonce_"
BLOCK_DAILY_PREFIX = "adm_blunch_"
UNBLOCK_PREFIX = "adm_unblock_"
COMPLETE_PREFIX = "adm_complete_"
CANCEL_PREFIX = "adm_cancel_"
NOTE_PREFIX = "adm_note_"

HELP_TEXT = (
    "*Admin commands*\n\n"
    "admin <alias> <pin> - panel\n"
    "admin <alias> <pin> today - today's appointments\n"
    "admin <alias> <pin> week - this week\n"
    "admin <alias> <pin> stats - this month\n"
    "admin <alias> <pin> complete <code>\n"
    "admin <alias> <pin> cancel <code>\n"
    "admin <alias> <pin> block HH:MM\n"
    "admin <alias> <pin> unblock HH:MM\n"
    "admin <alias> <pin> note <code> <text>\n\n"
    "Spanish words work too (hoy, semana, cancelar, bloquear, nota...)."
)

MENU_BUTTON = Button(id=MENU, title="Admin menu")


class AdminState(str, Enum):
    menu = "menu"
    awaiting_note = "awaiting_note"


@dataclass
class AdminSession:
    staff_id: str
    staff_name: str
    state: AdminState = AdminState.menu
    note_appointment_id: Optional[str] = None
    block_day: Optional[date] = None
    block_page: int = 0


def _slot_id(prefix: str, time: str) -> str:
    return prefix + time.replace(":", "_")


def _slot_time(payload: str, prefix: str) -> str:
    return payload[len(prefix):].replace("_", ":", 1)


class AdminFlow:
    def __init__(
        self,
        admin: AdminService,
        staff: StaffDirectory,
        messenger: Messenger,
        sessions: SessionStore,
        clock: TimeProvider,
    ):
        self._admin = admin
        self._staff = staff
        self._messenger = messenger
        self._sessions = sessions
        self._clock = clock

    async def login(self, identity: str, command: AdminCommand) -> None:
        """Authenticates, opens the session, then runs the command's action."""
        member = await self._admin.authenticate(command.alias, command.pin)
        session = AdminSession(staff_id=member.id, staff_name=member.name)
        self._sessions.put(identity, session)
        await self.run_command(identity, session, command)

    async def run_command(self, identity: str, session: AdminSession, command: AdminCommand) -> None:
        try:
            command.validate_params()
        except ValidationError as exc:
            await self._error(identity, exc.message)
            return

        action = command.action
        if action == AdminAction.panel:
            await self.send_menu(identity, session)
        elif action == AdminAction.help:
            await self._messenger.send_buttons(
                identity, ButtonPrompt(body=HELP_TEXT, buttons=[MENU_BUTTON])
            )
        elif action == AdminAction.today:
            await self._today(identity, session)
        elif action == AdminAction.week:
            await self._week(identity, session)
        elif action == AdminAction.stats:
            await self._stats(identity, session)
        elif action == AdminAction.complete:
            await self._complete(identity, session, command.appointment_prefix)
        elif action == AdminAction.cancel:
            await self._cancel(identity, session, command.appointment_prefix)
        elif action == AdminAction.note:
            await self._add_note(identity, session, command.appointment_prefix, command.note_text)
        elif action == AdminAction.block:
            await self._block(identity, session, command.time, self._clock.today())
        elif action == AdminAction.unblock:
            await self._unblock(identity, session, command.time, self._clock.today())

    async def handle(self, identity: str, session: AdminSession, payload: str) -> None:
        payload = payload.strip()
        if session.state == AdminState.awaiting_note:
            await self._on_note_text(identity, session, payload)
            return
        await self._on_selection(identity, session, payload)

    # -- routing -------------------------------------------------------------

    async def _on_selection(self, identity: str, session: AdminSession, payload: str) -> None:
        if payload == EXIT:
            self._sessions.delete(identity)
            await self._messenger.send_text(
                identity, f"*Session closed*\n\nSee you later, {session.staff_name}!"
            )
            return

        fixed = {
            MENU: self.send_menu,
            TODAY: self._today,
            WEEK: self._week,
            DAYS: self._day_picker,
            STATS: self._stats,
            MANAGE: self._manage,
            BLOCK: self._block_days,
            BLOCK_MORE: self._block_next_page,
        }
        if payload in fixed:
            await fixed[payload](identity, session)
            return

        if payload.startswith(DAY_PREFIX):
            await self._chosen_day(identity, session, payload[len(DAY_PREFIX):])
        elif payload.startswith(APPOINTMENT_PREFIX):
            await self._appointment_actions(identity, session, payload[len(APPOINTMENT_PREFIX):])
        elif payload.startswith(BLOCK_DAY_PREFIX):
            await self._block_hours(identity, session, payload[len(BLOCK_DAY_PREFIX):])
        elif payload.startswith(BLOCK_ONCE_PREFIX):
            await self._block(identity, session, _slot_time(payload, BLOCK_ONCE_PREFIX), session.block_day)
        elif payload.startswith(BLOCK_DAILY_PREFIX):
            await self._block(
                identity,
                session,
                _slot_time(payload, BLOCK_DAILY_PREFIX),
                session.block_day,
                recurring=True,
            )
        elif payload.startswith(BLOCK_PREFIX):
            await self._block_kind(identity, session, _slot_time(payload, BLOCK_PREFIX))
        elif payload.startswith(UNBLOCK_PREFIX):
            await self._unblock(identity, session, _slot_time(payload, UNBLOCK_PREFIX), session.block_day)
        elif payload.startswith(COMPLETE_PREFIX):
            await self._complete(identity, session, payload[len(COMPLETE_PREFIX):])
        elif payload.startswith(CANCEL_PREFIX):
            await self._cancel(identity, session, payload[len(CANCEL_PREFIX):])
        elif payload.startswith(NOTE_PREFIX):
            await self._ask_note(identity, session, payload[len(NOTE_PREFIX):])
        else:
            await self.send_menu(identity, session)

    async def _on_note_text(self, identity: str, session: AdminSession, payload: str) -> None:
        if payload.lower() in NOTE_CANCEL_WORDS:
            session.state = AdminState.menu
            session.note_appointment_id = None
            await self.send_menu(identity, session)
            return
        try:
            note = await self._admin.add_note(session.staff_id, session.note_appointment_id, payload)
        except ValidationError as exc:
            await self._messenger.send_text(
                identity, f"{exc.message}\n\nWrite the note again, or *cancel* to go back."
            )
            return
        except BarbershopError as exc:
            session.state = AdminState.menu
            session.note_appointment_id = None
            await self._error(identity, exc.message)
            return

        session.state = AdminState.menu
        session.note_appointment_id = None
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=f"*Note saved*\n\n\"{note.preview}\"",
                buttons=[Button(id=MANAGE, title="Appointments"), MENU_BUTTON],
            ),
        )

    # -- screens -------------------------------------------------------------

    async def send_menu(self, identity: str, session: AdminSession) -> None:
        session.state = AdminState.menu
        await self._messenger.send_list(
            identity,
            ListPrompt(
                header="Admin panel",
                body=f"Hello {session.staff_name}!\n\nPick an option:",
                button_text="Options",
                sections=[
                    ListSection(
                        title="Appointments",
                        rows=[
                            ListRow(id=TODAY, title="Today", description="All of today's appointments"),
                            ListRow(id=WEEK, title="This week", description="Per-day summary"),
                            ListRow(id=DAYS, title="By date", description="Appointments on a chosen day"),
                        ],
                    ),
                    ListSection(
                        title="Manage",
                        rows=[
                            ListRow(id=MANAGE, title="Manage appointments", description="Complete, cancel or add notes"),
                            ListRow(id=BLOCK, title="Block time", description="Lunch, breaks, errands"),
                        ],
                    ),
                    ListSection(
                        title="Info",
                        rows=[
                            ListRow(id=STATS, title="Statistics", description="This month"),
                            ListRow(id=EXIT, title="Log out", description="Close the admin session"),
                        ],
                    ),
                ],
            ),
        )

    async def _today(self, identity: str, session: AdminSession) -> None:
        summary = await self._admin.today(session.staff_id)
        if not summary.appointments:
            await self._messenger.send_buttons(
                identity,
                ButtonPrompt(
                    body="*Today*\n\nYou have no appointments today.",
                    buttons=[MENU_BUTTON, Button(id=EXIT, title="Log out")],
                ),
            )
            return
        await self._send_day(
            identity, session, summary, "Today", [Button(id=MANAGE, title="Manage"), MENU_BUTTON]
        )

    async def _day_picker(self, identity: str, session: AdminSession) -> None:
        days = self._clock.next_days(VIEW_DAYS)
        counts = await self._admin.booked_counts(session.staff_id, days)
        rows = [
            ListRow(
                id=f"{DAY_PREFIX}{day.isoformat()}",
                title=self._clock.format_day(day),
                description=f"{counts[day]} booked",
            )
            for day in days
        ]
        await self._messenger.send_list(
            identity,
            ListPrompt(
                header="Appointments by date",
                body="Which day?",
                button_text="Days",
                sections=[ListSection(title="Days", rows=rows)],
            ),
        )

    async def _chosen_day(self, identity: str, session: AdminSession, raw_day: str) -> None:
        try:
            day = date.fromisoformat(raw_day)
        except ValueError:
            day = None
        if day not in self._clock.next_days(VIEW_DAYS):
            await self._day_picker(identity, session)
            return

        summary = await self._admin.day(session.staff_id, day)
        label = self._clock.format_day(day)
        buttons = [Button(id=DAYS, title="Other day"), MENU_BUTTON]
        if not summary.appointments:
            await self._messenger.send_buttons(
                identity,
                ButtonPrompt(body=f"*{label}*\n\nYou have no appointments on {label}.", buttons=buttons),
            )
            return
        await self._send_day(identity, session, summary, label, buttons)

    async def _send_day(
        self,
        identity: str,
        session: AdminSession,
        summary: DaySummary,
        title: str,
        buttons: List[Button],
    ) -> None:
        lines = [
            f"*{title} - {session.staff_name}*",
            f"Total: {summary.total} | Pending: {summary.pending} | Completed: {summary.completed}",
            "",
        ]
        lines.extend(self._appointment_lines(summary))
        if summary.next_appointment:
            upcoming = summary.next_appointment
            lines.append("")
            lines.append(
                f"*Next:* {self._clock.format_time(upcoming.starts_at)} - {upcoming.customer_name}"
            )
        await self._messenger.send_buttons(
            identity, ButtonPrompt(body="\n".join(lines), buttons=buttons)
        )

    async def _week(self, identity: str, session: AdminSession) -> None:
        week = await self._admin.week(session.staff_id)
        today = self._clock.today()
        lines = [
            f"*This week - {session.staff_name}*",
            f"Total: {week.total} | Completed: {week.completed} | Pending: {week.pending}",
            "",
        ]
        for day in week.days:
            marker = "> " if day.day == today else ("  " if day.day > today else "- ")
            line = f"{marker}{self._clock.format_day(day.day)}: {day.total}"
            if day.total:
                line += f" ({day.completed} done, {day.pending} pending)"
            lines.append(line)
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(body="\n".join(lines), buttons=[Button(id=TODAY, title="Today"), MENU_BUTTON]),
        )

    async def _stats(self, identity: str, session: AdminSession) -> None:
        stats = await self._admin.stats(session.staff_id)
        lines = [
            f"*Statistics - {stats.month} {stats.year}*",
            f"*{session.staff_name}*",
            "",
            f"Appointments: {stats.total}",
            f"Completed: {stats.completed}",
            f"Cancelled: {stats.cancelled}",
            f"Pending: {stats.pending}",
            "",
        ]
        if stats.most_popular_service:
            label, count = stats.most_popular_service
            lines.append(f"Most requested: {label} ({count})")
        lines.append(f"Daily average: {stats.daily_average}")
        if stats.busiest_weekday:
            lines.append(f"Busiest day: {stats.busiest_weekday[0]}")
        if stats.peak_hours:
            lines.append("Peak hours:")
            lines.extend(f"  {hour} ({count})" for hour, count in stats.peak_hours)
        lines.append(f"Completion rate: {stats.completion_rate}%")
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(body="\n".join(lines), buttons=[Button(id=TODAY, title="Today"), MENU_BUTTON]),
        )

    async def _manage(self, identity: str, session: AdminSession) -> None:
        summary = await self._admin.today(session.staff_id)
        rows = [
            ListRow(
                id=f"{APPOINTMENT_PREFIX}{appt.short_id}",
                title=f"{self._clock.format_time(appt.starts_at)} {appt.customer_name}",
                description=f"{STATUS_ICONS.get(appt.status, '')} {service_label(appt.service)}",
            )
            for appt in summary.appointments[:MAX_LIST_ROWS]
        ]
        if not rows:
            await self._messenger.send_buttons(
                identity,
                ButtonPrompt(body="*Manage*\n\nNo appointments to manage today.", buttons=[MENU_BUTTON]),
            )
            return
        await self._messenger.send_list(
            identity,
            ListPrompt(
                header="Manage appointments",
                body="Pick an appointment:",
                button_text="Appointments",
                sections=[ListSection(title="Today", rows=rows)],
            ),
        )

    async def _appointment_actions(self, identity: str, session: AdminSession, prefix: str) -> None:
        try:
            appt = await self._admin.find_own(session.staff_id, prefix)
        except BarbershopError as exc:
            await self._error(identity, exc.message, retry=MANAGE)
            return

        buttons: List[Button] = []
        if not appt.is_terminal:
            buttons.append(Button(id=f"{COMPLETE_PREFIX}{appt.short_id}", title="Complete"))
            buttons.append(Button(id=f"{CANCEL_PREFIX}{appt.short_id}", title="Cancel"))
        buttons.append(Button(id=f"{NOTE_PREFIX}{appt.short_id}", title="Add note"))
        if len(buttons) < 3:
            buttons.append(MENU_BUTTON)

        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                header="Appointment",
                body=(
                    f"{STATUS_ICONS.get(appt.status, '')} *{appt.customer_name}*\n\n"
                    f"Time: {self._clock.format_instant(appt.starts_at)}\n"
                    f"Service: {service_label(appt.service)}\n"
                    f"Phone: {appt.customer_phone}\n"
                    f"Code: {appt.short_id}"
                ),
                buttons=buttons,
            ),
        )

    async def _complete(self, identity: str, session: AdminSession, prefix: str) -> None:
        try:
            appt = await self._admin.complete(session.staff_id, prefix)
        except BarbershopError as exc:
            await self._error(identity, exc.message, retry=MANAGE)
            return
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=(
                    f"*Appointment completed*\n\nCustomer: {appt.customer_name}\n"
                    f"Service: {service_label(appt.service)}"
                ),
                buttons=[Button(id=TODAY, title="Today"), MENU_BUTTON],
            ),
        )

    async def _cancel(self, identity: str, session: AdminSession, prefix: str) -> None:
        try:
            appt, notified = await self._admin.cancel(session.staff_id, prefix)
        except BarbershopError as exc:
            await self._error(identity, exc.message, retry=MANAGE)
            return
        told = "The customer was notified." if notified else "The customer could not be notified."
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=(
                    f"*Appointment cancelled*\n\nCustomer: {appt.customer_name}\n"
                    f"When: {self._clock.format_instant(appt.starts_at)}\n\n{told}"
                ),
                buttons=[Button(id=TODAY, title="Today"), MENU_BUTTON],
            ),
        )

    async def _ask_note(self, identity: str, session: AdminSession, prefix: str) -> None:
        try:
            appt = await self._admin.find_own(session.staff_id, prefix)
        except BarbershopError as exc:
            await self._error(identity, exc.message, retry=MANAGE)
            return
        session.state = AdminState.awaiting_note
        session.note_appointment_id = appt.id
        await self._messenger.send_text(
            identity,
            f"*Add a note for {appt.customer_name}*\n\n"
            "Write the note (up to 500 characters).\n\nWrite *cancel* to go back to the menu.",
        )

    async def _add_note(self, identity: str, session: AdminSession, prefix: str, text: str) -> None:
        try:
            note = await self._admin.add_note(session.staff_id, prefix, text)
        except BarbershopError as exc:
            await self._error(identity, exc.message)
            return
        await self._messenger.send_buttons(
            identity, ButtonPrompt(body=f"*Note saved*\n\n\"{note.preview}\"", buttons=[MENU_BUTTON])
        )

    # -- blocking ------------------------------------------------------------

    async def _block_days(self, identity: str, session: AdminSession) -> None:
        days = self._clock.next_days(BLOCK_DAYS)
        rows = [
            ListRow(id=f"{BLOCK_DAY_PREFIX}{day.isoformat()}", title=self._clock.format_day(day))
            for day in days
        ]
        await self._messenger.send_list(
            identity,
            ListPrompt(
                header="Block time",
                body="Which day?",
                button_text="Days",
                sections=[ListSection(title="Days", rows=rows)],
            ),
        )

    async def _block_hours(self, identity: str, session: AdminSession, raw_day: str) -> None:
        try:
            day = date.fromisoformat(raw_day)
        except ValueError:
            await self._block_days(identity, session)
            return
        if day not in self._clock.next_days(BLOCK_DAYS):
            await self._block_days(identity, session)
            return
        session.block_day = day
        session.block_page = 0
        await self._send_hour_page(identity, session)

    async def _block_next_page(self, identity: str, session: AdminSession) -> None:
        if session.block_day is None:
            await self._block_days(identity, session)
            return
        session.block_page += 1
        await self._send_hour_page(identity, session)

    async def _send_hour_page(self, identity: str, session: AdminSession) -> None:
        member = await self._require_member(session)
        blocked = await self._admin.blocked_hours(session.staff_id, session.block_day)
        rows = self._hour_rows(member, blocked)

        offset = session.block_page * HOURS_PER_PAGE
        if offset >= len(rows):
            session.block_page, offset = 0, 0
        remaining = rows[offset:]
        if len(remaining) > MAX_LIST_ROWS:
            remaining = remaining[:HOURS_PER_PAGE]
            remaining.append(ListRow(id=BLOCK_MORE, title="More hours"))

        await self._messenger.send_list(
            identity,
            ListPrompt(
                header="Block time",
                body=f"Hours on {self._clock.format_day(session.block_day)}. Blocked hours can be unblocked.",
                button_text="Hours",
                sections=[ListSection(title="Hours", rows=remaining)],
            ),
        )

    @staticmethod
    def _hour_rows(member: Staff, blocked: Dict[str, BlockedInterval]) -> List[ListRow]:
        rows = []
        hours = member.working_hours
        for hour in range(hours.start_hour, hours.end_hour):
            time = f"{hour:02d}:00"
            block = blocked.get(time)
            if block is None:
                rows.append(ListRow(id=_slot_id(BLOCK_PREFIX, time), title=f"Block {time}"))
            else:
                kind = "daily" if block.is_recurring else "this day"
                rows.append(
                    ListRow(
                        id=_slot_id(UNBLOCK_PREFIX, time),
                        title=f"Unblock {time}",
                        description=f"Blocked {kind} ({block.reason})",
                    )
                )
        return rows

    async def _block_kind(self, identity: str, session: AdminSession, time: str) -> None:
        if session.block_day is None:
            session.block_day = self._clock.today()
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=f"Block {time} only on {self._clock.format_day(session.block_day)}, or every day as lunch?",
                buttons=[
                    Button(id=_slot_id(BLOCK_ONCE_PREFIX, time), title="Only this day"),
                    Button(id=_slot_id(BLOCK_DAILY_PREFIX, time), title="Daily lunch"),
                    MENU_BUTTON,
                ],
            ),
        )

    async def _block(
        self,
        identity: str,
        session: AdminSession,
        time: str,
        day: Optional[date],
        recurring: bool = False,
    ) -> None:
        day = day or self._clock.today()
        reason = BlockReason.lunch if recurring else BlockReason.other
        try:
            await self._admin.block(session.staff_id, time, day=day, reason=reason, recurring=recurring)
        except BarbershopError as exc:
            await self._error(identity, exc.message, retry=BLOCK)
            return
        when = "every day" if recurring else self._clock.format_day(day)
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=f"*Time blocked*\n\n{time} on {when} is no longer bookable.",
                buttons=[Button(id=BLOCK, title="Block another"), MENU_BUTTON],
            ),
        )

    async def _unblock(self, identity: str, session: AdminSession, time: str, day: Optional[date]) -> None:
        day = day or self._clock.today()
        try:
            await self._admin.unblock(session.staff_id, time, day=day)
        except BarbershopError as exc:
            await self._error(identity, exc.message, retry=BLOCK)
            return
        await self._messenger.send_buttons(
            identity,
            ButtonPrompt(
                body=f"*Time unblocked*\n\n{time} on {self._clock.format_day(day)} is bookable again.",
                buttons=[MENU_BUTTON],
            ),
        )

    # -- helpers -------------------------------------------------------------

    async def _require_member(self, session: AdminSession) -> Staff:
        member = await self._staff.get(session.staff_id)
        if member is None:
            raise ValidationError("Your staff profile is no longer available")
        return member

    def _appointment_lines(self, summary: DaySummary) -> List[str]:
        lines = []
        for appt in summary.appointments:
            icon = STATUS_ICONS.get(appt.status, "-")
            lines.append(f"{icon} *{self._clock.format_time(appt.starts_at)}* - {appt.customer_name}")
            lines.append(f"   {service_label(appt.service)} | {appt.short_id}")
        return lines

    async def _error(self, identity: str, message: str, retry: Optional[str] = None) -> None:
        buttons = [MENU_BUTTON]
        if retry:
            buttons.insert(0, Button(id=retry, title="Try again"))
        await self._messenger.send_buttons(identity, ButtonPrompt(body=f"*Error*\n\n{message}", buttons=buttons))
