# barbershop/commands.py
"""Parser for the staff secret command.

    admin <alias> <pin> [action] [params...]

Text that does not match the shape is not a command and parses to ``None``;
callers route it like any other message.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .errors import ValidationError
from .models import TIME_RE

ALIAS_RE = re.compile(r"^[a-z0-9]{2,20}$")
PIN_RE = re.compile(r"^\d{4,6}$")
PREFIX_RE = re.compile(r"^[0-9a-f-]{4,36}$")


class AdminAction(str, Enum):
    panel = "panel"
    today = "today"
    week = "week"
    cancel = "cancel"
    block = "block"
    unblock = "unblock"
    complete = "complete"
    note = "note"
    stats = "stats"
    help = "help"


ACTION_ALIASES = {
    "panel": AdminAction.panel,
    "hoy": AdminAction.today,
    "today": AdminAction.today,
    "semana": AdminAction.week,
    "week": AdminAction.week,
    "cancelar": AdminAction.cancel,
    "cancel": AdminAction.cancel,
    "bloquear": AdminAction.block,
    "block": AdminAction.block,
    "desbloquear": AdminAction.unblock,
    "unblock": AdminAction.unblock,
    "completar": AdminAction.complete,
    "complete": AdminAction.complete,
    "nota": AdminAction.note,
    "note": AdminAction.note,
    "stats": AdminAction.stats,
    "estadisticas": AdminAction.stats,
    "ayuda": AdminAction.help,
    "help": AdminAction.help,
}


@dataclass(frozen=True)
class AdminCommand:
    alias: str
    pin: str
    action: AdminAction = AdminAction.panel
    params: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["AdminCommand"]:
        if not text:
            return None
        original = text.split()
        parts = [part.lower() for part in original]
        if len(parts) < 3 or parts[0] != "admin":
            return None

        alias, pin = parts[1], parts[2]
        if not ALIAS_RE.match(alias) or not PIN_RE.match(pin):
            return None

        # unknown words fall back to the panel
        action = ACTION_ALIASES.get(parts[3], AdminAction.panel) if len(parts) > 3 else AdminAction.panel

        if action == AdminAction.note:
            # the appointment prefix is case-insensitive, the note text is not
            params = tuple(parts[4:5]) + tuple(original[5:])
        else:
            params = tuple(parts[4:])
        return cls(alias=alias, pin=pin, action=action, params=params)

    @staticmethod
    def is_admin_command(text: Optional[str]) -> bool:
        return AdminCommand.parse(text) is not None

    @property
    def needs_appointment(self) -> bool:
        return self.action in (AdminAction.cancel, AdminAction.complete, AdminAction.note)

    @property
    def needs_time(self) -> bool:
        return self.action in (AdminAction.block, AdminAction.unblock)

    @property
    def appointment_prefix(self) -> Optional[str]:
        return self.params[0] if self.needs_appointment and self.params else None

    @property
    def time(self) -> Optional[str]:
        return self.params[0] if self.needs_time and self.params else None

    @property
    def note_text(self) -> Optional[str]:
        if self.action != AdminAction.note or len(self.params) < 2:
            return None
        return " ".join(self.params[1:])

    def validate_params(self) -> None:
        if self.needs_appointment:
            if not self.params:
                raise ValidationError(
                    f"Missing appointment code. Usage: admin <alias> <pin> {self.action.value} <code>"
                )
            if not PREFIX_RE.match(self.params[0]):
                raise ValidationError("Appointment codes look like 1a2b3c4d")
        if self.action == AdminAction.note and not self.note_text:
            raise ValidationError("Missing note text. Usage: admin <alias> <pin> note <code> <text>")
        if self.needs_time:
            if not self.params:
                raise ValidationError(
                    f"Missing time. Usage: admin <alias> <pin> {self.action.value} HH:MM"
                )
            if not TIME_RE.match(self.params[0]):
                raise ValidationError("Invalid time format. Use HH:MM (e.g. 14:00)")

    def __repr__(self) -> str:
        # never print the PIN
        return f"AdminCommand(alias={self.alias!r}, action={self.action.value!r}, params={self.params!r})"
