# barbershop/models.py

import re
import uuid
from datetime import date as Date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, text
from sqlalchemy.types import TypeDecorator
from sqlmodel import Column, Field, SQLModel

from .errors import ConflictError, ValidationError
from .schemas import SLOT_MINUTES, AppointmentStatus, BlockReason, WorkingHours

TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")
NOTE_MAX_LENGTH = 500
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f]")

# partial unique indexes only look at live rows
_LIVE_ROWS = "status != 'cancelled' AND archived_at IS NULL"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_time(value: str) -> str:
    """'9:0' style input is rejected; '9:00' becomes '09:00'."""
    match = TIME_RE.match(value.strip())
    if not match:
        raise ValidationError("Invalid time format. Use HH:MM (e.g. 14:00)")
    hour, minute = match.groups()
    return f"{int(hour):02d}:{minute}"


def minutes_of(value: str) -> int:
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)


class UTCDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and hands them back as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetimes are not stored")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Staff(SQLModel, table=True):
    id: str = Field(primary_key=True)
    alias: str = Field(index=True, unique=True)
    name: str
    pin_hash: Optional[str] = None
    is_active: bool = True
    start_hour: int = 9
    end_hour: int = 19
    slot_minutes: int = SLOT_MINUTES

    @property
    def working_hours(self) -> WorkingHours:
        return WorkingHours(
            start_hour=self.start_hour,
            end_hour=self.end_hour,
            slot_minutes=self.slot_minutes,
        )

    @property
    def has_pin(self) -> bool:
        return bool(self.pin_hash)


class Appointment(SQLModel, table=True):
    __table_args__ = (
        Index(
            "uq_staff_start_live",
            "staff_id",
            "starts_at",
            unique=True,
            sqlite_where=text(_LIVE_ROWS),
            postgresql_where=text(_LIVE_ROWS),
        ),
        Index(
            "uq_customer_live",
            "customer_phone",
            unique=True,
            sqlite_where=text(_LIVE_ROWS),
            postgresql_where=text(_LIVE_ROWS),
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True)

    customer_phone: str = Field(index=True)
    customer_name: str
    staff_id: str = Field(foreign_key="staff.id", index=True)
    service: str
    starts_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False, index=True))
    status: str = AppointmentStatus.pending.value
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
    # set by the expiry sweep; archived rows stay for reporting
    archived_at: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True)
    )

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=SLOT_MINUTES)

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def is_terminal(self) -> bool:
        return self.status in (AppointmentStatus.cancelled, AppointmentStatus.completed)

    def confirm(self) -> None:
        if self.status != AppointmentStatus.pending:
            raise ConflictError(f"Cannot confirm an appointment that is {self.status}")
        self.status = AppointmentStatus.confirmed.value

    def complete(self) -> None:
        if self.status == AppointmentStatus.completed:
            raise ConflictError("This appointment is already marked as completed")
        if self.status == AppointmentStatus.cancelled:
            raise ConflictError("A cancelled appointment cannot be completed")
        self.status = AppointmentStatus.completed.value

    def cancel(self) -> None:
        if self.status == AppointmentStatus.cancelled:
            raise ConflictError("This appointment was already cancelled")
        if self.status == AppointmentStatus.completed:
            raise ConflictError("A completed appointment cannot be cancelled")
        self.status = AppointmentStatus.cancelled.value


class AppointmentHistory(SQLModel, table=True):
    # one record per customer, overwritten on every sweep
    customer_phone: str = Field(primary_key=True)
    appointment_id: str
    customer_name: str
    staff_id: str
    service: str
    starts_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    status: str
    created_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    archived_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))


class BlockedInterval(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)

    staff_id: str = Field(foreign_key="staff.id", index=True)
    date: Optional[Date] = Field(default=None, index=True)  # None for recurring blocks
    start_time: str
    end_time: str
    reason: str = BlockReason.other.value
    is_recurring: bool = False
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    @classmethod
    def build(
        cls,
        staff_id: str,
        start_time: str,
        end_time: str,
        day: Optional[Date] = None,
        reason: BlockReason = BlockReason.other,
        recurring: bool = False,
    ) -> "BlockedInterval":
        start_time = normalize_time(start_time)
        end_time = normalize_time(end_time)
        if minutes_of(start_time) >= minutes_of(end_time):
            raise ValidationError("Start time must be before end time")
        if not recurring and day is None:
            raise ValidationError("A one-off block needs a date")
        return cls(
            staff_id=staff_id,
            date=None if recurring else day,
            start_time=start_time,
            end_time=end_time,
            reason=BlockReason(reason).value,
            is_recurring=recurring,
        )

    @classmethod
    def one_hour(
        cls,
        staff_id: str,
        start_time: str,
        day: Optional[Date] = None,
        reason: BlockReason = BlockReason.other,
        recurring: bool = False,
    ) -> "BlockedInterval":
        start_time = normalize_time(start_time)
        end_minutes = minutes_of(start_time) + SLOT_MINUTES
        if end_minutes > 24 * 60 - 1:
            raise ValidationError("A block cannot cross midnight")
        end_time = f"{end_minutes // 60:02d}:{end_minutes % 60:02d}"
        return cls.build(staff_id, start_time, end_time, day, reason, recurring)

    def applies_to(self, day: Date) -> bool:
        return self.is_recurring or self.date == day

    def covers(self, local_start: datetime) -> bool:
        """``local_start`` must already be in business time."""
        if not self.applies_to(local_start.date()):
            return False
        minute = local_start.hour * 60 + local_start.minute
        return minutes_of(self.start_time) <= minute < minutes_of(self.end_time)


class Client(SQLModel, table=True):
    phone: str = Field(primary_key=True)
    name: str
    total_appointments: int = 0
    last_appointment_at: Optional[datetime] = Field(
        default=None, sa_column=Column(UTCDateTime, nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    @staticmethod
    def display_name(name: str) -> str:
        return " ".join(word.capitalize() for word in name.strip()[:100].split())

    def record_booking(self, name: str, at: datetime) -> None:
        self.name = self.display_name(name)
        self.total_appointments += 1
        self.last_appointment_at = at
        self.updated_at = utcnow()


class ClientNote(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    customer_phone: str = Field(index=True)
    staff_id: str = Field(foreign_key="staff.id", index=True)
    appointment_id: Optional[str] = None
    content: str
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )

    @classmethod
    def compose(
        cls,
        customer_phone: str,
        staff_id: str,
        content: str,
        appointment_id: Optional[str] = None,
    ) -> "ClientNote":
        if not content or not content.strip():
            raise ValidationError("The note cannot be empty")
        if len(content) > NOTE_MAX_LENGTH:
            raise ValidationError(f"Notes are limited to {NOTE_MAX_LENGTH} characters")
        cleaned = _CONTROL_CHARS.sub("", content.strip()[:NOTE_MAX_LENGTH])
        cleaned = cleaned.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        return cls(
            customer_phone=customer_phone,
            staff_id=staff_id,
            appointment_id=appointment_id,
            content=cleaned,
        )

    @property
    def preview(self) -> str:
        if len(self.content) <= 50:
            return self.content
        return self.content[:47] + "..."
