# barbershop/schemas.py

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

if TYPE_CHECKING:
    from .clock import TimeProvider

SLOT_MINUTES = 60
MAX_BUTTONS = 3
MAX_LIST_ROWS = 10
PHONE_MIN_DIGITS, PHONE_MAX_DIGITS = 7, 15


class ServiceType(str, Enum):
    haircut = "haircut"
    beard = "beard"
    both = "both"


class AppointmentStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"
    completed = "completed"


class BlockReason(str, Enum):
    lunch = "lunch"
    break_ = "break"
    personal = "personal"
    other = "other"


class EventKind(str, Enum):
    text = "text"
    selection = "selection"


def sanitize_phone(value: str) -> str:
    """Keep digits and a leading plus sign."""
    digits = re.sub(r"\D", "", value)
    return f"+{digits}" if value.strip().startswith("+") else digits


class WorkingHours(BaseModel):
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)
    slot_minutes: int = SLOT_MINUTES

    @model_validator(mode="after")
    def _check_range(self):
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        if self.slot_minutes != SLOT_MINUTES:
            raise ValueError(f"slot_minutes is fixed at {SLOT_MINUTES}")
        return self

    def contains_hour(self, hour: int) -> bool:
        return self.start_hour <= hour < self.end_hour

    def slot_starts(self, day: date, clock: "TimeProvider") -> List[datetime]:
        """Every slot start for ``day`` in business time, end hour exclusive."""
        return [clock.at(day, hour) for hour in range(self.start_hour, self.end_hour)]


def require_phone(value: str) -> str:
    cleaned = sanitize_phone(value)
    if not PHONE_MIN_DIGITS <= len(cleaned.lstrip("+")) <= PHONE_MAX_DIGITS:
        raise ValueError(f"phone number must have {PHONE_MIN_DIGITS}-{PHONE_MAX_DIGITS} digits")
    return cleaned


class InboundEvent(BaseModel):
    identity: str = Field(min_length=1, max_length=32)
    kind: EventKind
    payload: str = Field(default="", max_length=4096)

    # identities become customer phones at booking time
    @field_validator("identity")
    @classmethod
    def _normalize_identity(cls, value: str) -> str:
        return require_phone(value)


class AppointmentCreate(BaseModel):
    customer_phone: str
    customer_name: str
    staff_id: str
    service: ServiceType
    starts_at: datetime

    @field_validator("customer_phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        return require_phone(value)

    @field_validator("customer_name")
    @classmethod
    def _name(cls, value: str) -> str:
        value = value.strip()[:100]
        if len(value) < 2:
            raise ValueError("name is too short")
        return value

    @field_validator("starts_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("starts_at must be timezone-aware")
        return value


# Chat clients truncate long labels anyway; clip instead of rejecting.

class Button(BaseModel):
    id: str
    title: str

    @field_validator("title")
    @classmethod
    def _clip(cls, value: str) -> str:
        return value[:20]


class ButtonPrompt(BaseModel):
    body: str
    buttons: List[Button] = Field(min_length=1, max_length=MAX_BUTTONS)
    header: Optional[str] = None
    footer: Optional[str] = None


class ListRow(BaseModel):
    id: str
    title: str
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _clip_title(cls, value: str) -> str:
        return value[:24]

    @field_validator("description")
    @classmethod
    def _clip_description(cls, value: Optional[str]) -> Optional[str]:
        return value[:72] if value else value


class ListSection(BaseModel):
    title: str
    rows: List[ListRow] = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def _clip(cls, value: str) -> str:
        return value[:24]


class ListPrompt(BaseModel):
    body: str
    button_text: str
    sections: List[ListSection] = Field(min_length=1)
    header: Optional[str] = None
    footer: Optional[str] = None

    @field_validator("button_text")
    @classmethod
    def _clip(cls, value: str) -> str:
        return value[:20]

    @model_validator(mode="after")
    def _row_limit(self):
        total = sum(len(section.rows) for section in self.sections)
        if total > MAX_LIST_ROWS:
            raise ValueError(f"a list prompt holds at most {MAX_LIST_ROWS} rows, got {total}")
        return self


class SlotPublic(BaseModel):
    time: str
    starts_at: datetime


class AvailabilityResponse(BaseModel):
    staff_id: str
    date: date
    slots: List[SlotPublic]


class SweepResponse(BaseModel):
    processed: int
