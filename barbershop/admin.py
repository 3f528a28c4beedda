# barbershop/admin.py

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from .availability import SlotAvailabilityEngine
from .clock import TimeProvider
from .data import service_label
from .errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InfrastructureError,
    NotFoundError,
    ValidationError,
)
from .models import Appointment, BlockedInterval, ClientNote, Staff, normalize_time
from .ports import (
    AppointmentStore,
    BlockedIntervalStore,
    ClientNoteStore,
    Messenger,
    PinHasher,
    StaffDirectory,
)
from .schemas import AppointmentStatus, BlockReason

logger = logging.getLogger(__name__)

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

OPEN_STATUSES = (AppointmentStatus.pending, AppointmentStatus.confirmed)


@dataclass
class DaySummary:
    day: date
    appointments: List[Appointment]
    next_appointment: Optional[Appointment] = None

    @property
    def total(self) -> int:
        return len(self.appointments)

    @property
    def pending(self) -> int:
        return sum(1 for appt in self.appointments if appt.status in OPEN_STATUSES)

    @property
    def completed(self) -> int:
        return sum(1 for appt in self.appointments if appt.status == AppointmentStatus.completed)


@dataclass
class WeekSummary:
    start: date
    end: date
    days: List[DaySummary] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(day.total for day in self.days)

    @property
    def pending(self) -> int:
        return sum(day.pending for day in self.days)

    @property
    def completed(self) -> int:
        return sum(day.completed for day in self.days)


@dataclass
class MonthStats:
    month: str
    year: int
    total: int = 0
    completed: int = 0
    cancelled: int = 0
    pending: int = 0
    most_popular_service: Optional[Tuple[str, int]] = None
    daily_average: float = 0.0
    busiest_weekday: Optional[Tuple[str, int]] = None
    peak_hours: List[Tuple[str, int]] = field(default_factory=list)
    completion_rate: int = 0


class AdminService:
    """Staff-side operations. Every mutation checks the appointment belongs to the caller."""

    def __init__(
        self,
        staff: StaffDirectory,
        appointments: AppointmentStore,
        blocks: BlockedIntervalStore,
        notes: ClientNoteStore,
        hasher: PinHasher,
        messenger: Messenger,
        engine: SlotAvailabilityEngine,
        clock: TimeProvider,
        shop_name: str = "the barber shop",
    ):
        self._staff = staff
        self._appointments = appointments
        self._blocks = blocks
        self._notes = notes
        self._hasher = hasher
        self._messenger = messenger
        self._engine = engine
        self._clock = clock
        self._shop_name = shop_name

    async def authenticate(self, alias: str, pin: str) -> Staff:
        member = await self._staff.find_by_alias(alias.strip().lower())
        if member is None:
            logger.info("Admin auth attempt failed")
            raise AuthenticationError()
        if not member.is_active or not member.has_pin:
            logger.info("Admin auth attempt for %s without a usable PIN", member.id)
            raise AuthenticationError()

        # hashing runs in a worker thread
        valid = await asyncio.to_thread(self._hasher.verify, pin, member.pin_hash)
        if not valid:
            logger.info("Admin auth attempt: wrong PIN for %s", member.id)
            raise AuthenticationError()

        logger.info("Admin auth success: %s", member.id)
        return member

    async def set_pin(self, staff_id: str, pin: str) -> None:
        try:
            hashed = await asyncio.to_thread(self._hasher.hash, pin)
        except ValueError as exc:
            raise ValidationError("PIN must be 4-6 digits") from exc
        await self._staff.set_pin_hash(staff_id, hashed)

    # -- views ---------------------------------------------------------------

    async def day(self, staff_id: str, day: Optional[date] = None) -> DaySummary:
        day = day or self._clock.today()
        appointments = await self._engine.booked_appointments(staff_id, day)
        now = self._clock.now()
        upcoming = [
            appt for appt in appointments if appt.starts_at > now and appt.status in OPEN_STATUSES
        ]
        return DaySummary(
            day=day,
            appointments=appointments,
            next_appointment=upcoming[0] if upcoming else None,
        )

    async def today(self, staff_id: str) -> DaySummary:
        return await self.day(staff_id)

    async def booked_counts(self, staff_id: str, days: List[date]) -> Dict[date, int]:
        return await self._engine.booked_counts(staff_id, days)

    async def week(self, staff_id: str) -> WeekSummary:
        monday, sunday = self._clock.week_bounds()
        start, _ = self._clock.day_bounds(monday)
        _, end = self._clock.day_bounds(sunday)
        rows = await self._appointments.find_by_staff_and_range(staff_id, start, end)

        by_day: Dict[date, List[Appointment]] = {}
        for appt in rows:
            by_day.setdefault(self._clock.local_date(appt.starts_at), []).append(appt)

        summary = WeekSummary(start=monday, end=sunday)
        for offset in range(7):
            day = monday + timedelta(days=offset)
            summary.days.append(DaySummary(day=day, appointments=by_day.get(day, [])))
        return summary

    async def stats(self, staff_id: str) -> MonthStats:
        first, last = self._clock.month_bounds()
        start, _ = self._clock.day_bounds(first)
        _, end = self._clock.day_bounds(last)
        rows = await self._appointments.find_by_staff_and_range(
            staff_id, start, end, include_cancelled=True
        )
        today = self._clock.today()
        stats = MonthStats(month=first.strftime("%B"), year=first.year, total=len(rows))

        stats.completed = sum(1 for appt in rows if appt.status == AppointmentStatus.completed)
        stats.cancelled = sum(1 for appt in rows if appt.status == AppointmentStatus.cancelled)
        stats.pending = sum(1 for appt in rows if appt.status in OPEN_STATUSES)

        live = [appt for appt in rows if appt.status != AppointmentStatus.cancelled]
        if not live:
            return stats

        services = Counter(service_label(appt.service) for appt in live)
        stats.most_popular_service = services.most_common(1)[0]

        days_passed = max(1, (today - first).days + 1)
        stats.daily_average = round(len(live) / days_passed, 1)

        local_starts = [self._clock.local(appt.starts_at) for appt in live]
        weekdays = Counter(WEEKDAYS[start.weekday()] for start in local_starts)
        stats.busiest_weekday = weekdays.most_common(1)[0]

        hours = Counter(start.hour for start in local_starts)
        stats.peak_hours = [(f"{hour:02d}:00", count) for hour, count in hours.most_common(3)]

        stats.completion_rate = round(stats.completed / len(live) * 100)
        return stats

    # -- appointment actions -------------------------------------------------

    async def find_own(self, staff_id: str, prefix: str) -> Appointment:
        prefix = prefix.strip().lower()
        if not prefix:
            raise ValidationError("Missing appointment code")
        matches = await self._appointments.find_by_id_prefix(prefix)
        if not matches:
            raise NotFoundError(f"No appointment found with code {prefix}")

        own = [appt for appt in matches if appt.staff_id == staff_id]
        if not own:
            logger.warning(
                "Staff %s tried to act on appointment %s owned by %s",
                staff_id,
                matches[0].short_id,
                matches[0].staff_id,
            )
            raise AuthorizationError("That appointment belongs to another staff member")
        if len(own) > 1:
            raise ValidationError("That code matches several appointments. Use more characters.")
        return own[0]

    async def complete(self, staff_id: str, prefix: str) -> Appointment:
        appointment = await self.find_own(staff_id, prefix)
        appointment.complete()
        appointment = await self._appointments.save(appointment)
        logger.info("Appointment %s completed by %s", appointment.short_id, staff_id)
        return appointment

    async def cancel(self, staff_id: str, prefix: str, notify: bool = True) -> Tuple[Appointment, bool]:
        """Returns the cancelled appointment and whether the customer was told."""
        appointment = await self.find_own(staff_id, prefix)
        appointment.cancel()
        appointment = await self._appointments.save(appointment)
        logger.info("Appointment %s cancelled by %s", appointment.short_id, staff_id)

        notified = False
        if notify:
            notified = await self._notify_cancellation(appointment)
        return appointment, notified

    async def _notify_cancellation(self, appointment: Appointment) -> bool:
        body = (
            f"Hello {appointment.customer_name}, your appointment on "
            f"{self._clock.format_instant(appointment.starts_at)} "
            f"({service_label(appointment.service)}) was cancelled by {self._shop_name}.\n\n"
            "Write *menu* to book a new time."
        )
        try:
            await self._messenger.send_text(appointment.customer_phone, body)
        except InfrastructureError:
            logger.exception(
                "Could not notify %s about cancelled appointment %s",
                appointment.customer_phone,
                appointment.short_id,
            )
            return False
        return True

    async def add_note(self, staff_id: str, prefix: str, content: str) -> ClientNote:
        appointment = await self.find_own(staff_id, prefix)
        note = ClientNote.compose(
            customer_phone=appointment.customer_phone,
            staff_id=staff_id,
            content=content,
            appointment_id=appointment.id,
        )
        return await self._notes.add(note)

    async def client_notes(self, staff_id: str, phone: str) -> List[ClientNote]:
        return await self._notes.list_for_client(phone, staff_id)

    # -- blocking ------------------------------------------------------------

    async def blocked_hours(self, staff_id: str, day: date) -> Dict[str, BlockedInterval]:
        blocks = await self._blocks.find_for_day(staff_id, day)
        return {block.start_time: block for block in blocks}

    async def block(
        self,
        staff_id: str,
        time: str,
        day: Optional[date] = None,
        reason: BlockReason = BlockReason.other,
        recurring: bool = False,
    ) -> BlockedInterval:
        member = await self._require_staff(staff_id)
        time = normalize_time(time)
        day = day or self._clock.today()

        hours = member.working_hours
        hour = int(time.split(":")[0])
        if not hours.contains_hour(hour):
            raise ValidationError(
                f"The hour must be between {hours.start_hour:02d}:00 and {hours.end_hour - 1:02d}:00"
            )

        existing = await self._blocks.find_for_day(staff_id, day)
        local = self._clock.at(day, hour, int(time.split(":")[1]))
        if any(block.covers(local) for block in existing):
            raise ConflictError(f"{time} is already blocked")

        block = BlockedInterval.one_hour(staff_id, time, day=day, reason=reason, recurring=recurring)
        block = await self._blocks.create(block)
        logger.info(
            "Staff %s blocked %s %s",
            staff_id,
            time,
            "daily" if recurring else day.isoformat(),
        )
        return block

    async def unblock(self, staff_id: str, time: str, day: Optional[date] = None) -> None:
        time = normalize_time(time)
        day = day or self._clock.today()
        if not await self._blocks.delete_by_slot(staff_id, day, time):
            raise NotFoundError(f"{time} is not blocked")
        logger.info("Staff %s unblocked %s on %s", staff_id, time, day.isoformat())

    async def _require_staff(self, staff_id: str) -> Staff:
        member = await self._staff.get(staff_id)
        if member is None:
            raise NotFoundError("Staff member not found")
        return member
