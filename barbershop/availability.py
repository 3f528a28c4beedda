# barbershop/availability.py

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Sequence

from .clock import TimeProvider
from .models import Appointment, BlockedInterval, Staff
from .ports import AppointmentStore, BlockedIntervalStore, StaffDirectory
from .schemas import SLOT_MINUTES

logger = logging.getLogger(__name__)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap: back-to-back intervals do not conflict."""
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class Slot:
    time: str
    starts_at: datetime


class SlotAvailabilityEngine:
    def __init__(
        self,
        staff: StaffDirectory,
        appointments: AppointmentStore,
        blocks: BlockedIntervalStore,
        clock: TimeProvider,
    ):
        self._staff = staff
        self._appointments = appointments
        self._blocks = blocks
        self._clock = clock

    def candidate_starts(self, member: Staff, day: date) -> List[datetime]:
        """Working-hour slot starts for ``day`` that have not begun yet."""
        today = self._clock.today()
        if day < today:
            return []
        starts = member.working_hours.slot_starts(day, self._clock)
        if day == today:
            current_hour = self._clock.current_hour()
            # a slot is never offered once its hour has begun
            starts = [start for start in starts if start.hour > current_hour]
        return starts

    async def available_slots(self, staff_id: str, day: date) -> List[Slot]:
        member = await self._staff.get(staff_id)
        if member is None or not member.is_active:
            return []

        starts = self.candidate_starts(member, day)
        if not starts:
            return []

        day_start, day_end = self._clock.day_bounds(day)
        booked = await self._appointments.find_by_staff_and_range(staff_id, day_start, day_end)
        blocks = await self._blocks.find_for_day(staff_id, day)

        return [
            Slot(time=start.strftime("%H:%M"), starts_at=start)
            for start in starts
            if not self._is_booked(start, booked) and not self._is_blocked(start, blocks)
        ]

    async def is_slot_free(self, staff_id: str, starts_at: datetime) -> bool:
        """Single-instant check; call again right before committing a booking."""
        member = await self._staff.get(staff_id)
        if member is None or not member.is_active:
            return False

        local = self._clock.local(starts_at)
        if local.minute or local.second or local.microsecond:
            return False
        if local not in self.candidate_starts(member, local.date()):
            return False

        blocks = await self._blocks.find_for_day(staff_id, local.date())
        if self._is_blocked(local, blocks):
            return False
        return await self._appointments.is_slot_free(staff_id, starts_at)

    async def booked_appointments(self, staff_id: str, day: date) -> List[Appointment]:
        day_start, day_end = self._clock.day_bounds(day)
        return await self._appointments.find_by_staff_and_range(staff_id, day_start, day_end)

    async def free_slot_counts(self, staff_id: str, days: Sequence[date]) -> Dict[date, int]:
        counts = {}
        for day in days:
            counts[day] = len(await self.available_slots(staff_id, day))
        return counts

    async def booked_counts(self, staff_id: str, days: Sequence[date]) -> Dict[date, int]:
        windows = {day: self._clock.day_bounds(day) for day in days}
        return await self._appointments.count_by_dates(staff_id, windows)

    @staticmethod
    def _is_booked(start: datetime, booked: Sequence[Appointment]) -> bool:
        end = start + timedelta(minutes=SLOT_MINUTES)
        return any(overlaps(start, end, appt.starts_at, appt.ends_at) for appt in booked)

    def _is_blocked(self, start: datetime, blocks: Sequence[BlockedInterval]) -> bool:
        local = self._clock.local(start)
        return any(block.covers(local) for block in blocks)
