# barbershop/clock.py

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Tuple
from zoneinfo import ZoneInfo


class TimeProvider:
    """Current time and calendar arithmetic in the business timezone.

    Every comparison against "now" or "today" goes through here, so the host
    clock's timezone never leaks into scheduling decisions.
    """

    def __init__(self, timezone_name: str = "America/Bogota") -> None:
        self.zone = ZoneInfo(timezone_name)

    def now(self) -> datetime:
        return datetime.now(tz=self.zone)

    def today(self) -> date:
        return self.now().date()

    def current_hour(self) -> int:
        return self.now().hour

    def local(self, instant: datetime) -> datetime:
        return instant.astimezone(self.zone)

    def local_date(self, instant: datetime) -> date:
        return self.local(instant).date()

    def at(self, day: date, hour: int, minute: int = 0) -> datetime:
        return datetime.combine(day, time(hour, minute), tzinfo=self.zone)

    def day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        start = self.at(day, 0)
        return start, self.at(day + timedelta(days=1), 0)

    def is_past(self, instant: datetime) -> bool:
        return instant <= self.now()

    def next_days(self, count: int) -> List[date]:
        today = self.today()
        return [today + timedelta(days=offset) for offset in range(count)]

    def week_bounds(self) -> Tuple[date, date]:
        """Monday and Sunday of the current week."""
        today = self.today()
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=6)

    def month_bounds(self) -> Tuple[date, date]:
        today = self.today()
        first = today.replace(day=1)
        next_first = (first + timedelta(days=32)).replace(day=1)
        return first, next_first - timedelta(days=1)

    def format_time(self, instant: datetime) -> str:
        return self.local(instant).strftime("%H:%M")

    def format_day(self, day: date) -> str:
        return day.strftime("%a %d %b")

    def format_instant(self, instant: datetime) -> str:
        local = self.local(instant)
        return f"{self.format_day(local.date())} at {local.strftime('%H:%M')}"
