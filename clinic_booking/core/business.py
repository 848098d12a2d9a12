# clinic_booking/core/business.py
from __future__ import annotations
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Optional, Sequence
from zoneinfo import ZoneInfo

from clinic_booking.core.config import settings

LOCAL_TZ = ZoneInfo(settings.PRACTICE_TIMEZONE)
UTC = ZoneInfo("UTC")

# 0=Mon .. 6=Sun
BUSINESS_HOURS = {
    0: (time(8, 0), time(18, 0)),  # Mon
    1: (time(8, 0), time(18, 0)),  # Tue
    2: (time(8, 0), time(13, 0)),  # Wed (short)
    3: (time(8, 0), time(18, 0)),  # Thu
    4: (time(8, 0), time(14, 0)),  # Fri (short)
    5: None,                       # Sat (closed)
    6: None,                       # Sun (closed)
}


def to_local(day: date, at: time, tz: ZoneInfo = LOCAL_TZ) -> datetime:
    """Wall-clock slot date/time as an aware datetime in the practice timezone."""
    return datetime.combine(day, at, tzinfo=tz)


def add_minutes(at: time, minutes: int) -> time:
    """Shift a wall-clock time; callers never cross midnight with slot units."""
    shifted = datetime.combine(date.min, at) + timedelta(minutes=minutes)
    return shifted.time()


class PracticeCalendar:
    """
    Opening hours plus closure days (public holidays, practice vacation).

    A slot is bookable only if it lies fully inside the opening window of its
    weekday and its date is not a closure day.
    """

    def __init__(self, hours: Optional[dict] = None, closures: Iterable[date] = ()):
        self.hours = dict(BUSINESS_HOURS if hours is None else hours)
        self.closures = set(closures)

    def add_closure(self, day: date) -> None:
        self.closures.add(day)

    def window(self, day: date) -> Optional[tuple[time, time]]:
        if day in self.closures:
            return None
        return self.hours.get(day.weekday())

    def is_open(self, day: date, start: time, end: time) -> bool:
        wnd = self.window(day)
        if not wnd:
            return False
        open_at, close_at = wnd
        return open_at <= start and end <= close_at

    def iter_slot_times(self, day: date, unit_minutes: int) -> Iterator[tuple[time, time]]:
        """Yield (start, end) pairs of every unit inside the day's opening window."""
        wnd = self.window(day)
        if not wnd:
            return
        open_at, close_at = wnd
        cur = open_at
        while True:
            end = add_minutes(cur, unit_minutes)
            if end > close_at or end <= cur:
                break
            yield cur, end
            cur = end


def plan_slots(calendar: PracticeCalendar, day: date, unit_minutes: int,
               schedule: Optional[Sequence] = None) -> list[tuple[time, time, str]]:
    """
    Units to create on ``day`` as (start, end, insurance_filter).

    Without a schedule the whole opening window is bookable for everyone.
    With one, a unit is kept only when a bookable entry covers it and no
    blocking entry overlaps it. It is private-only when every covering
    bookable entry is. Units stay on the opening-hours grid, so schedules
    narrow the practice hours and never extend them.
    """
    units = list(calendar.iter_slot_times(day, unit_minutes))
    if schedule is None:
        return [(start, end, "all") for start, end in units]

    today = [entry for entry in schedule if entry.applies_on(day)]
    bookable = [entry for entry in today if entry.is_bookable]
    blocked = [entry for entry in today if not entry.is_bookable]

    planned = []
    for start, end in units:
        if any(b.start_time < end and start < b.end_time for b in blocked):
            continue
        covering = [e for e in bookable if e.start_time <= start and end <= e.end_time]
        if not covering:
            continue
        private = all(e.insurance_filter == "private_only" for e in covering)
        planned.append((start, end, "private_only" if private else "all"))
    return planned


def generation_window(today: date, weeks_ahead: int) -> tuple[date, date]:
    """Date range covered by a bulk slot generation run."""
    return today, today + timedelta(weeks=weeks_ahead) - timedelta(days=1)


def iter_days(start: date, end: date) -> Iterator[date]:
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=1)


default_calendar = PracticeCalendar()
