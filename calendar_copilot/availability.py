from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import (
    CalendarEvent,
    DaySchedule,
    DayStats,
    Preferences,
    ProtectedTimeRule,
    TimeSlot,
    WorkingHours,
)
from .utils import (
    events_for_day,
    js_weekday,
    local_datetime,
    minutes_between,
    normalize_hhmm,
    to_utc,
)

BlockedRange = Tuple[datetime, datetime]


def _blocked_ranges(events: Iterable[CalendarEvent],
                    day: date,
                    protected_rules: Sequence[ProtectedTimeRule],
                    timezone_name: str) -> List[BlockedRange]:
    ranges: List[BlockedRange] = []
    for event in events_for_day(events, day, timezone_name):
        # All-day events never block time.
        if event.is_all_day:
            continue
        ranges.append((to_utc(event.start), to_utc(event.end)))

    weekday = js_weekday(day)
    for rule in protected_rules:
        if weekday not in rule.days_of_week:
            continue
        ranges.append((local_datetime(day, rule.start, timezone_name),
                       local_datetime(day, rule.end, timezone_name)))

    ranges.sort(key=lambda item: item[0])
    return ranges


def compute_available_slots(events: Iterable[CalendarEvent],
                            day: date,
                            working_hours: WorkingHours,
                            protected_rules: Sequence[ProtectedTimeRule],
                            timezone_name: str) -> List[TimeSlot]:
    """Free intervals of ``day`` inside working hours.

    Blocked ranges (timed events plus protected rules for the weekday) are
    swept in start order with a cursor that never moves backward. Any
    blocked range whose end lies past ``work_end`` pushes the cursor beyond
    it, so no tail slot is emitted in that case, even when the range itself
    starts after working hours.
    """
    work_start = local_datetime(day, working_hours.start, timezone_name)
    work_end = local_datetime(day, working_hours.end, timezone_name)

    slots: List[TimeSlot] = []
    cursor = work_start
    for range_start, range_end in _blocked_ranges(events, day, protected_rules, timezone_name):
        if cursor < range_start < work_end:
            slot_end = min(range_start, work_end)
            if cursor < slot_end:
                slots.append(TimeSlot(start=cursor, end=slot_end, timezone=timezone_name))
        if range_end > cursor:
            cursor = range_end

    if cursor < work_end:
        slots.append(TimeSlot(start=cursor, end=work_end, timezone=timezone_name))
    return slots


def calculate_day_stats(events: Iterable[CalendarEvent],
                        slots: Iterable[TimeSlot]) -> DayStats:
    meeting_minutes = 0
    focus_minutes = 0
    for event in events:
        duration = minutes_between(event.start, event.end)
        if event.category == "focus":
            focus_minutes += duration
        elif event.category in ("meeting", "external"):
            meeting_minutes += duration

    available_minutes = sum(slot.duration_minutes for slot in slots)
    return DayStats(meeting_minutes=meeting_minutes,
                    focus_minutes=focus_minutes,
                    available_minutes=available_minutes)


def build_day_schedule(events: Iterable[CalendarEvent],
                       day: date,
                       preferences: Preferences,
                       timezone_name: Optional[str] = None) -> DaySchedule:
    tz = timezone_name or preferences.timezone
    day_events = sorted(events_for_day(events, day, tz), key=lambda e: e.start)
    slots = compute_available_slots(day_events, day, preferences.working_hours,
                                    preferences.protected_times, tz)
    return DaySchedule(date=day,
                       timezone=tz,
                       events=day_events,
                       available_slots=slots,
                       stats=calculate_day_stats(day_events, slots))


def week_start_for(reference_date: date, week_starts_on: int = 0) -> date:
    offset = (js_weekday(reference_date) - week_starts_on) % 7
    return reference_date - timedelta(days=offset)


def build_week_schedule(events: Iterable[CalendarEvent],
                        reference_date: date,
                        preferences: Preferences) -> List[DaySchedule]:
    event_list = list(events)
    first_day = week_start_for(reference_date, preferences.week_starts_on)
    return [
        build_day_schedule(event_list, first_day + timedelta(days=offset), preferences)
        for offset in range(7)
    ]


def find_availability(events: Iterable[CalendarEvent],
                      start_date: date,
                      end_date: date,
                      duration_minutes: int,
                      preferences: Preferences,
                      respect_protected_time: bool = True) -> List[TimeSlot]:
    """Slots at least ``duration_minutes`` long on each day of ``[start_date, end_date]``."""
    event_list = list(events)
    rules = preferences.protected_times if respect_protected_time else []
    found: List[TimeSlot] = []
    current = start_date
    while current <= end_date:
        for slot in compute_available_slots(event_list, current, preferences.working_hours,
                                            rules, preferences.timezone):
            if slot.duration_minutes >= duration_minutes:
                found.append(slot)
        current += timedelta(days=1)
    return found


def is_protected_time(preferences: Preferences,
                      day: date,
                      start_hhmm: str,
                      end_hhmm: str) -> bool:
    weekday = js_weekday(day)
    start_hhmm = normalize_hhmm(start_hhmm)
    end_hhmm = normalize_hhmm(end_hhmm)
    for rule in preferences.protected_times:
        if weekday not in rule.days_of_week:
            continue
        if start_hhmm < rule.end and end_hhmm > rule.start:
            return True
    return False
