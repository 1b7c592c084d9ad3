from __future__ import annotations

from datetime import datetime, timedelta, date, time, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .config import (
    LLM_DEBUG,
    DEFAULT_TIMEZONE,
    HHMM_RE,
    EMAIL_RE,
    MAX_EMAIL_LENGTH,
)


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_hhmm(value: Any) -> bool:
    return isinstance(value, str) and bool(HHMM_RE.match(value.strip()))


def parse_hhmm(value: str) -> Tuple[int, int]:
    if not is_valid_hhmm(value):
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = value.strip().split(":")
    return int(hours), int(minutes)


def normalize_hhmm(value: str) -> str:
    hours, minutes = parse_hhmm(value)
    return f"{hours:02d}:{minutes:02d}"


def zone_for(timezone_name: Optional[str]) -> ZoneInfo:
    if isinstance(timezone_name, str) and timezone_name.strip():
        try:
            return ZoneInfo(timezone_name.strip())
        except Exception:
            _log_debug(f"[TIME] unknown timezone {timezone_name!r}, using default")
    return ZoneInfo(DEFAULT_TIMEZONE)


def resolve_timezone(requested_timezone: Optional[str],
                     preferences: Optional[Any] = None) -> str:
    pref_timezone = None
    if isinstance(preferences, dict):
        pref_timezone = preferences.get("timezone")
    elif preferences is not None:
        pref_timezone = getattr(preferences, "timezone", None)

    for candidate in (requested_timezone, pref_timezone, DEFAULT_TIMEZONE):
        if not isinstance(candidate, str):
            continue
        cleaned = candidate.strip()
        if not cleaned:
            continue
        try:
            ZoneInfo(cleaned)
            return cleaned
        except Exception:
            continue
    return DEFAULT_TIMEZONE


def to_utc(value: datetime) -> datetime:
    """Normalize an instant to UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_datetime(day: date, hhmm: str, timezone_name: str) -> datetime:
    """Wall-clock ``hhmm`` on ``day`` in ``timezone_name``, as a UTC instant."""
    hours, minutes = parse_hhmm(hhmm)
    local = datetime.combine(day, time(hours, minutes), tzinfo=zone_for(timezone_name))
    return local.astimezone(timezone.utc)


def day_bounds(day: date, timezone_name: str) -> Tuple[datetime, datetime]:
    tz = zone_for(timezone_name)
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_date(instant: datetime, timezone_name: str) -> date:
    return to_utc(instant).astimezone(zone_for(timezone_name)).date()


def local_today(timezone_name: str, now: Optional[datetime] = None) -> date:
    return local_date(now or now_utc(), timezone_name)


def js_weekday(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def intervals_overlap(a_start: datetime, a_end: datetime,
                      b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def minutes_between(start: datetime, end: datetime) -> int:
    return int((to_utc(end) - to_utc(start)).total_seconds() // 60)


def shift_days_local(instant: datetime, days: int, timezone_name: str) -> datetime:
    """Move ``instant`` by whole days on the wall clock of ``timezone_name``."""
    tz = zone_for(timezone_name)
    local = to_utc(instant).astimezone(tz)
    moved = datetime.combine(local.date() + timedelta(days=days), local.time(), tzinfo=tz)
    return moved.astimezone(timezone.utc)


def events_for_day(events: Iterable[Any], day: date, timezone_name: str) -> List[Any]:
    """Events that intersect the local calendar day ``day``."""
    day_start, day_end = day_bounds(day, timezone_name)
    selected: List[Any] = []
    for event in events:
        if event.is_all_day:
            # all-day dates are anchored in the zone the event was listed in
            event_zone = getattr(event, "timezone", None) or timezone_name
            first = local_date(event.start, event_zone)
            last = local_date(event.end, event_zone)
            if first <= day < max(last, first + timedelta(days=1)):
                selected.append(event)
            continue
        if intervals_overlap(to_utc(event.start), to_utc(event.end), day_start, day_end):
            selected.append(event)
    return selected


def is_plausible_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    return bool(EMAIL_RE.match(candidate)) and len(candidate) <= MAX_EMAIL_LENGTH


def dedupe_preserving_order(values: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value not in seen:
            seen[value] = None
    return list(seen)


def format_time_12h(instant: datetime, timezone_name: str) -> str:
    local = to_utc(instant).astimezone(zone_for(timezone_name))
    return format_hhmm_12h(f"{local.hour:02d}:{local.minute:02d}")


def format_hhmm_12h(hhmm: str) -> str:
    hours, minutes = parse_hhmm(hhmm)
    period = "PM" if hours >= 12 else "AM"
    display_hours = hours % 12 or 12
    return f"{display_hours}:{minutes:02d} {period}"


def format_date_us(instant: datetime, timezone_name: str) -> str:
    local = to_utc(instant).astimezone(zone_for(timezone_name))
    return f"{local.month}/{local.day}/{local.year}"


def format_short_date(instant: datetime, timezone_name: str) -> str:
    local = to_utc(instant).astimezone(zone_for(timezone_name))
    return f"{local.strftime('%a, %b')} {local.day}"


def parse_iso_date(value: Any) -> Optional[date]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if "T" in cleaned:
        cleaned = cleaned.split("T")[0]
    try:
        return datetime.strptime(cleaned, "%Y-%m-%d").date()
    except Exception:
        return None
