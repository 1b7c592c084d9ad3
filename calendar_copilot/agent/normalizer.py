from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional
import json
import re

from ..config import EMAIL_SEARCH_RE
from ..utils import dedupe_preserving_order, js_weekday, parse_iso_date

_FENCE_OPEN_RE = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```\s*$")
_LOOSE_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# 0 = Sunday, matching ProtectedTimeRule.days_of_week
WEEKDAY_NAMES = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]
_WEEKDAY_SCAN_ORDER = [1, 2, 3, 4, 5, 6, 0]


def clean_json_response(text: Any) -> str:
  """Strip a ```json fence and any prose around the outermost braces."""
  if not isinstance(text, str):
    return ""
  cleaned = _FENCE_OPEN_RE.sub("", text, count=1)
  cleaned = _FENCE_CLOSE_RE.sub("", cleaned, count=1)
  start = cleaned.find("{")
  end = cleaned.rfind("}")
  if start == -1 or end < start:
    return ""
  return cleaned[start:end + 1].strip()


def load_json_object(text: Any) -> Optional[Dict[str, Any]]:
  """Parse NLU output as a JSON object; None when it is not one."""
  cleaned = clean_json_response(text)
  if not cleaned:
    return None
  try:
    data = json.loads(cleaned)
  except (ValueError, RecursionError):
    # deeply nested input exhausts the decoder stack
    return None
  return data if isinstance(data, dict) else None


def days_until_weekday(today: date, target_weekday: int) -> int:
  """Days to the next ``target_weekday`` (0 = Sunday); today counts as a week away."""
  return (target_weekday - js_weekday(today)) % 7 or 7


def resolve_relative_date(message: str, today: date) -> date:
  lowered = (message or "").lower()
  if "tomorrow" in lowered:
    return today + timedelta(days=1)
  if "today" in lowered:
    return today
  for weekday in _WEEKDAY_SCAN_ORDER:
    if WEEKDAY_NAMES[weekday] in lowered:
      return today + timedelta(days=days_until_weekday(today, weekday))
  if "next week" in lowered:
    return today + timedelta(days=7)
  return today + timedelta(days=1)


def resolve_meeting_date(value: Any, message: str, today: date) -> date:
  parsed = parse_iso_date(value) if isinstance(value, str) else None
  if parsed is not None:
    return parsed
  if isinstance(value, str) and value.strip():
    # supplied but unparseable
    return today + timedelta(days=1)
  return resolve_relative_date(message, today)


def coerce_time(value: Any) -> Optional[str]:
  if not isinstance(value, str):
    return None
  match = _LOOSE_TIME_RE.match(value.strip())
  if not match:
    return None
  hours, minutes = int(match.group(1)), int(match.group(2))
  if hours > 23 or minutes > 59:
    return None
  return f"{hours:02d}:{minutes:02d}"


def extract_email_addresses(text: str) -> List[str]:
  return dedupe_preserving_order(EMAIL_SEARCH_RE.findall(text or ""))
