"""
Validation of untrusted NLU output.

Everything the extractor returns is treated as an external payload: it is
cleaned, parsed, checked field by field and coerced into the schemas in
``schemas.py``. Malformed output never raises; callers get a usable
single-meeting plan built from the original message instead.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Optional

from ..config import (
    DEFAULT_MEETING_DURATION,
    MAX_DESCRIPTION_LENGTH,
    MAX_EXTRACTED_TITLE_LENGTH,
    MAX_LOCATION_LENGTH,
    MAX_MEETING_DURATION,
    MIN_MEETING_DURATION,
)
from ..utils import _log_debug, is_plausible_email, parse_iso_date
from .normalizer import coerce_time, load_json_object
from .schemas import ExtractedMeeting, IntentPlan, IntentPlanStep, MeetingExtraction

STEP_TYPES = ("schedule", "email", "update_preferences", "analyze")

_FALLBACK_TITLE_RE = re.compile(
    r"(?:schedule|set up|create|book|add)\s+(.+?)"
    r"(?:\s+(?:for|at|on|tomorrow|today|next|this)|\s*$)",
    re.IGNORECASE,
)


def _fallback_title(message: str) -> str:
  text = (message or "").strip()
  match = _FALLBACK_TITLE_RE.search(text)
  if match:
    title = match.group(1).strip()
  elif len(text) > 50:
    title = text[:47] + "..."
  else:
    title = text
  title = title[:MAX_EXTRACTED_TITLE_LENGTH].strip()
  return title or "Meeting"


def fallback_meeting(message: str) -> ExtractedMeeting:
  return ExtractedMeeting(title=_fallback_title(message),
                          duration_minutes=DEFAULT_MEETING_DURATION)


def _coerce_duration(value: Any) -> int:
  if isinstance(value, bool) or not isinstance(value, (int, float)):
    return DEFAULT_MEETING_DURATION
  if not math.isfinite(value) or value <= 0:
    return DEFAULT_MEETING_DURATION
  return int(max(MIN_MEETING_DURATION, min(MAX_MEETING_DURATION, round(value))))


def _coerce_text(value: Any, limit: int) -> str:
  if not isinstance(value, str):
    return ""
  return value[:limit].strip()


def _coerce_date(value: Any) -> Optional[str]:
  if not isinstance(value, str) or not value.strip():
    return None
  parsed = parse_iso_date(value)
  # An unparseable date is kept so resolution can tell it apart from a missing one.
  return parsed.isoformat() if parsed else value.strip()


def _coerce_attendees(value: Any) -> List[str]:
  if not isinstance(value, list):
    return []
  attendees: List[str] = []
  for item in value:
    if is_plausible_email(item) and item.strip() not in attendees:
      attendees.append(item.strip())
  return attendees


def coerce_meeting(raw: Any) -> Optional[ExtractedMeeting]:
  """One extracted meeting, bounded and defaulted; None without a usable title."""
  if not isinstance(raw, dict):
    return None
  title = _coerce_text(raw.get("title"), MAX_EXTRACTED_TITLE_LENGTH)
  if not title:
    return None
  return ExtractedMeeting(
      title=title,
      duration_minutes=_coerce_duration(raw.get("duration", raw.get("duration_minutes"))),
      date=_coerce_date(raw.get("date")),
      time=coerce_time(raw.get("time")),
      attendees=_coerce_attendees(raw.get("attendees")),
      description=_coerce_text(raw.get("description"), MAX_DESCRIPTION_LENGTH),
      location=_coerce_text(raw.get("location"), MAX_LOCATION_LENGTH),
  )


def parse_meeting_extraction(raw_text: Any, original_message: str) -> MeetingExtraction:
  data = load_json_object(raw_text)
  meetings_raw = data.get("meetings") if data else None
  meetings: List[ExtractedMeeting] = []
  if isinstance(meetings_raw, list):
    for item in meetings_raw:
      meeting = coerce_meeting(item)
      if meeting is None:
        _log_debug(f"[INTENT] dropping unusable meeting entry: {item!r}")
        continue
      meetings.append(meeting)

  if not meetings:
    _log_debug("[INTENT] meeting extraction unusable, using fallback meeting")
    return MeetingExtraction(is_batch=False,
                             meetings=[fallback_meeting(original_message)],
                             fallback_used=True)
  return MeetingExtraction(is_batch=bool(data.get("isBatch", data.get("is_batch"))),
                           meetings=meetings)


def _coerce_step(raw: Any) -> Optional[IntentPlanStep]:
  if not isinstance(raw, dict):
    return None
  step_type = raw.get("type")
  if step_type not in STEP_TYPES:
    return None
  description = raw.get("description")
  params = raw.get("params")
  return IntentPlanStep(
      type=step_type,
      description=description.strip() if isinstance(description, str) else "",
      params=params if isinstance(params, dict) else {},
  )


def fallback_plan(original_message: str) -> IntentPlan:
  meeting = fallback_meeting(original_message)
  step = IntentPlanStep(
      type="schedule",
      description=meeting.title,
      params={
          "title": meeting.title,
          "duration": meeting.duration_minutes,
          "attendees": [],
      },
  )
  return IntentPlan(is_multi_step=False, steps=[step], fallback_used=True)


def parse_intent_plan(raw_text: Any, original_message: str) -> IntentPlan:
  """Validated plan from raw NLU text. Never raises on malformed input."""
  data = load_json_object(raw_text)
  steps_raw = data.get("steps") if data else None
  steps: List[IntentPlanStep] = []
  if isinstance(steps_raw, list):
    for item in steps_raw:
      step = _coerce_step(item)
      if step is None:
        _log_debug(f"[INTENT] dropping invalid plan step: {item!r}")
        continue
      steps.append(step)

  if not steps:
    _log_debug("[INTENT] plan unusable, using fallback schedule step")
    return fallback_plan(original_message)

  multi = data.get("isMultiStep", data.get("is_multi_step"))
  return IntentPlan(is_multi_step=multi is True, steps=steps)


def plan_from_steps(steps: List[Dict[str, Any]], original_message: str) -> IntentPlan:
  """Plan from caller-supplied step dicts, validated like NLU output."""
  validated = [step for step in (_coerce_step(item) for item in steps) if step is not None]
  if not validated:
    return fallback_plan(original_message)
  return IntentPlan(is_multi_step=len(validated) > 1, steps=validated)
