from __future__ import annotations

import logging
import re
from typing import Any, List, Optional

from pydantic import ValidationError

from ..llm import Extractor
from ..models import ProtectedTimeRule
from ..state import PreferenceConflictError, PreferenceStore
from ..utils import _log_debug, format_hhmm_12h, is_valid_hhmm
from .normalizer import load_json_object
from .prompts import PROTECTED_TIME_SYSTEM_PROMPT, build_protected_time_prompt
from .schemas import ChatResponse, SuggestedAction

logger = logging.getLogger(__name__)

PROTECTED_TIME_PATTERNS = [
    re.compile(pattern, re.IGNORECASE) for pattern in (
        r"block.*(?:my|the)?\s*(?:mornings?|afternoons?|evenings?|lunch|time)",
        r"protect.*(?:my|the)?\s*(?:mornings?|afternoons?|evenings?|time)",
        r"don't.*schedule.*(?:during|before|after)",
        r"keep.*(?:free|open|clear)",
        r"add.*protected\s*time",
        r"reserve.*time.*for",
        r"block.*(?:\d{1,2}(?::\d{2})?\s*(?:am|pm)?)",
    )
]

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def is_protected_time_request(message: str) -> bool:
  text = message or ""
  return any(pattern.search(text) for pattern in PROTECTED_TIME_PATTERNS)


def _valid_day(value: Any) -> bool:
  return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 6


def parse_protected_time(raw_text: Any) -> Optional[ProtectedTimeRule]:
  data = load_json_object(raw_text)
  if data is None:
    return None
  start, end, days = data.get("start"), data.get("end"), data.get("days")
  if not start or not end or not isinstance(days, list):
    return None
  if not is_valid_hhmm(start) or not is_valid_hhmm(end):
    return None
  if not all(_valid_day(day) for day in days):
    return None
  label = data.get("label")
  try:
    return ProtectedTimeRule(
        label=label.strip() if isinstance(label, str) and label.strip() else "Protected Time",
        start=start,
        end=end,
        days_of_week=days,
    )
  except ValidationError as exc:
    _log_debug(f"[PROTECTED] rejected rule: {exc}")
    return None


def describe_days(days: List[int]) -> str:
  if len(days) == 7:
    return "every day"
  if len(days) == 5 and all(1 <= day <= 5 for day in days):
    return "weekdays"
  return ", ".join(DAY_NAMES[day] for day in days)


def format_protected_time_message(rule: ProtectedTimeRule) -> str:
  return (f'I\'ve added "{rule.label}" to your protected times. This blocks '
          f"{format_hhmm_12h(rule.start)} - {format_hhmm_12h(rule.end)} on "
          f"{describe_days(rule.days_of_week)}. Meetings won't be scheduled during this time.")


class ProtectedTimeService:

  def __init__(self, extractor: Extractor, store: PreferenceStore) -> None:
    self._extractor = extractor
    self._store = store

  async def handle_request(self, message: str, user_id: Optional[str]) -> Optional[ChatResponse]:
    """Add a protected-time rule described in ``message``.

    Returns None when the message is not such a request or the rule could
    not be extracted, so callers fall through to their next handler.
    """
    if not user_id or not is_protected_time_request(message):
      return None
    try:
      raw = await self._extractor.extract(build_protected_time_prompt(message),
                                          PROTECTED_TIME_SYSTEM_PROMPT,
                                          max_tokens=200, temperature=0.1)
    except Exception as exc:
      logger.warning("Protected time extraction call failed: %s", exc)
      return None

    rule = parse_protected_time(raw)
    if rule is None:
      return None
    try:
      self._store.add_protected_time(user_id, rule)
    except PreferenceConflictError as exc:
      logger.warning("Protected time not saved for %s: %s", user_id, exc)
      return None

    return ChatResponse(
        message=format_protected_time_message(rule),
        suggested_actions=[
            SuggestedAction(label="View settings",
                            action="open_chat",
                            payload={"redirect": "/settings"}),
        ],
    )
