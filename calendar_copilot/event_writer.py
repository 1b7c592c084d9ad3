from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Type, TypeVar

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from .config import (
    EVENT_WRITE_MAX_RETRIES,
    MAX_EVENT_DURATION_MINUTES,
    MAX_TITLE_LENGTH,
    MIN_EMAIL_LENGTH,
    RETRY_BASE_DELAY_MS,
    RETRY_MAX_DELAY_MS,
)
from .models import CalendarEvent, EventDraft
from .utils import _log_debug, is_plausible_email, now_utc, shift_days_local

logger = logging.getLogger(__name__)

T = TypeVar("T")

PERMISSION_DENIED = "permission_denied"
RATE_LIMITED = "rate_limited"
TRANSIENT = "transient"

RATE_LIMIT_MESSAGE = "Google Calendar API quota exceeded. Please try again later."
WRITE_PERMISSION_MESSAGE = ("Insufficient permissions to create calendar events. "
                            "Please check your Google Calendar access.")
READ_PERMISSION_MESSAGE = "Google Calendar access denied. Please re-authenticate."

_DIRECT_PERMISSION_MARKERS = ("access_denied", "insufficient_permissions", "invalid_grant")
_RATE_LIMIT_MARKERS = ("quota", "rate_limit", "ratelimitexceeded", "rate limit")
_LOOSE_PERMISSION_MARKERS = ("forbidden", "permission")


class EventValidationError(ValueError):
  pass


class CalendarApiError(Exception):

  def __init__(self,
               message: str,
               kind: str = TRANSIENT,
               last_error: Optional[BaseException] = None) -> None:
    super().__init__(message)
    self.kind = kind
    self.last_error = last_error


class CalendarPermissionError(CalendarApiError):

  def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
    super().__init__(message, PERMISSION_DENIED, last_error)


class CalendarRateLimitError(CalendarApiError):

  def __init__(self, message: str = RATE_LIMIT_MESSAGE,
               last_error: Optional[BaseException] = None) -> None:
    super().__init__(message, RATE_LIMITED, last_error)


class CalendarWriteError(CalendarApiError):
  pass


class CalendarReadError(CalendarApiError):
  pass


def _http_error_content(exc: HttpError) -> str:
  content = getattr(exc, "content", None)
  if isinstance(content, (bytes, bytearray)):
    content = content.decode("utf-8", errors="ignore")
  return f"{content or ''} {exc}".lower()


def classify_calendar_error(exc: BaseException) -> str:
  """Sort a provider failure into permission_denied, rate_limited or transient."""
  if isinstance(exc, RefreshError):
    return PERMISSION_DENIED

  if isinstance(exc, HttpError):
    status = getattr(exc.resp, "status", None)
    content = _http_error_content(exc)
    if status == 429:
      return RATE_LIMITED
    if status == 403 and any(marker in content for marker in _RATE_LIMIT_MARKERS):
      return RATE_LIMITED
    if status in (401, 403):
      return PERMISSION_DENIED

  message = str(exc).lower()
  if any(marker in message for marker in _DIRECT_PERMISSION_MARKERS):
    return PERMISSION_DENIED
  if any(marker in message for marker in _RATE_LIMIT_MARKERS):
    return RATE_LIMITED
  if any(marker in message for marker in _LOOSE_PERMISSION_MARKERS):
    return PERMISSION_DENIED
  return TRANSIENT


def backoff_delay_ms(attempt: int) -> int:
  return min(RETRY_BASE_DELAY_MS * 2 ** (attempt - 1), RETRY_MAX_DELAY_MS)


async def call_with_retry(operation: Callable[[], Awaitable[T]],
                          *,
                          action: str,
                          max_retries: int = EVENT_WRITE_MAX_RETRIES,
                          sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                          permission_message: str = WRITE_PERMISSION_MESSAGE,
                          exhausted_error: Type[CalendarApiError] = CalendarWriteError) -> T:
  """Run ``operation`` with exponential backoff on transient failures.

  Permission and quota failures are raised at once without retrying.
  """
  attempts = max(1, max_retries)
  last_error: Optional[BaseException] = None
  for attempt in range(1, attempts + 1):
    try:
      return await operation()
    except Exception as exc:
      last_error = exc
      logger.warning("%s attempt %d/%d failed: %s", action, attempt, attempts, exc)
      kind = classify_calendar_error(exc)
      if kind == PERMISSION_DENIED:
        raise CalendarPermissionError(permission_message, last_error=exc) from exc
      if kind == RATE_LIMITED:
        raise CalendarRateLimitError(last_error=exc) from exc
      if attempt < attempts:
        delay_ms = backoff_delay_ms(attempt)
        _log_debug(f"[CALENDAR] retrying {action} in {delay_ms}ms")
        await sleep(delay_ms / 1000.0)

  raise exhausted_error(
      f"Failed to {action} after {attempts} attempts: {last_error}",
      TRANSIENT,
      last_error,
  )


def _clean_attendees(attendees: List[str]) -> List[str]:
  cleaned: List[str] = []
  seen = set()
  for raw in attendees:
    email = raw.strip() if isinstance(raw, str) else ""
    if len(email) < MIN_EMAIL_LENGTH or not is_plausible_email(email):
      raise EventValidationError(f"Invalid attendee email: {raw!r}")
    key = email.lower()
    if key in seen:
      continue
    seen.add(key)
    cleaned.append(email)
  return cleaned


def validate_event_draft(draft: EventDraft, now: Optional[datetime] = None) -> EventDraft:
  title = (draft.title or "").strip()
  if not title:
    raise EventValidationError("Event title is required")
  if len(title) > MAX_TITLE_LENGTH:
    raise EventValidationError(f"Event title cannot exceed {MAX_TITLE_LENGTH} characters")
  if draft.start >= draft.end:
    raise EventValidationError("Event start time must be before end time")
  if draft.end - draft.start > timedelta(minutes=MAX_EVENT_DURATION_MINUTES):
    raise EventValidationError("Event duration cannot exceed 8 hours")

  attendees = _clean_attendees(draft.attendees)

  start, end = draft.start, draft.end
  current = now or now_utc()
  if start < current:
    start = shift_days_local(start, 1, draft.timezone)
    end = shift_days_local(end, 1, draft.timezone)
    _log_debug(f"[CALENDAR] start in the past, moved to {start.isoformat()}")

  return draft.model_copy(update={
      "title": title,
      "description": (draft.description or "").strip(),
      "location": (draft.location or "").strip(),
      "attendees": attendees,
      "start": start,
      "end": end,
  })


class RetryingEventWriter:
  """Validates drafts and writes them through a calendar gateway with retries."""

  def __init__(self,
               gateway: Any,
               max_retries: int = EVENT_WRITE_MAX_RETRIES,
               sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
               now: Callable[[], datetime] = now_utc) -> None:
    self._gateway = gateway
    self.max_retries = max_retries
    self._sleep = sleep
    self._now = now

  def now(self) -> datetime:
    return self._now()

  async def create_event(self, user_id: str, draft: EventDraft) -> CalendarEvent:
    if not user_id:
      raise EventValidationError("User ID is required")
    normalized = validate_event_draft(draft, self._now())
    return await call_with_retry(
        lambda: self._gateway.insert_event(user_id, normalized),
        action="create calendar event",
        max_retries=self.max_retries,
        sleep=self._sleep,
    )
