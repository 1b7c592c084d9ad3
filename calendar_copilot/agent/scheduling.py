from __future__ import annotations

import asyncio
import logging
import re
from datetime import date, timedelta
from typing import List, Optional

from ..config import (
    BATCH_CREATE_CONCURRENCY,
    FALLBACK_MEETING_TIME,
    MAX_DESCRIPTION_LENGTH,
    MAX_EXTRACTED_TITLE_LENGTH,
    MAX_LOCATION_LENGTH,
)
from ..event_writer import RetryingEventWriter
from ..llm import Extractor
from ..models import EventDraft, Preferences
from ..utils import (
    _log_debug,
    format_date_us,
    format_short_date,
    format_time_12h,
    local_datetime,
    local_today,
    resolve_timezone,
)
from .intent_plan import parse_meeting_extraction
from .normalizer import coerce_time, resolve_meeting_date
from .prompts import SCHEDULING_SYSTEM_PROMPT, build_extraction_prompt
from .schemas import (
    ChatResponse,
    CreatedMeeting,
    CreateMeetingsResult,
    ExtractedMeeting,
    FailedMeeting,
    MeetingExtraction,
)

logger = logging.getLogger(__name__)

SCHEDULING_PATTERNS = [
    re.compile(pattern, re.IGNORECASE) for pattern in (
        r"schedule.*meeting",
        r"set up.*meeting",
        r"create.*meeting",
        r"book.*meeting",
        r"schedule.*call",
        r"set up.*call",
        r"add.*event",
        r"create.*event",
        r"block.*time",
        r"schedule.*appointment",
        r"book.*appointment",
        r"plan.*meeting",
        r"organize.*meeting",
    )
]


class SchedulingError(Exception):

  def __init__(self, message: str, result: Optional[CreateMeetingsResult] = None) -> None:
    super().__init__(message)
    self.result = result


def is_scheduling_request(message: str) -> bool:
  text = message or ""
  return any(pattern.search(text) for pattern in SCHEDULING_PATTERNS)


def resolve_meeting_draft(meeting: ExtractedMeeting,
                          message: str,
                          preferences: Preferences,
                          timezone_name: str,
                          today: date) -> EventDraft:
  """Concrete event draft for one extracted meeting, in the user's timezone."""
  day = resolve_meeting_date(meeting.date, message, today)
  hhmm = (coerce_time(meeting.time)
          or preferences.working_hours.start
          or FALLBACK_MEETING_TIME)
  start = local_datetime(day, hhmm, timezone_name)
  end = start + timedelta(minutes=meeting.duration_minutes)
  return EventDraft(
      title=meeting.title[:MAX_EXTRACTED_TITLE_LENGTH].strip(),
      description=(meeting.description or "")[:MAX_DESCRIPTION_LENGTH].strip(),
      start=start,
      end=end,
      timezone=timezone_name,
      attendees=list(meeting.attendees),
      location=(meeting.location or "")[:MAX_LOCATION_LENGTH].strip(),
  )


def format_scheduling_message(result: CreateMeetingsResult, timezone_name: str) -> str:
  if len(result.created) == 1:
    meeting = result.created[0]
    content = (f'I\'ve scheduled "{meeting.title}" for '
               f"{format_date_us(meeting.start, timezone_name)} at "
               f"{format_time_12h(meeting.start, timezone_name)} - "
               f"{format_time_12h(meeting.end, timezone_name)}.")
    if meeting.attendees:
      content += f" Invitations sent to {len(meeting.attendees)} attendee(s)."
  else:
    listing = "\n".join(
        f'- "{m.title}" on {format_short_date(m.start, timezone_name)} '
        f"at {format_time_12h(m.start, timezone_name)}"
        for m in result.created)
    content = f"I've scheduled {len(result.created)} meetings:\n\n{listing}"

  if result.failed:
    titles = ", ".join(f.title for f in result.failed)
    content += f"\n\nFailed to schedule {len(result.failed)} meeting(s): {titles}"
  return content


class SchedulingService:
  """Turns a scheduling message into created calendar events."""

  def __init__(self,
               extractor: Extractor,
               writer: RetryingEventWriter,
               concurrency: int = BATCH_CREATE_CONCURRENCY) -> None:
    self._extractor = extractor
    self._writer = writer
    self.concurrency = max(1, concurrency)

  async def extract_meetings(self, message: str, preferences: Preferences,
                             today: date) -> MeetingExtraction:
    prompt = build_extraction_prompt(message, today, preferences)
    try:
      raw = await self._extractor.extract(prompt, SCHEDULING_SYSTEM_PROMPT,
                                          max_tokens=800, temperature=0.1)
    except Exception as exc:
      logger.warning("Meeting extraction call failed: %s", exc)
      raw = ""
    return parse_meeting_extraction(raw, message)

  async def create_meetings(self,
                            meetings: List[ExtractedMeeting],
                            user_id: str,
                            preferences: Preferences,
                            timezone_name: str,
                            message: str,
                            today: date) -> CreateMeetingsResult:
    """Attempt every meeting independently; order of the input is preserved."""
    semaphore = asyncio.Semaphore(self.concurrency)

    async def _attempt(meeting: ExtractedMeeting):
      async with semaphore:
        try:
          draft = resolve_meeting_draft(meeting, message, preferences, timezone_name, today)
          event = await self._writer.create_event(user_id, draft)
        except Exception as exc:
          logger.warning("Failed to schedule %r: %s", meeting.title, exc)
          return FailedMeeting(title=meeting.title or "Unknown meeting", error=str(exc))
        return CreatedMeeting(
            title=event.title,
            start=event.start,
            end=event.end,
            attendees=[attendee.email for attendee in event.attendees],
            event_id=event.id,
        )

    outcomes = await asyncio.gather(*(_attempt(meeting) for meeting in meetings))
    result = CreateMeetingsResult()
    for outcome in outcomes:
      if isinstance(outcome, CreatedMeeting):
        result.created.append(outcome)
      else:
        result.failed.append(outcome)
    _log_debug(f"[SCHEDULING] created={len(result.created)} failed={len(result.failed)}")
    return result

  async def handle_request(self,
                           message: str,
                           preferences: Preferences,
                           user_id: Optional[str],
                           timezone_name: Optional[str] = None) -> Optional[ChatResponse]:
    """Schedule the meetings a message asks for.

    Returns None when the message is not a scheduling request. Raises
    SchedulingError when it is one but no meeting could be created.
    """
    if not user_id or not is_scheduling_request(message):
      return None
    tz = resolve_timezone(timezone_name, preferences)
    today = local_today(tz, self._writer.now())
    extraction = await self.extract_meetings(message, preferences, today)
    result = await self.create_meetings(extraction.meetings, user_id, preferences,
                                        tz, message, today)
    if not result.created:
      raise SchedulingError("Failed to create any meetings", result)
    return ChatResponse(message=format_scheduling_message(result, tz))
