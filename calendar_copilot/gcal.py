from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import pathlib
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from google.oauth2.credentials import Credentials
from google.auth.transport.requests import Request as GoogleRequest
from googleapiclient.discovery import build

from .config import (
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_CALENDAR_ID,
    GOOGLE_SCOPES,
    GOOGLE_TOKEN_DIR,
    MAX_EVENT_RANGE_DAYS,
    EVENT_WRITE_MAX_RETRIES,
)
from .event_writer import (
    CalendarReadError,
    READ_PERMISSION_MESSAGE,
    call_with_retry,
)
from .models import Attendee, CalendarEvent, EventDraft
from .utils import _log_debug, local_date, local_datetime, to_utc

logger = logging.getLogger(__name__)

FOCUS_KEYWORDS = ("focus", "heads down", "deep work", "no meetings", "do not disturb")
PERSONAL_KEYWORDS = ("personal", "lunch", "break", "vacation", "pto", "holiday")
_RESPONSE_STATUSES = {"accepted", "declined", "tentative", "needsAction"}


# -------------------------
# Google OAuth token storage
# -------------------------
def is_google_configured() -> bool:
  return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def _user_key(user_id: str) -> str:
  return hashlib.sha256(user_id.encode("utf-8")).hexdigest()


def _token_path(user_id: str) -> pathlib.Path:
  return GOOGLE_TOKEN_DIR / f"token_{_user_key(user_id)}.json"


def load_google_token(user_id: Optional[str]) -> Optional[Dict[str, Any]]:
  if not user_id:
    return None
  path = _token_path(user_id)
  if not path.exists():
    return None
  try:
    with path.open("r", encoding="utf-8") as f:
      return json.load(f)
  except Exception as exc:
    logger.warning("Could not read Google token for user: %s", exc)
    return None


def save_google_token(user_id: str, data: Dict[str, Any]) -> None:
  if not user_id:
    return
  GOOGLE_TOKEN_DIR.mkdir(parents=True, exist_ok=True)
  _token_path(user_id).write_text(json.dumps(data, ensure_ascii=False, indent=2),
                                  encoding="utf-8")


def load_credentials(user_id: str) -> Credentials:
  token_data = load_google_token(user_id)
  if not token_data:
    raise PermissionError("access_denied: Google OAuth token not found for this user.")

  creds = Credentials.from_authorized_user_info(token_data, GOOGLE_SCOPES)
  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
    save_google_token(user_id, json.loads(creds.to_json()))
  return creds


def get_calendar_service(user_id: str):
  if not is_google_configured():
    raise RuntimeError("Google Calendar is not configured.")
  return build("calendar", "v3", credentials=load_credentials(user_id),
               cache_discovery=False)


# -------------------------
# Provider event mapping
# -------------------------
def categorize_event(title: Optional[str], organizer_is_self: Optional[bool]) -> str:
  lowered = (title or "").lower()
  if any(keyword in lowered for keyword in FOCUS_KEYWORDS):
    return "focus"
  if any(keyword in lowered for keyword in PERSONAL_KEYWORDS):
    return "personal"
  if organizer_is_self is False:
    return "external"
  return "meeting"


def _parse_provider_instant(value: str) -> datetime:
  parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
  if parsed.tzinfo is None:
    raise ValueError(f"dateTime without offset: {value!r}")
  return to_utc(parsed)


def _all_day_anchor(value: str, timezone_name: str) -> datetime:
  # local midnight keeps the calendar date in every offset, UTC+14 included
  day = datetime.strptime(value, "%Y-%m-%d").date()
  return local_datetime(day, "00:00", timezone_name)


def _meeting_link(raw: Dict[str, Any]) -> Optional[str]:
  link = raw.get("hangoutLink")
  if isinstance(link, str) and link.strip():
    return link.strip()
  conference = raw.get("conferenceData") or {}
  entry_points = conference.get("entryPoints")
  if isinstance(entry_points, list):
    for entry in entry_points:
      if not isinstance(entry, dict):
        continue
      uri = entry.get("uri")
      if isinstance(uri, str) and ("meet.google" in uri or "hangouts" in uri):
        return uri.strip()
  return None


def _map_attendees(raw_attendees: Any) -> List[Attendee]:
  attendees: List[Attendee] = []
  if not isinstance(raw_attendees, list):
    return attendees
  for item in raw_attendees:
    if not isinstance(item, dict):
      continue
    email = item.get("email")
    if not isinstance(email, str) or "@" not in email:
      continue
    status = item.get("responseStatus")
    attendees.append(Attendee(
        email=email,
        name=item.get("displayName"),
        response_status=status if status in _RESPONSE_STATUSES else "needsAction",
    ))
  return attendees


def map_google_event(raw: Dict[str, Any],
                     timezone_name: str,
                     calendar_id: str = GOOGLE_CALENDAR_ID) -> CalendarEvent:
  """Map a Calendar v3 event resource. Raises ValueError for malformed input."""
  if not isinstance(raw, dict) or not raw.get("id"):
    raise ValueError("Invalid event: missing ID")

  start_raw = raw.get("start") or {}
  end_raw = raw.get("end") or {}
  try:
    if start_raw.get("dateTime"):
      start = _parse_provider_instant(start_raw["dateTime"])
      end = _parse_provider_instant(end_raw.get("dateTime") or "")
      is_all_day = False
    elif start_raw.get("date"):
      start = _all_day_anchor(start_raw["date"], timezone_name)
      end = _all_day_anchor(end_raw.get("date") or start_raw["date"], timezone_name)
      is_all_day = True
    else:
      raise ValueError("no dateTime or date provided")
  except ValueError as exc:
    raise ValueError(f"Invalid date format for event {raw.get('id')}: {exc}") from exc

  description = raw.get("description") or None
  organizer = raw.get("organizer") or {}
  return CalendarEvent(
      id=str(raw["id"]),
      title=raw.get("summary") or "Untitled Event",
      start=start,
      end=end,
      timezone=timezone_name,
      attendees=_map_attendees(raw.get("attendees")),
      is_all_day=is_all_day,
      category=categorize_event(raw.get("summary"), organizer.get("self")),
      description=description,
      location=raw.get("location") or None,
      meeting_link=_meeting_link(raw),
      has_agenda=bool(description and len(description) > 50),
      calendar_id=calendar_id,
  )


def build_event_body(draft: EventDraft) -> Dict[str, Any]:
  body: Dict[str, Any] = {"summary": draft.title}
  if draft.description:
    body["description"] = draft.description
  if draft.is_all_day:
    body["start"] = {"date": local_date(draft.start, draft.timezone).isoformat()}
    body["end"] = {"date": local_date(draft.end, draft.timezone).isoformat()}
  else:
    body["start"] = {"dateTime": draft.start.isoformat(), "timeZone": draft.timezone}
    body["end"] = {"dateTime": draft.end.isoformat(), "timeZone": draft.timezone}
  if draft.attendees:
    body["attendees"] = [{"email": email} for email in draft.attendees]
  if draft.location:
    body["location"] = draft.location
  body["conferenceData"] = {
      "createRequest": {
          "requestId": f"meet-{secrets.token_hex(8)}",
          "conferenceSolutionKey": {"type": "hangoutsMeet"},
      }
  }
  return body


def map_provider_items(items: List[Any], timezone_name: str, calendar_id: str) -> List[CalendarEvent]:
  """Map a listing, skipping (and logging) items that fail to map."""
  mapped: List[CalendarEvent] = []
  for item in items:
    try:
      mapped.append(map_google_event(item, timezone_name, calendar_id))
    except Exception as exc:
      event_id = item.get("id") if isinstance(item, dict) else None
      logger.warning("Failed to map event %s: %s", event_id, exc)
  return mapped


def validate_listing_range(start: datetime, end: datetime) -> None:
  if start >= end:
    raise ValueError("Start date must be before end date")
  if end - start > timedelta(days=MAX_EVENT_RANGE_DAYS):
    raise ValueError(f"Date range too large. Maximum {MAX_EVENT_RANGE_DAYS} days allowed.")


# -------------------------
# Gateways
# -------------------------
class CalendarGateway:
  """Read/write access to a user's calendar."""

  async def list_events(self, user_id: str, start: datetime, end: datetime,
                        timezone_name: str) -> List[CalendarEvent]:
    raise NotImplementedError

  async def insert_event(self, user_id: str, draft: EventDraft) -> CalendarEvent:
    raise NotImplementedError


class GoogleCalendarGateway(CalendarGateway):

  def __init__(self,
               service_factory: Callable[[str], Any] = get_calendar_service,
               calendar_id: str = GOOGLE_CALENDAR_ID,
               max_retries: int = EVENT_WRITE_MAX_RETRIES,
               sleep: Callable[[float], Any] = asyncio.sleep) -> None:
    self._service_factory = service_factory
    self.calendar_id = calendar_id
    self.max_retries = max_retries
    self._sleep = sleep

  def _fetch_items(self, user_id: str, start: datetime, end: datetime,
                   timezone_name: str) -> List[Dict[str, Any]]:
    service = self._service_factory(user_id)
    items: List[Dict[str, Any]] = []
    page_token: Optional[str] = None
    while True:
      response = service.events().list(
          calendarId=self.calendar_id,
          timeMin=to_utc(start).isoformat(),
          timeMax=to_utc(end).isoformat(),
          singleEvents=True,
          orderBy="startTime",
          maxResults=250,
          showDeleted=False,
          timeZone=timezone_name,
          pageToken=page_token,
      ).execute()
      page_items = response.get("items", [])
      if isinstance(page_items, list):
        items.extend(page_items)
      page_token = response.get("nextPageToken")
      if not page_token:
        break
    return items

  async def list_events(self, user_id: str, start: datetime, end: datetime,
                        timezone_name: str) -> List[CalendarEvent]:
    validate_listing_range(start, end)
    items = await call_with_retry(
        lambda: asyncio.to_thread(self._fetch_items, user_id, start, end, timezone_name),
        action="fetch calendar events",
        max_retries=self.max_retries,
        sleep=self._sleep,
        permission_message=READ_PERMISSION_MESSAGE,
        exhausted_error=CalendarReadError,
    )
    _log_debug(f"[GCAL] fetched {len(items)} items")
    return map_provider_items(items, timezone_name, self.calendar_id)

  def _insert(self, user_id: str, draft: EventDraft) -> Dict[str, Any]:
    service = self._service_factory(user_id)
    return service.events().insert(
        calendarId=self.calendar_id,
        body=build_event_body(draft),
        conferenceDataVersion=1,
        sendUpdates="all" if draft.attendees else "none",
    ).execute()

  async def insert_event(self, user_id: str, draft: EventDraft) -> CalendarEvent:
    created = await asyncio.to_thread(self._insert, user_id, draft)
    if not created:
      raise RuntimeError("No event data returned from Google Calendar API")
    # the event exists from here on; a mapping failure must not look transient
    try:
      return map_google_event(created, draft.timezone, self.calendar_id)
    except ValueError as exc:
      logger.warning("Created event %s could not be mapped: %s", created.get("id"), exc)
      return event_from_draft(str(created.get("id") or uuid.uuid4().hex), draft, self.calendar_id)


def event_from_draft(event_id: str, draft: EventDraft,
                     calendar_id: str = GOOGLE_CALENDAR_ID) -> CalendarEvent:
  return CalendarEvent(
      id=event_id,
      title=draft.title,
      start=draft.start,
      end=draft.end,
      timezone=draft.timezone,
      attendees=[Attendee(email=email) for email in draft.attendees],
      is_all_day=draft.is_all_day,
      category=categorize_event(draft.title, True),
      description=draft.description or None,
      location=draft.location or None,
      has_agenda=len(draft.description or "") > 50,
      calendar_id=calendar_id,
  )


class InMemoryCalendarGateway(CalendarGateway):
  """Process-local calendar used when Google is not configured."""

  def __init__(self) -> None:
    self._events: Dict[str, List[CalendarEvent]] = {}
    self.inserted: List[EventDraft] = []

  def add_event(self, user_id: str, event: CalendarEvent) -> None:
    self._events.setdefault(user_id, []).append(event)

  async def list_events(self, user_id: str, start: datetime, end: datetime,
                        timezone_name: str) -> List[CalendarEvent]:
    validate_listing_range(start, end)
    lower, upper = to_utc(start), to_utc(end)
    selected = [
        event for event in self._events.get(user_id, [])
        if event.start < upper and event.end > lower
    ]
    return sorted(selected, key=lambda e: e.start)

  async def insert_event(self, user_id: str, draft: EventDraft) -> CalendarEvent:
    self.inserted.append(draft)
    event = event_from_draft(uuid.uuid4().hex, draft)
    self.add_event(user_id, event)
    return event
