from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from .availability import build_day_schedule, build_week_schedule, find_availability, week_start_for
from .agent.intent_plan import parse_intent_plan, plan_from_steps
from .config import (
    MAX_MEETING_DURATION,
    MIN_MEETING_DURATION,
    SESSION_COOKIE_NAME,
    USER_ID_HEADER,
)
from .conflicts import detect_conflicts, layout_overlaps
from .event_writer import (
    CalendarApiError,
    CalendarPermissionError,
    CalendarRateLimitError,
)
from .gmail import EmailSendError
from .models import ChatRequest, CreateEventRequest, EventDraft, PreferencesUpdate, WorkflowRequest
from .state import PreferenceConflictError
from .utils import day_bounds, local_today, parse_iso_date, resolve_timezone

router = APIRouter()
logger = logging.getLogger(__name__)


# -------------------------
# Request helpers
# -------------------------
def _get_user_id(request: Request) -> Optional[str]:
  raw = request.cookies.get(SESSION_COOKIE_NAME) or request.headers.get(USER_ID_HEADER)
  if not isinstance(raw, str) or not raw.strip():
    return None
  return raw.strip()


def require_user_id(request: Request) -> str:
  user_id = _get_user_id(request)
  if not user_id:
    raise HTTPException(status_code=401, detail="Login is required.")
  return user_id


def _parse_query_date(value: Optional[str], label: str) -> Optional[date]:
  if value is None:
    return None
  parsed = parse_iso_date(value)
  if parsed is None:
    raise HTTPException(status_code=422, detail=f"Invalid {label} date: expected YYYY-MM-DD.")
  return parsed


def _raise_http(exc: Exception, action: str) -> NoReturn:
  if isinstance(exc, HTTPException):
    raise exc
  if isinstance(exc, CalendarPermissionError):
    raise HTTPException(status_code=403, detail=str(exc)) from exc
  if isinstance(exc, CalendarRateLimitError):
    raise HTTPException(status_code=429, detail=str(exc)) from exc
  if isinstance(exc, PreferenceConflictError):
    raise HTTPException(status_code=409, detail=str(exc)) from exc
  if isinstance(exc, ValueError):
    raise HTTPException(status_code=422, detail=str(exc)) from exc
  if isinstance(exc, (CalendarApiError, EmailSendError)):
    raise HTTPException(status_code=502, detail=f"{action} failed: {exc}") from exc
  logger.exception("%s error", action)
  raise HTTPException(status_code=500, detail=str(exc)) from exc


def _layout_payload(positioned) -> list:
  return [
      {"event_id": p.event.id, "column": p.column, "total_columns": p.total_columns}
      for p in positioned
  ]


# -------------------------
# Calendar views
# -------------------------
@router.get("/api/calendar/availability")
async def calendar_availability(request: Request,
                                start: str = Query(...),
                                end: Optional[str] = Query(None),
                                duration: Optional[int] = Query(None,
                                                                ge=MIN_MEETING_DURATION,
                                                                le=MAX_MEETING_DURATION),
                                respect_protected_time: bool = Query(True,
                                                                     alias="respectProtectedTime"),
                                tz_name: Optional[str] = Query(None, alias="timezone")):
  user_id = require_user_id(request)
  state = request.app.state
  start_day = _parse_query_date(start, "start")
  end_day = _parse_query_date(end, "end") or start_day
  if end_day < start_day:
    raise HTTPException(status_code=422, detail="Start date must be before end date.")

  try:
    preferences = state.preference_store.get_preferences(user_id)
    tz = resolve_timezone(tz_name, preferences)
    range_start, _ = day_bounds(start_day, tz)
    _, range_end = day_bounds(end_day, tz)
    events = await state.calendar.list_events(user_id, range_start, range_end, tz)
    wanted = duration or preferences.default_meeting_duration
    slots = find_availability(events, start_day, end_day, wanted,
                              preferences.model_copy(update={"timezone": tz}),
                              respect_protected_time=respect_protected_time)
  except Exception as exc:
    _raise_http(exc, "Availability lookup")

  return {
      "timezone": tz,
      "duration": wanted,
      "slots": [slot.model_dump(mode="json") for slot in slots],
  }


@router.get("/api/calendar/day")
async def calendar_day(request: Request,
                       day: Optional[str] = Query(None, alias="date"),
                       tz_name: Optional[str] = Query(None, alias="timezone")):
  user_id = require_user_id(request)
  state = request.app.state
  requested = _parse_query_date(day, "requested")
  try:
    preferences = state.preference_store.get_preferences(user_id)
    tz = resolve_timezone(tz_name, preferences)
    target = requested or local_today(tz)
    range_start, range_end = day_bounds(target, tz)
    events = await state.calendar.list_events(user_id, range_start, range_end, tz)
    schedule = build_day_schedule(events, target, preferences, tz)
  except Exception as exc:
    _raise_http(exc, "Day schedule")

  conflicts = detect_conflicts(schedule.events)
  return {
      "schedule": schedule.model_dump(mode="json"),
      "conflicts": {
          event_id: {
              "conflicting_event_ids": conflict.conflicting_event_ids,
          }
          for event_id, conflict in conflicts.items()
      },
      "layout": _layout_payload(layout_overlaps(schedule.events)),
  }


@router.get("/api/calendar/week")
async def calendar_week(request: Request,
                        day: Optional[str] = Query(None, alias="date"),
                        tz_name: Optional[str] = Query(None, alias="timezone")):
  user_id = require_user_id(request)
  state = request.app.state
  requested = _parse_query_date(day, "requested")
  try:
    preferences = state.preference_store.get_preferences(user_id)
    tz = resolve_timezone(tz_name, preferences)
    reference = requested or local_today(tz)
    first_day = week_start_for(reference, preferences.week_starts_on)
    range_start, _ = day_bounds(first_day, tz)
    _, range_end = day_bounds(first_day + timedelta(days=6), tz)
    events = await state.calendar.list_events(user_id, range_start, range_end, tz)
    days = build_week_schedule(events, reference, preferences.model_copy(update={"timezone": tz}))
  except Exception as exc:
    _raise_http(exc, "Week schedule")

  return {
      "timezone": tz,
      "week_start": first_day.isoformat(),
      "days": [schedule.model_dump(mode="json") for schedule in days],
  }


@router.post("/api/calendar/events")
async def create_calendar_event(request: Request, payload: CreateEventRequest):
  user_id = require_user_id(request)
  state = request.app.state
  try:
    preferences = state.preference_store.get_preferences(user_id)
    draft = EventDraft(
        title=payload.title,
        description=payload.description,
        start=payload.start,
        end=payload.end,
        timezone=resolve_timezone(payload.timezone, preferences),
        attendees=payload.attendees,
        location=payload.location,
    )
    event = await state.event_writer.create_event(user_id, draft)
  except Exception as exc:
    _raise_http(exc, "Event creation")
  return event.model_dump(mode="json")


# -------------------------
# Preferences
# -------------------------
@router.get("/api/user/preferences")
def get_user_preferences(request: Request):
  user_id = require_user_id(request)
  return request.app.state.preference_store.get_preferences(user_id).model_dump(mode="json")


@router.patch("/api/user/preferences")
def patch_user_preferences(request: Request, payload: PreferencesUpdate):
  user_id = require_user_id(request)
  try:
    updated = request.app.state.preference_store.update_preferences(user_id, payload)
  except Exception as exc:
    _raise_http(exc, "Preferences update")
  return updated.model_dump(mode="json")


# -------------------------
# Assistant
# -------------------------
@router.post("/api/ai/chat")
async def ai_chat(request: Request, payload: ChatRequest):
  user_id = require_user_id(request)
  message = payload.message.strip()
  if not message:
    raise HTTPException(status_code=422, detail="Message is required.")
  try:
    response = await request.app.state.chat.process(message,
                                                    user_id,
                                                    timezone_name=payload.timezone,
                                                    user_name=payload.user_name)
  except Exception as exc:
    _raise_http(exc, "Chat")
  return response.model_dump(mode="json")


@router.post("/api/ai/workflow")
async def ai_workflow(request: Request, payload: WorkflowRequest):
  user_id = require_user_id(request)
  state = request.app.state
  message = payload.message.strip()
  try:
    if payload.steps:
      plan = plan_from_steps(payload.steps, message)
    elif payload.raw_plan is not None:
      plan = parse_intent_plan(payload.raw_plan, message)
    else:
      plan = await state.orchestrator.plan(message)
    preferences = state.preference_store.get_preferences(user_id)
    response = await state.orchestrator.execute(plan, message, user_id, preferences,
                                                user_name=payload.user_name)
  except Exception as exc:
    _raise_http(exc, "Workflow")

  result: Dict[str, Any] = response.model_dump(mode="json")
  result["fallback_used"] = plan.fallback_used
  return result


@router.get("/health")
def health():
  return {"status": "ok"}
