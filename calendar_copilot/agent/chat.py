from __future__ import annotations

import logging
from typing import List, Optional

from ..availability import build_day_schedule
from ..config import ASSISTANT_FALLBACK_REPLY
from ..event_writer import CalendarApiError
from ..gcal import CalendarGateway
from ..llm import Extractor
from ..models import DaySchedule, Preferences
from ..state import PreferenceStore
from ..utils import day_bounds, local_today, now_utc, resolve_timezone
from .confirmations import ConfirmationService
from .orchestrator import WorkflowOrchestrator
from .prompts import SYSTEM_PROMPT, build_protected_times_context, build_schedule_context
from .protected_time import ProtectedTimeService
from .scheduling import SchedulingError, SchedulingService
from .schemas import ChatResponse, SuggestedAction

logger = logging.getLogger(__name__)


def detect_suggested_actions(reply: str, user_message: str) -> List[SuggestedAction]:
  actions: List[SuggestedAction] = []
  lowered_reply = reply.lower()
  lowered_message = user_message.lower()

  if any(word in lowered_message for word in ("schedule", "meeting", "time")):
    if "available" in lowered_reply or "free" in lowered_reply:
      actions.append(SuggestedAction(label="Suggest times", action="suggest_times"))
  if "email" in lowered_message or "send" in lowered_message:
    actions.append(SuggestedAction(label="Draft email", action="send_email"))
  if "edit" in lowered_reply or "change" in lowered_reply:
    actions.append(SuggestedAction(label="Edit", action="edit"))
  return actions[:3]


class ChatService:
  """Routes one chat message to the first handler that claims it.

  Order: confirmation of a staged draft, multi-step workflow, protected
  time, direct scheduling, then a general assistant reply.
  """

  def __init__(self,
               extractor: Extractor,
               calendar: CalendarGateway,
               preferences: PreferenceStore,
               confirmations: ConfirmationService,
               orchestrator: WorkflowOrchestrator,
               protected_time: ProtectedTimeService,
               scheduling: SchedulingService) -> None:
    self._extractor = extractor
    self._calendar = calendar
    self._preferences = preferences
    self._confirmations = confirmations
    self._orchestrator = orchestrator
    self._protected_time = protected_time
    self._scheduling = scheduling

  async def process(self,
                    message: str,
                    user_id: Optional[str],
                    timezone_name: Optional[str] = None,
                    user_name: Optional[str] = None) -> ChatResponse:
    preferences = self._preferences.get_preferences(user_id) if user_id else Preferences()
    tz = resolve_timezone(timezone_name, preferences)

    if user_id:
      confirmed = await self._confirmations.handle(message, user_id)
      if confirmed is not None:
        return confirmed
      workflow = await self._orchestrator.detect_and_execute(
          message, user_id, preferences, timezone_name=tz, user_name=user_name)
      if workflow is not None:
        return ChatResponse(message=workflow.message,
                            suggested_actions=workflow.suggested_actions,
                            workflow=workflow)

    protected = await self._protected_time.handle_request(message, user_id)
    if protected is not None:
      return protected

    try:
      scheduled = await self._scheduling.handle_request(message, preferences, user_id, tz)
    except SchedulingError as exc:
      logger.warning("Scheduling request produced no meetings: %s", exc)
      scheduled = None
    if scheduled is not None:
      return scheduled

    schedule = await self._today_schedule(user_id, preferences, tz)
    system = (f"{SYSTEM_PROMPT}\n\nCurrent context:\n"
              f"{build_schedule_context(schedule, preferences)}\n\n"
              f"{build_protected_times_context(preferences)}")
    reply = await self._extractor.reply([
        {"role": "system", "content": system},
        {"role": "user", "content": message},
    ], max_tokens=1024)
    reply = reply or ASSISTANT_FALLBACK_REPLY
    return ChatResponse(message=reply,
                        suggested_actions=detect_suggested_actions(reply, message))

  async def _today_schedule(self, user_id: Optional[str], preferences: Preferences,
                            tz: str) -> DaySchedule:
    today = local_today(tz, now_utc())
    events = []
    if user_id:
      start, end = day_bounds(today, tz)
      try:
        events = await self._calendar.list_events(user_id, start, end, tz)
      except CalendarApiError as exc:
        logger.warning("Schedule context unavailable for %s: %s", user_id, exc)
    return build_day_schedule(events, today, preferences, tz)
