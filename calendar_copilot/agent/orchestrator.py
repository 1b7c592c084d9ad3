"""
Multi-step workflow execution.

Steps run strictly in plan order. Each step moves pending -> in_progress ->
completed/failed; a failed step is recorded and the next one still runs.
The whole workflow shares one wall-clock budget: a step still running when
the budget is spent is cancelled, and the remaining steps are failed
without being attempted.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..config import (
    DEFAULT_MEETING_DURATION,
    FALLBACK_MEETING_TIME,
    MAX_EXTRACTED_TITLE_LENGTH,
    WORKFLOW_DEADLINE_SECONDS,
)
from ..event_writer import RetryingEventWriter
from ..llm import Extractor
from ..models import EventDraft, Preferences
from ..state import PendingDraftStore
from ..utils import (
    _log_debug,
    format_date_us,
    format_time_12h,
    is_plausible_email,
    local_datetime,
    local_today,
    parse_iso_date,
    resolve_timezone,
)
from .email_drafts import EmailDraftService, extract_recipients, generate_subject_line
from .intent_plan import parse_intent_plan
from .normalizer import coerce_time
from .prompts import WORKFLOW_SYSTEM_PROMPT, build_workflow_prompt
from .protected_time import ProtectedTimeService
from .scheduling import SchedulingService
from .schemas import (
    EmailDraft,
    IntentPlan,
    IntentPlanStep,
    PendingDraft,
    SuggestedAction,
    WorkflowResponse,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED = "Workflow deadline exceeded"

_SIMPLE_SCHEDULING_RES = [
    re.compile(r"^(schedule|set up|create|book|plan)\s+(a\s+)?(meeting|call|event)", re.I),
    re.compile(r"^(can you\s+)?(schedule|set up|book)\s+", re.I),
]
_SCHEDULE_ACTION_RE = re.compile(r"\b(schedule|book|set up|create)\s+(a\s+)?(meeting|call|event)", re.I)
_EMAIL_ACTION_RES = [
    re.compile(r"\b(email|send|draft|write).+(to|for|them|her|him)\b", re.I),
    re.compile(r"\b(and|then)\s+(email|send|draft)", re.I),
]
_PREFERENCE_ACTION_RE = re.compile(r"\b(block|protect)\s+(my|the)?\s*(morning|afternoon|lunch|time)", re.I)
_CONNECTOR_RES = [
    re.compile(r"\b(and\s+then|then\s+also|and\s+also|after\s+that|,\s*then)\b", re.I),
    re.compile(r"\b(schedule|book).+\b(and|then)\b.+(email|send|draft)", re.I),
]

_STEP_ICONS = {"completed": "✓", "failed": "✗"}


def should_trigger_workflow(message: str) -> bool:
  """Cheap gate before asking the extractor for a multi-step plan."""
  text = message or ""
  if any(pattern.search(text.strip()) for pattern in _SIMPLE_SCHEDULING_RES):
    return False
  lowered = text.lower()
  action_count = sum([
      bool(_SCHEDULE_ACTION_RE.search(lowered)),
      any(pattern.search(lowered) for pattern in _EMAIL_ACTION_RES),
      bool(_PREFERENCE_ACTION_RE.search(lowered)),
  ])
  if action_count < 2:
    return False
  return any(pattern.search(lowered) for pattern in _CONNECTOR_RES)


class WorkflowStepError(Exception):
  pass


class WorkflowOrchestrator:

  def __init__(self,
               extractor: Extractor,
               scheduling: SchedulingService,
               protected_time: ProtectedTimeService,
               email_drafts: EmailDraftService,
               writer: RetryingEventWriter,
               draft_store: PendingDraftStore,
               deadline_seconds: float = WORKFLOW_DEADLINE_SECONDS) -> None:
    self._extractor = extractor
    self._scheduling = scheduling
    self._protected_time = protected_time
    self._email_drafts = email_drafts
    self._writer = writer
    self._drafts = draft_store
    self.deadline_seconds = deadline_seconds

  async def plan(self, message: str) -> IntentPlan:
    try:
      raw = await self._extractor.extract(build_workflow_prompt(message),
                                          WORKFLOW_SYSTEM_PROMPT,
                                          max_tokens=500, temperature=0.1)
    except Exception as exc:
      logger.warning("Workflow planning call failed: %s", exc)
      raw = ""
    return parse_intent_plan(raw, message)

  async def analyze(self, message: str) -> Optional[IntentPlan]:
    """Multi-step plan for ``message``, or None when it is not one."""
    plan = await self.plan(message)
    if plan.fallback_used or not plan.is_multi_step or len(plan.steps) < 2:
      _log_debug(f"[WORKFLOW] not multi-step: {message!r}")
      return None
    return plan

  async def detect_and_execute(self,
                               message: str,
                               user_id: Optional[str],
                               preferences: Preferences,
                               timezone_name: Optional[str] = None,
                               user_name: Optional[str] = None) -> Optional[WorkflowResponse]:
    if not user_id or not should_trigger_workflow(message):
      return None
    try:
      plan = await self.analyze(message)
    except Exception as exc:
      logger.warning("Workflow analysis failed: %s", exc)
      return None
    if plan is None:
      return None
    return await self.execute(plan, message, user_id, preferences,
                              timezone_name=timezone_name, user_name=user_name)

  async def execute(self,
                    plan: IntentPlan,
                    message: str,
                    user_id: str,
                    preferences: Preferences,
                    timezone_name: Optional[str] = None,
                    user_name: Optional[str] = None) -> WorkflowResponse:
    workflow_id = uuid.uuid4().hex
    tz = resolve_timezone(timezone_name, preferences)
    steps = [
        WorkflowStep(id=f"step-{i}", type=step.type, description=step.description)
        for i, step in enumerate(plan.steps)
    ]
    results: List[str] = []
    pending: Optional[PendingDraft] = None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + self.deadline_seconds

    for record, step in zip(steps, plan.steps):
      remaining = deadline - loop.time()
      if remaining <= 0:
        self._fail(record, step, DEADLINE_EXCEEDED, results)
        continue

      record.status = "in_progress"
      _log_debug(f"[WORKFLOW] {workflow_id} {record.id} {step.type}: {step.description}")
      try:
        result, lines = await asyncio.wait_for(
            self._run_step(step, message, user_id, preferences, tz, user_name),
            timeout=remaining)
      except asyncio.TimeoutError:
        self._fail(record, step, DEADLINE_EXCEEDED, results)
        continue
      except Exception as exc:
        logger.warning("Workflow step %s (%s) failed: %s", record.id, step.type, exc)
        self._fail(record, step, str(exc) or "Step failed", results)
        continue

      record.status = "completed"
      record.result = result
      results.extend(lines)
      if pending is None and step.type == "email":
        pending = self._stage_draft(result, user_id, workflow_id)

    status = "completed" if all(s.status == "completed" for s in steps) else "failed"
    summary = "\n".join(results)
    steps_display = "\n".join(
        f"  {_STEP_ICONS.get(s.status, '○')} {s.description}" for s in steps)
    return WorkflowResponse(
        workflow_id=workflow_id,
        status=status,
        summary=summary,
        message=f"{steps_display}\n\n{summary}\n\n**Done!** Ready to proceed?",
        steps=steps,
        suggested_actions=self._suggested_actions(steps),
        pending_draft=pending,
    )

  @staticmethod
  def _fail(record: WorkflowStep, step: IntentPlanStep, error: str, results: List[str]) -> None:
    record.status = "failed"
    record.error = error
    results.append(f"{step.description}: Failed")

  async def _run_step(self, step: IntentPlanStep, message: str, user_id: str,
                      preferences: Preferences, tz: str,
                      user_name: Optional[str]) -> Tuple[Any, List[str]]:
    if step.type == "schedule":
      return await self._schedule_step(step, message, user_id, preferences, tz)
    if step.type == "email":
      return await self._email_step(step, message, user_name)
    if step.type == "update_preferences":
      return await self._preferences_step(message, user_id)
    return step.description, [f"Analysis: {step.description}"]

  async def _schedule_step(self, step: IntentPlanStep, message: str, user_id: str,
                           preferences: Preferences, tz: str) -> Tuple[Any, List[str]]:
    response = await self._scheduling.handle_request(message, preferences, user_id, tz)
    if response is not None:
      return response.message, [f"Scheduling: {response.message}"]

    draft = self._draft_from_params(step, message, preferences, tz)
    event = await self._writer.create_event(user_id, draft)
    summary = (f'Scheduled "{event.title}" for {format_date_us(event.start, tz)} '
               f"at {format_time_12h(event.start, tz)}")
    return summary, [f"Scheduling: {summary}"]

  def _draft_from_params(self, step: IntentPlanStep, message: str,
                         preferences: Preferences, tz: str) -> EventDraft:
    params: Dict[str, Any] = step.params
    today = local_today(tz, self._writer.now())
    tomorrow = today + timedelta(days=1)
    lowered = message.lower()

    day = tomorrow
    if params.get("date"):
      day = parse_iso_date(params.get("date")) or tomorrow
    elif "tomorrow" in lowered:
      day = tomorrow
    elif "today" in lowered:
      day = today

    hhmm = coerce_time(params.get("time")) or preferences.working_hours.start or FALLBACK_MEETING_TIME
    duration = params.get("duration")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
      duration = DEFAULT_MEETING_DURATION

    title = params.get("title") if isinstance(params.get("title"), str) else ""
    title = (title or step.description or "Meeting")[:MAX_EXTRACTED_TITLE_LENGTH].strip()

    attendees = params.get("attendees")
    valid_attendees = [
        a.strip() for a in attendees if is_plausible_email(a)
    ] if isinstance(attendees, list) else []

    start = local_datetime(day, hhmm, tz)
    return EventDraft(
        title=title,
        start=start,
        end=start + timedelta(minutes=duration),
        timezone=tz,
        attendees=valid_attendees,
    )

  async def _email_step(self, step: IntentPlanStep, message: str,
                        user_name: Optional[str]) -> Tuple[Any, List[str]]:
    recipients = extract_recipients(message, step.params)
    if not recipients:
      return None, ["Email: Ready (recipients to be specified)"]

    drafts, failed = await self._email_drafts.generate_batch(
        user_name or "User",
        recipients,
        step.description or "follow up",
        tone="neutral",
        specific_content=message,
    )
    if not drafts:
      raise WorkflowStepError("Failed to generate email drafts")

    first = drafts[0]
    subject = generate_subject_line(step.description or "Meeting Request")
    names = ", ".join(r.name or r.email for r in recipients)
    lines = [f"Email draft created for {names}:\n\nTo: {first.email}\nSubject: {subject}\n\n{first.body}"]
    if len(drafts) > 1:
      lines.append(f"(Plus {len(drafts) - 1} more draft(s))")
    lines.append('\n**Ready to send?** Say "send it" or "looks good".')
    result = {
        "subject": subject,
        "drafts": [d.model_dump() for d in drafts],
        "failed": [f.model_dump() for f in failed],
    }
    return result, lines

  async def _preferences_step(self, message: str, user_id: str) -> Tuple[Any, List[str]]:
    try:
      response = await self._protected_time.handle_request(message, user_id)
    except Exception as exc:
      logger.warning("Preference step degraded to acknowledgement: %s", exc)
      response = None
    if response is None:
      return None, ["Preferences: Noted for your settings"]
    return response.message, [f"Preferences: {response.message}"]

  def _stage_draft(self, result: Any, user_id: str, workflow_id: str) -> Optional[PendingDraft]:
    if not isinstance(result, dict) or not result.get("drafts"):
      return None
    first = EmailDraft.model_validate(result["drafts"][0])
    if not first.email:
      return None
    draft = PendingDraft(
        id=uuid.uuid4().hex,
        user_id=user_id,
        workflow_id=workflow_id,
        to=first.email,
        subject=result.get("subject") or first.subject,
        body=first.body,
        created_at=self._writer.now(),
    )
    self._drafts.save(draft)
    return draft

  @staticmethod
  def _suggested_actions(steps: List[WorkflowStep]) -> List[SuggestedAction]:
    drafted = [
        s.result["drafts"] for s in steps
        if s.type == "email" and isinstance(s.result, dict) and s.result.get("drafts")
    ]
    if not drafted:
      return []
    first = drafted[0][0]
    return [
        SuggestedAction(label="Send now",
                        action="open_chat",
                        payload={"message": "send it"},
                        disabled=not first.get("email")),
        SuggestedAction(label="Enhance with AI",
                        action="open_chat",
                        payload={"message": "enhance draft"}),
        SuggestedAction(label="Edit draft",
                        action="edit",
                        payload={"type": "email",
                                 "draft": {"to": first.get("email"), "body": first.get("body")}}),
    ]
