from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_MEETING_DURATION

StepType = Literal["schedule", "email", "update_preferences", "analyze"]
StepStatus = Literal["pending", "in_progress", "completed", "failed"]
WorkflowStatus = Literal["completed", "failed"]


# ---------------------------------------------------------------------------
#  Intent plan (validated NLU output)
# ---------------------------------------------------------------------------

class IntentPlanStep(BaseModel):
  model_config = ConfigDict(extra="ignore")

  type: StepType
  description: str = ""
  params: Dict[str, Any] = Field(default_factory=dict)


class IntentPlan(BaseModel):
  model_config = ConfigDict(extra="ignore")

  is_multi_step: bool = False
  steps: List[IntentPlanStep] = Field(default_factory=list, min_length=1)
  fallback_used: bool = False


class ExtractedMeeting(BaseModel):
  """A meeting request after coercion: bounded, defaulted, attendees filtered."""
  model_config = ConfigDict(extra="ignore")

  title: str = Field(min_length=1, max_length=100)
  duration_minutes: int = Field(default=DEFAULT_MEETING_DURATION, ge=15, le=480)
  date: Optional[str] = None
  time: Optional[str] = None
  attendees: List[str] = Field(default_factory=list)
  description: str = ""
  location: str = ""


class MeetingExtraction(BaseModel):
  model_config = ConfigDict(extra="ignore")

  is_batch: bool = False
  meetings: List[ExtractedMeeting] = Field(default_factory=list, min_length=1)
  fallback_used: bool = False


class CreatedMeeting(BaseModel):
  title: str
  start: datetime
  end: datetime
  attendees: List[str] = Field(default_factory=list)
  event_id: Optional[str] = None


class FailedMeeting(BaseModel):
  title: str
  error: str


class CreateMeetingsResult(BaseModel):
  created: List[CreatedMeeting] = Field(default_factory=list)
  failed: List[FailedMeeting] = Field(default_factory=list)


# ---------------------------------------------------------------------------
#  Workflow execution records
# ---------------------------------------------------------------------------

class WorkflowStep(BaseModel):
  id: str
  type: StepType
  status: StepStatus = "pending"
  description: str = ""
  result: Optional[Any] = None
  error: Optional[str] = None


class SuggestedAction(BaseModel):
  label: str
  action: str
  payload: Dict[str, Any] = Field(default_factory=dict)
  disabled: bool = False


class ExecutedAction(BaseModel):
  id: str
  type: str
  label: str
  status: Literal["completed", "failed"]
  detail: Optional[str] = None


class EmailRecipient(BaseModel):
  email: str = ""
  name: Optional[str] = None


class EmailDraft(BaseModel):
  email: str
  name: Optional[str] = None
  subject: str = ""
  body: str


class FailedDraft(BaseModel):
  email: str
  error: str


class PendingDraft(BaseModel):
  """An email staged by a workflow, sent only after the user confirms."""
  id: str
  user_id: str
  workflow_id: Optional[str] = None
  to: str
  subject: str
  body: str
  created_at: datetime


class WorkflowResponse(BaseModel):
  workflow_id: str
  status: WorkflowStatus
  summary: str
  message: str
  steps: List[WorkflowStep] = Field(default_factory=list)
  suggested_actions: List[SuggestedAction] = Field(default_factory=list)
  pending_draft: Optional[PendingDraft] = None


class ChatResponse(BaseModel):
  message: str
  suggested_actions: List[SuggestedAction] = Field(default_factory=list)
  executed_actions: List[ExecutedAction] = Field(default_factory=list)
  workflow: Optional[WorkflowResponse] = None
