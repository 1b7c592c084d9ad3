from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI

from .agent.chat import ChatService
from .agent.confirmations import ConfirmationService
from .agent.email_drafts import EmailDraftService
from .agent.orchestrator import WorkflowOrchestrator
from .agent.protected_time import ProtectedTimeService
from .agent.scheduling import SchedulingService
from .config import OPENAI_API_KEY, PREFERENCES_DATA_FILE
from .event_writer import RetryingEventWriter
from .gcal import (
    CalendarGateway,
    GoogleCalendarGateway,
    InMemoryCalendarGateway,
    is_google_configured,
)
from .gmail import EmailGateway, GmailGateway, InMemoryEmailGateway
from .llm import Extractor, build_extractor
from .routes import router
from .state import PendingDraftStore, PreferenceStore

logger = logging.getLogger(__name__)


def create_app(preference_store: Optional[PreferenceStore] = None,
               calendar: Optional[CalendarGateway] = None,
               email: Optional[EmailGateway] = None,
               extractor: Optional[Extractor] = None,
               event_writer: Optional[RetryingEventWriter] = None,
               workflow_deadline_seconds: Optional[float] = None) -> FastAPI:
  """Build the API with every service wired onto ``app.state``.

  Any collaborator left as None falls back to the Google/OpenAI backed
  implementation when configured, otherwise to the in-memory one.
  """
  app = FastAPI(title="Calendar Copilot")

  google_ready = is_google_configured()
  if calendar is None:
    calendar = GoogleCalendarGateway() if google_ready else InMemoryCalendarGateway()
  if email is None:
    email = GmailGateway() if google_ready else InMemoryEmailGateway()
  if extractor is None:
    extractor = build_extractor()
  if preference_store is None:
    preference_store = PreferenceStore(PREFERENCES_DATA_FILE)
  if event_writer is None:
    event_writer = RetryingEventWriter(calendar)

  logger.info("Calendar Copilot starting (google=%s, openai=%s)",
              google_ready, bool(OPENAI_API_KEY))

  draft_store = PendingDraftStore()
  scheduling = SchedulingService(extractor, event_writer)
  protected_time = ProtectedTimeService(extractor, preference_store)
  email_drafts = EmailDraftService(extractor)
  orchestrator_kwargs: Dict[str, Any] = {}
  if workflow_deadline_seconds is not None:
    orchestrator_kwargs["deadline_seconds"] = workflow_deadline_seconds
  orchestrator = WorkflowOrchestrator(extractor, scheduling, protected_time, email_drafts,
                                      event_writer, draft_store, **orchestrator_kwargs)
  confirmations = ConfirmationService(email, draft_store)

  app.state.preference_store = preference_store
  app.state.calendar = calendar
  app.state.email = email
  app.state.extractor = extractor
  app.state.event_writer = event_writer
  app.state.draft_store = draft_store
  app.state.orchestrator = orchestrator
  app.state.chat = ChatService(extractor, calendar, preference_store, confirmations,
                               orchestrator, protected_time, scheduling)

  app.include_router(router)
  return app
