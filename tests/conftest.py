"""Shared fixtures: scripted extractor, in-memory gateways, fixed clock."""

from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from calendar_copilot.app import create_app
from calendar_copilot.event_writer import RetryingEventWriter
from calendar_copilot.gcal import CalendarGateway, InMemoryCalendarGateway
from calendar_copilot.gmail import InMemoryEmailGateway
from calendar_copilot.llm import Extractor
from calendar_copilot.models import CalendarEvent, EventDraft, Preferences
from calendar_copilot.state import PendingDraftStore, PreferenceStore

# Monday 2025-01-06 08:00 UTC
FIXED_NOW = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)
MONDAY = date(2025, 1, 6)
USER_ID = "user-1"


def utc(day: date, hhmm: str) -> datetime:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime(day.year, day.month, day.day, hours, minutes, tzinfo=timezone.utc)


def make_event(event_id: str, start: str, end: str, day: date = MONDAY, **fields) -> CalendarEvent:
    return CalendarEvent(id=event_id, title=fields.pop("title", event_id),
                         start=utc(day, start), end=utc(day, end),
                         timezone=fields.pop("timezone", "UTC"), **fields)


async def no_sleep(_seconds: float) -> None:
    return None


class ScriptedExtractor(Extractor):
    """Returns queued responses in order; an Exception entry is raised instead."""

    def __init__(self, extract_responses: Optional[List] = None,
                 reply_responses: Optional[List] = None,
                 default_reply: str = "") -> None:
        self.extract_responses = list(extract_responses or [])
        self.reply_responses = list(reply_responses or [])
        self.default_reply = default_reply
        self.extract_calls: List[str] = []
        self.reply_calls: List[List[Dict[str, str]]] = []

    async def extract(self, prompt, system_prompt="", max_tokens=800, temperature=0.1):
        self.extract_calls.append(prompt)
        if not self.extract_responses:
            return ""
        item = self.extract_responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def reply(self, messages, max_tokens=1024):
        self.reply_calls.append(messages)
        if not self.reply_responses:
            return self.default_reply
        item = self.reply_responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FailingCalendarGateway(CalendarGateway):
    """Raises queued errors from insert_event, then delegates to memory."""

    def __init__(self, errors: List[Exception], repeat_last: bool = False) -> None:
        self.errors = list(errors)
        self.repeat_last = repeat_last
        self.insert_calls = 0
        self.memory = InMemoryCalendarGateway()

    async def list_events(self, user_id, start, end, timezone_name):
        return await self.memory.list_events(user_id, start, end, timezone_name)

    async def insert_event(self, user_id: str, draft: EventDraft) -> CalendarEvent:
        self.insert_calls += 1
        if self.errors:
            raise self.errors[0] if self.repeat_last else self.errors.pop(0)
        return await self.memory.insert_event(user_id, draft)


@pytest.fixture
def utc_preferences() -> Preferences:
    return Preferences(timezone="UTC")


@pytest.fixture
def calendar() -> InMemoryCalendarGateway:
    return InMemoryCalendarGateway()


@pytest.fixture
def email_gateway() -> InMemoryEmailGateway:
    return InMemoryEmailGateway()


@pytest.fixture
def extractor() -> ScriptedExtractor:
    return ScriptedExtractor()


@pytest.fixture
def preference_store() -> PreferenceStore:
    return PreferenceStore()


@pytest.fixture
def draft_store() -> PendingDraftStore:
    return PendingDraftStore()


@pytest.fixture
def writer(calendar) -> RetryingEventWriter:
    return RetryingEventWriter(calendar, sleep=no_sleep, now=lambda: FIXED_NOW)


@pytest.fixture
def app(preference_store, calendar, email_gateway, extractor, writer):
    return create_app(preference_store=preference_store,
                      calendar=calendar,
                      email=email_gateway,
                      extractor=extractor,
                      event_writer=writer)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, headers={"X-User-Id": USER_ID})


@pytest.fixture
def anonymous_client(app) -> TestClient:
    return TestClient(app)
