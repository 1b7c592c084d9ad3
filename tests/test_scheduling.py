import json
from datetime import date

import pytest

from calendar_copilot.agent.schemas import ExtractedMeeting
from calendar_copilot.agent.scheduling import (
    SchedulingError,
    SchedulingService,
    is_scheduling_request,
    resolve_meeting_draft,
)
from calendar_copilot.event_writer import RetryingEventWriter
from calendar_copilot.models import Preferences, WorkingHours
from tests.conftest import (
    FIXED_NOW,
    MONDAY,
    USER_ID,
    FailingCalendarGateway,
    ScriptedExtractor,
    no_sleep,
    utc,
)


class TestDetection:

    @pytest.mark.parametrize("message", [
        "Schedule a meeting with Ann tomorrow",
        "can you set up a call with the vendor",
        "Book an appointment for Friday",
        "create an event for the launch",
    ])
    def test_recognized(self, message):
        assert is_scheduling_request(message)

    @pytest.mark.parametrize("message", ["What's on my calendar?", "email Ann the notes"])
    def test_not_recognized(self, message):
        assert not is_scheduling_request(message)


class TestResolveDraft:

    def test_defaults_to_working_hours_start(self):
        prefs = Preferences(timezone="UTC", working_hours=WorkingHours(start="08:30", end="17:00"))
        meeting = ExtractedMeeting(title="Sync", duration_minutes=45)
        draft = resolve_meeting_draft(meeting, "sync on friday", prefs, "UTC", MONDAY)
        assert draft.start == utc(date(2025, 1, 10), "08:30")
        assert draft.end == utc(date(2025, 1, 10), "09:15")

    def test_explicit_date_and_time(self):
        meeting = ExtractedMeeting(title="Sync", date="2025-01-08", time="15:00")
        draft = resolve_meeting_draft(meeting, "", Preferences(), "America/New_York", MONDAY)
        assert draft.start == utc(date(2025, 1, 8), "20:00")
        assert draft.timezone == "America/New_York"


class TestCreateMeetings:

    @pytest.mark.asyncio
    async def test_batch_partial_failure(self, writer, calendar, utc_preferences):
        service = SchedulingService(ScriptedExtractor(), writer)
        meetings = [
            ExtractedMeeting(title="One", date="2025-01-07", time="10:00", attendees=["ann@example.com"]),
            ExtractedMeeting(title="Two", date="2025-01-07", time="11:00", attendees=["not-an-email"]),
            ExtractedMeeting(title="Three", date="2025-01-07", time="12:00"),
        ]

        result = await service.create_meetings(meetings, USER_ID, utc_preferences, "UTC",
                                               "schedule three meetings", MONDAY)

        assert [m.title for m in result.created] == ["One", "Three"]
        assert [m.title for m in result.failed] == ["Two"]
        assert "not-an-email" in result.failed[0].error
        assert result.created[0].attendees == ["ann@example.com"]
        assert [d.title for d in calendar.inserted] == ["One", "Three"]

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_siblings(self, utc_preferences):
        gateway = FailingCalendarGateway([RuntimeError("access_denied")])
        writer = RetryingEventWriter(gateway, sleep=no_sleep, now=lambda: FIXED_NOW)
        service = SchedulingService(ScriptedExtractor(), writer, concurrency=1)
        meetings = [ExtractedMeeting(title="A", date="2025-01-07"),
                    ExtractedMeeting(title="B", date="2025-01-07")]

        result = await service.create_meetings(meetings, USER_ID, utc_preferences, "UTC", "", MONDAY)

        assert [m.title for m in result.failed] == ["A"]
        assert [m.title for m in result.created] == ["B"]


class TestHandleRequest:

    @pytest.mark.asyncio
    async def test_single_meeting_message(self, writer, utc_preferences):
        extractor = ScriptedExtractor([json.dumps({
            "isBatch": False,
            "meetings": [{"title": "Design review", "date": "2025-01-07", "time": "10:00",
                          "duration": 30, "attendees": ["ann@example.com"]}],
        })])
        service = SchedulingService(extractor, writer)

        response = await service.handle_request("Schedule a meeting for the design review",
                                                utc_preferences, USER_ID, "UTC")

        assert response.message == ('I\'ve scheduled "Design review" for 1/7/2025 at '
                                    "10:00 AM - 10:30 AM. Invitations sent to 1 attendee(s).")

    @pytest.mark.asyncio
    async def test_batch_message_lists_meetings(self, writer, utc_preferences):
        extractor = ScriptedExtractor([json.dumps({
            "isBatch": True,
            "meetings": [
                {"title": "Standup", "date": "2025-01-07", "time": "09:00"},
                {"title": "Retro", "date": "2025-01-08", "time": "16:00"},
            ],
        })])
        service = SchedulingService(extractor, writer)

        response = await service.handle_request("schedule meetings: standup and retro",
                                                utc_preferences, USER_ID, "UTC")

        assert response.message.startswith("I've scheduled 2 meetings:")
        assert '"Standup"' in response.message and '"Retro"' in response.message
        assert "4:00 PM" in response.message

    @pytest.mark.asyncio
    async def test_malformed_extraction_uses_fallback(self, writer, calendar, utc_preferences):
        service = SchedulingService(ScriptedExtractor(["sorry, no JSON today"]), writer)

        await service.handle_request("schedule a meeting with the team tomorrow",
                                     utc_preferences, USER_ID, "UTC")

        draft = calendar.inserted[0]
        assert draft.title == "a meeting with the team"
        assert draft.start == utc(date(2025, 1, 7), "09:00")
        assert draft.end == utc(date(2025, 1, 7), "09:30")

    @pytest.mark.asyncio
    async def test_extractor_error_uses_fallback(self, writer, calendar, utc_preferences):
        service = SchedulingService(ScriptedExtractor([RuntimeError("model offline")]), writer)

        response = await service.handle_request("book a meeting for planning",
                                                utc_preferences, USER_ID, "UTC")

        assert response is not None
        assert len(calendar.inserted) == 1

    @pytest.mark.asyncio
    async def test_unrecognized_message_returns_none(self, writer, utc_preferences):
        extractor = ScriptedExtractor()
        service = SchedulingService(extractor, writer)
        assert await service.handle_request("how busy am I?", utc_preferences, USER_ID) is None
        assert await service.handle_request("schedule a meeting", utc_preferences, None) is None
        assert extractor.extract_calls == []

    @pytest.mark.asyncio
    async def test_nothing_created_raises(self, utc_preferences):
        gateway = FailingCalendarGateway([RuntimeError("access_denied")], repeat_last=True)
        writer = RetryingEventWriter(gateway, sleep=no_sleep, now=lambda: FIXED_NOW)
        service = SchedulingService(ScriptedExtractor(), writer)

        with pytest.raises(SchedulingError) as excinfo:
            await service.handle_request("schedule a meeting tomorrow", utc_preferences, USER_ID, "UTC")

        assert excinfo.value.result.created == []
        assert len(excinfo.value.result.failed) == 1
