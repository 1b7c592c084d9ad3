from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError

from calendar_copilot.event_writer import (
    PERMISSION_DENIED,
    RATE_LIMIT_MESSAGE,
    RATE_LIMITED,
    TRANSIENT,
    CalendarPermissionError,
    CalendarRateLimitError,
    CalendarWriteError,
    EventValidationError,
    RetryingEventWriter,
    backoff_delay_ms,
    classify_calendar_error,
    validate_event_draft,
)
from calendar_copilot.models import EventDraft
from tests.conftest import FIXED_NOW, USER_ID, FailingCalendarGateway


def _http_error(status: int, message: str, reason: str = "") -> HttpError:
    errors = [{"reason": reason, "message": message}] if reason else []
    content = (
        '{"error": {"code": %d, "message": "%s", "errors": %s}}'
        % (status, message, str(errors).replace("'", '"'))
    ).encode("utf-8")
    return HttpError(SimpleNamespace(status=status, reason=message), content)


def _draft(**overrides) -> EventDraft:
    fields = {
        "title": "Planning",
        "start": FIXED_NOW + timedelta(hours=2),
        "end": FIXED_NOW + timedelta(hours=3),
        "timezone": "UTC",
    }
    fields.update(overrides)
    return EventDraft(**fields)


class _Recorder:

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class TestClassification:

    def test_http_statuses(self):
        assert classify_calendar_error(_http_error(401, "Invalid Credentials")) == PERMISSION_DENIED
        assert classify_calendar_error(_http_error(403, "Forbidden")) == PERMISSION_DENIED
        assert classify_calendar_error(_http_error(429, "Too Many Requests")) == RATE_LIMITED
        assert classify_calendar_error(
            _http_error(403, "Rate Limit Exceeded", reason="rateLimitExceeded")) == RATE_LIMITED
        assert classify_calendar_error(_http_error(500, "Backend Error")) == TRANSIENT

    @pytest.mark.parametrize("message,expected", [
        ("access_denied: token revoked", PERMISSION_DENIED),
        ("invalid_grant", PERMISSION_DENIED),
        ("Forbidden by policy", PERMISSION_DENIED),
        ("Daily quota exhausted", RATE_LIMITED),
        ("rate limit hit", RATE_LIMITED),
        ("connection reset by peer", TRANSIENT),
    ])
    def test_message_fallback(self, message, expected):
        assert classify_calendar_error(RuntimeError(message)) == expected

    def test_backoff_schedule(self):
        assert [backoff_delay_ms(n) for n in range(1, 6)] == [1000, 2000, 4000, 8000, 10000]


class TestValidation:

    @pytest.mark.parametrize("overrides", [
        {"title": "   "},
        {"title": "x" * 1001},
        {"end": FIXED_NOW + timedelta(hours=2)},
        {"end": FIXED_NOW + timedelta(hours=11)},
        {"attendees": ["ann@example.com", "nope"]},
    ])
    def test_rejects_bad_drafts(self, overrides):
        with pytest.raises(EventValidationError):
            validate_event_draft(_draft(**overrides), FIXED_NOW)

    def test_normalizes_attendees_and_text(self):
        draft = _draft(title="  Planning  ", location=" Room 4 ",
                       attendees=["ann@example.com", "ANN@example.com", "bob@example.com"])
        normalized = validate_event_draft(draft, FIXED_NOW)
        assert normalized.title == "Planning"
        assert normalized.location == "Room 4"
        assert normalized.attendees == ["ann@example.com", "bob@example.com"]

    def test_past_start_moves_forward_one_day(self):
        draft = _draft(start=FIXED_NOW - timedelta(hours=1), end=FIXED_NOW)
        normalized = validate_event_draft(draft, FIXED_NOW)
        assert normalized.start == datetime(2025, 1, 7, 7, 0, tzinfo=timezone.utc)
        assert normalized.end == datetime(2025, 1, 7, 8, 0, tzinfo=timezone.utc)

    def test_future_start_is_untouched(self):
        draft = _draft()
        assert validate_event_draft(draft, FIXED_NOW).start == draft.start


class TestRetryingEventWriter:

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self):
        gateway = FailingCalendarGateway([RuntimeError("503 backend"), RuntimeError("timeout")])
        sleep = _Recorder()
        writer = RetryingEventWriter(gateway, max_retries=3, sleep=sleep, now=lambda: FIXED_NOW)

        event = await writer.create_event(USER_ID, _draft())

        assert event.title == "Planning"
        assert gateway.insert_calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_embed_last_error(self):
        gateway = FailingCalendarGateway([RuntimeError("socket closed")], repeat_last=True)
        sleep = _Recorder()
        writer = RetryingEventWriter(gateway, max_retries=3, sleep=sleep, now=lambda: FIXED_NOW)

        with pytest.raises(CalendarWriteError) as excinfo:
            await writer.create_event(USER_ID, _draft())

        assert gateway.insert_calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert "socket closed" in str(excinfo.value)
        assert excinfo.value.kind == TRANSIENT

    @pytest.mark.asyncio
    async def test_permission_error_is_not_retried(self):
        gateway = FailingCalendarGateway([_http_error(403, "Forbidden")], repeat_last=True)
        writer = RetryingEventWriter(gateway, sleep=_Recorder(), now=lambda: FIXED_NOW)

        with pytest.raises(CalendarPermissionError):
            await writer.create_event(USER_ID, _draft())
        assert gateway.insert_calls == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self):
        gateway = FailingCalendarGateway([_http_error(429, "Too Many Requests")], repeat_last=True)
        writer = RetryingEventWriter(gateway, sleep=_Recorder(), now=lambda: FIXED_NOW)

        with pytest.raises(CalendarRateLimitError) as excinfo:
            await writer.create_event(USER_ID, _draft())
        assert gateway.insert_calls == 1
        assert str(excinfo.value) == RATE_LIMIT_MESSAGE

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_call(self):
        gateway = FailingCalendarGateway([])
        writer = RetryingEventWriter(gateway, sleep=_Recorder(), now=lambda: FIXED_NOW)

        with pytest.raises(EventValidationError):
            await writer.create_event(USER_ID, _draft(attendees=["bad"]))
        with pytest.raises(EventValidationError):
            await writer.create_event("", _draft())
        assert gateway.insert_calls == 0
