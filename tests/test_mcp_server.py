import pytest
import requests

from mcp_server import server


class _Response:

    def __init__(self, status_code, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


@pytest.fixture
def recorded(monkeypatch):
    calls = []
    responses = []

    def fake_request(method, url, **kwargs):
        calls.append({"method": method, "url": url, **kwargs})
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(server.requests, "request", fake_request)
    monkeypatch.setattr(server, "DEFAULT_SESSION_ID", "")
    return calls, responses


class TestBackendBridge:

    def test_missing_session(self, recorded):
        calls, _ = recorded
        result = server.preferences_get()
        assert result["ok"] is False
        assert result["code"] == "invalid_request"
        assert calls == []

    def test_session_cookie_and_params(self, recorded):
        calls, responses = recorded
        responses.append(_Response(200, {"slots": []}))

        result = server.calendar_freebusy("2025-01-06", duration_minutes=45, session_id="abc")

        assert result == {"ok": True, "data": {"slots": []}}
        call = calls[0]
        assert call["method"] == "GET"
        assert call["url"].endswith("/api/calendar/availability")
        assert call["headers"] == {"Cookie": "gcal_session=abc"}
        assert call["params"] == {"start": "2025-01-06", "duration": 45, "respectProtectedTime": "true"}

    def test_backend_error(self, recorded):
        _, responses = recorded
        responses.append(_Response(403, {"detail": "denied"}))

        result = server.calendar_day_schedule(date="2025-01-06", session_id="abc")

        assert result["ok"] is False
        assert result["code"] == "backend_error"
        assert result["status"] == 403
        assert result["error"] == {"detail": "denied"}

    def test_non_json_body(self, recorded):
        _, responses = recorded
        responses.append(_Response(502, text="Bad Gateway"))
        result = server.agent_chat("hello", session_id="abc")
        assert result["error"] == {"raw": "Bad Gateway"}

    def test_connection_failure(self, recorded):
        _, responses = recorded
        responses.append(requests.ConnectionError("refused"))
        result = server.agent_run_workflow("plan my day", session_id="abc")
        assert result["code"] == "request_failed"

    def test_create_event_payload(self, recorded):
        calls, responses = recorded
        responses.append(_Response(200, {"id": "evt-1"}))

        server.calendar_create_event("Sync", "2025-01-07T10:00:00Z", "2025-01-07T10:30:00Z",
                                     session_id="abc")

        assert calls[0]["json"]["attendees"] == []
        assert calls[0]["json"]["description"] == ""
