import json
from datetime import date

import pytest

from calendar_copilot.agent.intent_plan import (
    coerce_meeting,
    fallback_meeting,
    parse_intent_plan,
    parse_meeting_extraction,
    plan_from_steps,
)
from calendar_copilot.agent.normalizer import (
    clean_json_response,
    coerce_time,
    extract_email_addresses,
    load_json_object,
    resolve_meeting_date,
    resolve_relative_date,
)
from tests.conftest import MONDAY


class TestCleaning:

    def test_strips_fence_and_prose(self):
        raw = 'Sure! Here you go:\n```json\n{"steps": []}\n```\nHope that helps.'
        assert clean_json_response(raw) == '{"steps": []}'

    def test_prose_without_a_closing_brace(self):
        assert clean_json_response("Here: {\"steps\": [") == ""
        assert clean_json_response("} then {") == ""
        assert clean_json_response("note {\"a\": 1} and {\"b\": 2} end") == '{"a": 1} and {"b": 2}'

    def test_long_unterminated_prose_is_cleaned(self):
        text = "{" + "a" * 200000
        assert clean_json_response(text) == ""
        assert clean_json_response(text + "}") == text + "}"

    def test_deeply_nested_object_is_rejected(self):
        assert load_json_object('{"a":' * 5000 + "1" + "}" * 5000) is None

    def test_non_object_is_rejected(self):
        assert load_json_object("[1, 2, 3]") is None
        assert load_json_object("no braces at all") is None
        assert load_json_object(None) is None
        assert load_json_object('{"a": 1}') == {"a": 1}


class TestRelativeDates:

    @pytest.mark.parametrize("message,expected", [
        ("lunch tomorrow", date(2025, 1, 7)),
        ("sync today at 3", date(2025, 1, 6)),
        ("call on friday", date(2025, 1, 10)),
        ("next monday works", date(2025, 1, 13)),
        ("sunday brunch", date(2025, 1, 12)),
        ("sometime next week", date(2025, 1, 13)),
        ("whenever suits", date(2025, 1, 7)),
    ])
    def test_keyword_scan(self, message, expected):
        assert resolve_relative_date(message, MONDAY) == expected

    def test_explicit_date_wins(self):
        assert resolve_meeting_date("2025-02-01", "tomorrow", MONDAY) == date(2025, 2, 1)

    def test_unparseable_date_defaults_to_tomorrow(self):
        assert resolve_meeting_date("the 5th", "on friday", MONDAY) == date(2025, 1, 7)

    def test_missing_date_uses_message(self):
        assert resolve_meeting_date(None, "on friday", MONDAY) == date(2025, 1, 10)

    def test_coerce_time(self):
        assert coerce_time("9:05") == "09:05"
        assert coerce_time("24:00") is None
        assert coerce_time("3pm") is None

    def test_email_extraction_dedupes(self):
        text = "ping ann@example.com and bob@example.org, cc ann@example.com"
        assert extract_email_addresses(text) == ["ann@example.com", "bob@example.org"]


class TestParseIntentPlan:

    def test_valid_plan(self):
        raw = json.dumps({
            "isMultiStep": True,
            "steps": [
                {"type": "schedule", "description": "Book sync", "params": {"title": "Sync"}},
                {"type": "email", "description": "Send agenda", "params": {"recipients": ["ann@example.com"]}},
            ],
        })
        plan = parse_intent_plan(f"```json\n{raw}\n```", "book a sync and email ann")
        assert plan.is_multi_step
        assert not plan.fallback_used
        assert [s.type for s in plan.steps] == ["schedule", "email"]
        assert plan.steps[0].params == {"title": "Sync"}

    def test_multi_step_requires_literal_true(self):
        raw = json.dumps({"isMultiStep": "yes", "steps": [{"type": "analyze"}, {"type": "analyze"}]})
        assert not parse_intent_plan(raw, "look at my week").is_multi_step

    def test_unknown_step_types_are_dropped(self):
        raw = json.dumps({"steps": [{"type": "dance"}, {"type": "analyze", "description": "Review"}]})
        plan = parse_intent_plan(raw, "review")
        assert [s.type for s in plan.steps] == ["analyze"]

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "{",
        "}{",
        "I could not understand that request.",
        "```json\n[1, 2]\n```",
        '{"steps": "schedule"}',
        '{"steps": []}',
        '{"steps": [{"type": "dance"}]}',
        '{"steps": [null, 3, "x"]}',
        12345,
        '{"a":' * 1200 + "1" + "}" * 1200,
    ])
    def test_never_raises_and_falls_back(self, raw):
        plan = parse_intent_plan(raw, "Schedule design review tomorrow")
        assert plan.fallback_used
        assert len(plan.steps) == 1
        step = plan.steps[0]
        assert step.type == "schedule"
        assert step.params == {"title": "design review", "duration": 30, "attendees": []}

    def test_plan_from_steps(self):
        plan = plan_from_steps([{"type": "analyze", "description": "Look"}, {"type": "email"}], "x")
        assert plan.is_multi_step and not plan.fallback_used
        assert plan_from_steps([{"type": "bogus"}], "book lunch").fallback_used


class TestMeetingExtraction:

    def test_fallback_title_from_pattern(self):
        assert fallback_meeting("Please schedule a sync with Dana tomorrow").title == "a sync with Dana"

    def test_fallback_title_truncates_long_messages(self):
        message = "I would really like some time with the whole platform team soon please"
        title = fallback_meeting(message).title
        assert title == message[:47] + "..."

    def test_coerce_bounds_and_filters(self):
        meeting = coerce_meeting({
            "title": "x" * 150,
            "duration": 1000,
            "date": "2025-01-09",
            "time": "9:00",
            "attendees": ["ann@example.com", "not-an-email", "ann@example.com", 42],
        })
        assert len(meeting.title) == 100
        assert meeting.duration_minutes == 480
        assert meeting.date == "2025-01-09"
        assert meeting.time == "09:00"
        assert meeting.attendees == ["ann@example.com"]

    @pytest.mark.parametrize("duration,expected", [
        (None, 30), ("45", 30), (True, 30), (-5, 30), (5, 15), (44.6, 45), (float("nan"), 30),
    ])
    def test_duration_coercion(self, duration, expected):
        assert coerce_meeting({"title": "t", "duration": duration}).duration_minutes == expected

    def test_meeting_without_title_is_dropped(self):
        assert coerce_meeting({"duration": 30}) is None
        assert coerce_meeting("Sync") is None

    def test_extraction_keeps_usable_meetings(self):
        raw = json.dumps({"isBatch": True, "meetings": [{"title": "A"}, {"duration": 30}, {"title": "B"}]})
        extraction = parse_meeting_extraction(raw, "schedule a and b")
        assert extraction.is_batch
        assert [m.title for m in extraction.meetings] == ["A", "B"]

    def test_extraction_falls_back(self):
        extraction = parse_meeting_extraction("not json", "book standup for tomorrow")
        assert extraction.fallback_used
        assert extraction.meetings[0].title == "standup"
        assert extraction.meetings[0].duration_minutes == 30
        assert extraction.meetings[0].attendees == []

    def test_nested_output_falls_back(self):
        raw = '{"meetings": ' + "[" * 3000 + "]" * 3000 + "}"
        extraction = parse_meeting_extraction(raw, "book standup for tomorrow")
        assert extraction.fallback_used
        assert extraction.meetings[0].title == "standup"
