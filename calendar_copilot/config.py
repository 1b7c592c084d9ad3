from __future__ import annotations

import os
import pathlib
import re

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")

HHMM_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_SEARCH_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# -------------------------
# Google settings
# -------------------------
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_SCOPES = [
    "openid",
    "profile",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/gmail.send",
]

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
GOOGLE_TOKEN_DIR = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_DIR", str(BASE_DIR / "gcal_tokens")))
PREFERENCES_DATA_FILE = pathlib.Path(
    os.getenv("PREFERENCES_DATA_FILE", str(BASE_DIR / "preferences_data.json")))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "gcal_session")
USER_ID_HEADER = "X-User-Id"

# -------------------------
# Scheduling limits/defaults
# -------------------------
DEFAULT_WORKING_HOURS_START = "09:00"
DEFAULT_WORKING_HOURS_END = "17:00"
FALLBACK_MEETING_TIME = "10:00"
DEFAULT_MEETING_DURATION = 30
MIN_MEETING_DURATION = 15
MAX_MEETING_DURATION = 480
MAX_EVENT_DURATION_MINUTES = 8 * 60
MAX_TITLE_LENGTH = 1000
MAX_EXTRACTED_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MAX_LOCATION_LENGTH = 200
MIN_EMAIL_LENGTH = 5
MAX_EMAIL_LENGTH = 254
MAX_EVENT_RANGE_DAYS = int(os.getenv("MAX_EVENT_RANGE_DAYS", "90"))

EVENT_WRITE_MAX_RETRIES = int(os.getenv("EVENT_WRITE_MAX_RETRIES", "3"))
RETRY_BASE_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 10000
BATCH_CREATE_CONCURRENCY = int(os.getenv("BATCH_CREATE_CONCURRENCY", "3"))
WORKFLOW_DEADLINE_SECONDS = float(os.getenv("WORKFLOW_DEADLINE_SECONDS", "60"))

ASSISTANT_FALLBACK_REPLY = "I apologize, but I was unable to generate a response."
