from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import (
    DEFAULT_TIMEZONE,
    DEFAULT_WORKING_HOURS_START,
    DEFAULT_WORKING_HOURS_END,
    DEFAULT_MEETING_DURATION,
    MIN_MEETING_DURATION,
    MAX_MEETING_DURATION,
)
from .utils import normalize_hhmm, to_utc

EventCategory = Literal["meeting", "external", "focus", "personal"]
ResponseStatus = Literal["accepted", "declined", "tentative", "needsAction"]


class Attendee(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str
    name: Optional[str] = None
    response_status: ResponseStatus = "needsAction"


class CalendarEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    start: datetime
    end: datetime
    timezone: str = DEFAULT_TIMEZONE
    attendees: List[Attendee] = Field(default_factory=list)
    is_all_day: bool = False
    category: EventCategory = "meeting"
    description: Optional[str] = None
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    has_agenda: bool = False
    calendar_id: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class TimeSlot(BaseModel):
    """A free interval. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    available: bool = True
    timezone: str = DEFAULT_TIMEZONE

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeSlot":
        if self.start >= self.end:
            raise ValueError("slot start must be before end")
        return self

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class WorkingHours(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start: str = DEFAULT_WORKING_HOURS_START
    end: str = DEFAULT_WORKING_HOURS_END

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, value: str) -> str:
        return normalize_hhmm(value)

    @model_validator(mode="after")
    def _check_order(self) -> "WorkingHours":
        if self.start >= self.end:
            raise ValueError("working hours start must be before end")
        return self


class ProtectedTimeRule(BaseModel):
    """Recurring blocked window. Days use 0 = Sunday ... 6 = Saturday."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    label: str = "Protected Time"
    start: str
    end: str
    days_of_week: List[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("days_of_week", "daysOfWeek", "days"),
    )

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, value: str) -> str:
        return normalize_hhmm(value)

    @field_validator("days_of_week")
    @classmethod
    def _days(cls, value: List[int]) -> List[int]:
        for day in value:
            if not isinstance(day, int) or day < 0 or day > 6:
                raise ValueError(f"day of week out of range: {day!r}")
        return sorted(set(value))

    @model_validator(mode="after")
    def _check_order(self) -> "ProtectedTimeRule":
        if self.start >= self.end:
            raise ValueError("protected time start must be before end")
        return self


class Preferences(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    timezone: str = DEFAULT_TIMEZONE
    working_hours: WorkingHours = Field(
        default_factory=WorkingHours,
        validation_alias=AliasChoices("working_hours", "workingHours"),
    )
    protected_times: List[ProtectedTimeRule] = Field(
        default_factory=list,
        validation_alias=AliasChoices("protected_times", "protectedTimes"),
    )
    default_meeting_duration: int = Field(
        default=DEFAULT_MEETING_DURATION,
        ge=MIN_MEETING_DURATION,
        le=MAX_MEETING_DURATION,
        validation_alias=AliasChoices("default_meeting_duration", "defaultMeetingDuration"),
    )
    week_starts_on: int = Field(
        default=0, ge=0, le=6,
        validation_alias=AliasChoices("week_starts_on", "weekStartsOn"),
    )
    version: int = 0


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    timezone: Optional[str] = None
    working_hours: Optional[WorkingHours] = Field(
        default=None, validation_alias=AliasChoices("working_hours", "workingHours"))
    protected_times: Optional[List[ProtectedTimeRule]] = Field(
        default=None, validation_alias=AliasChoices("protected_times", "protectedTimes"))
    default_meeting_duration: Optional[int] = Field(
        default=None,
        ge=MIN_MEETING_DURATION,
        le=MAX_MEETING_DURATION,
        validation_alias=AliasChoices("default_meeting_duration", "defaultMeetingDuration"),
    )
    week_starts_on: Optional[int] = Field(
        default=None, ge=0, le=6,
        validation_alias=AliasChoices("week_starts_on", "weekStartsOn"))
    version: Optional[int] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"version"})


class DayStats(BaseModel):
    meeting_minutes: int = 0
    focus_minutes: int = 0
    available_minutes: int = 0


class DaySchedule(BaseModel):
    date: date
    timezone: str
    events: List[CalendarEvent] = Field(default_factory=list)
    available_slots: List[TimeSlot] = Field(default_factory=list)
    stats: DayStats = Field(default_factory=DayStats)


class EventDraft(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    description: str = ""
    start: datetime
    end: datetime
    timezone: str = DEFAULT_TIMEZONE
    attendees: List[str] = Field(default_factory=list)
    location: str = ""
    is_all_day: bool = False

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return to_utc(value)


class EventConflict(BaseModel):
    event_id: str
    conflicting_event_ids: List[str] = Field(default_factory=list)
    conflicting_events: List[CalendarEvent] = Field(default_factory=list)


class PositionedEvent(BaseModel):
    event: CalendarEvent
    column: int = 0
    total_columns: int = 1


# -------------------------
# Request bodies
# -------------------------
class CreateEventRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    start: datetime
    end: datetime
    timezone: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    description: str = ""
    location: str = ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    timezone: Optional[str] = None
    user_name: Optional[str] = None


class WorkflowRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    steps: Optional[List[Dict[str, Any]]] = None
    raw_plan: Optional[str] = None
    user_name: Optional[str] = None
