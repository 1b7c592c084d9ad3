from __future__ import annotations

from datetime import date
from typing import List, Optional

from ..models import DaySchedule, Preferences
from ..utils import format_time_12h

SYSTEM_PROMPT = """You are a calendar assistant helping a professional manage their time and coordinate with others.

Your tone is warm but professional. Helpful without being overly casual or stiff. You're like a capable colleague, not a robot or an overeager assistant.

Guidelines:
- Be concise. Respect the user's time.
- When suggesting times, always respect their protected time blocks.
- Default to giving users options rather than making decisions for them.
- If you notice patterns (too many meetings, no breaks), mention them gently.
- Never invent or assume calendar data. Only reference what you've been given.
- When drafting emails, match the user's likely tone (professional but personable).
- Meeting = event with others (meeting/external). Task/focus = solo work block. Use the user's timezone for any times you mention.

You have access to:
- The user's calendar events
- Their preferences (working hours, protected time)
- The ability to draft emails
- Time analytics for their schedule"""

SCHEDULING_SYSTEM_PROMPT = (
    "Extract event details as valid JSON only. Support both single and multiple "
    "meeting requests. Be precise with dates, times, and emails.")

MEETING_EXTRACTION_PROMPT_TEMPLATE = """Extract event details from this scheduling request. The user may be requesting ONE or MULTIPLE meetings.

Return a JSON object with:
- isBatch: boolean (true if multiple distinct meetings are requested, false for single meeting)
- meetings: array of meeting objects, each with:
  - title: string (brief, descriptive title, max 100 chars)
  - duration: number (minutes: 15, 30, 60, 90, 120, etc.)
  - date: string (YYYY-MM-DD format, or null if not specified)
  - time: string (HH:MM 24-hour format, or null if not specified)
  - attendees: string[] (valid email addresses only, or empty array)
  - description: string (details, or empty string)
  - location: string (location if mentioned, or empty string)

IMPORTANT:
- If user mentions multiple people with different times/dates, create SEPARATE meetings for each
- "meetings with Joe, Dan, and Sally" = 3 separate meetings (isBatch: true)
- "team meeting with Joe, Dan, Sally" = 1 meeting with all as attendees (isBatch: false)
- Only include valid email addresses in attendees array
- Duration should be 15-480 minutes

Examples:
Input: "Schedule meetings with alice@test.com tomorrow at 2pm and bob@test.com on Friday at 10am"
Output: {"isBatch":true,"meetings":[{"title":"Meeting with Alice","duration":30,"date":"2024-01-30","time":"14:00","attendees":["alice@test.com"],"description":"","location":""},{"title":"Meeting with Bob","duration":30,"date":"2024-02-02","time":"10:00","attendees":["bob@test.com"],"description":"","location":""}]}

Input: "Set up a team meeting with alice@test.com and bob@test.com Monday at 2pm"
Output: {"isBatch":false,"meetings":[{"title":"Team Meeting","duration":30,"date":"2024-01-29","time":"14:00","attendees":["alice@test.com","bob@test.com"],"description":"","location":""}]}

Input: "I need to schedule three meetings with Joe, Dan, and Sally next week"
Output: {"isBatch":true,"meetings":[{"title":"Meeting with Joe","duration":30,"date":null,"time":null,"attendees":[],"description":"","location":""},{"title":"Meeting with Dan","duration":30,"date":null,"time":null,"attendees":[],"description":"","location":""},{"title":"Meeting with Sally","duration":30,"date":null,"time":null,"attendees":[],"description":"","location":""}]}

Message: "{MESSAGE}"

Current date: {TODAY}
Working hours: {WORK_START} - {WORK_END}"""

WORKFLOW_SYSTEM_PROMPT = "Analyze requests for multi-step workflows. Return JSON only."

WORKFLOW_ANALYSIS_PROMPT_TEMPLATE = """Analyze if this request requires multiple distinct steps to complete.

Message: "{MESSAGE}"

Return a JSON object:
{
  "isMultiStep": boolean (true only if request explicitly requires 2+ DIFFERENT actions),
  "steps": [
    {
      "type": "schedule" | "email" | "update_preferences" | "analyze",
      "description": "brief description of this step",
      "params": { ... relevant parameters }
    }
  ]
}

Rules:
- "schedule meetings with 3 people" = NOT multi-step (one action: scheduling)
- "schedule a meeting AND email them" = multi-step (2 actions: schedule + email)
- "block my mornings and schedule a meeting" = multi-step (2 actions: preferences + schedule)
- Only return isMultiStep: true if there are genuinely different action types

Examples:
"Schedule a meeting with Alice tomorrow and send her a confirmation email"
{"isMultiStep":true,"steps":[{"type":"schedule","description":"Schedule meeting with Alice tomorrow","params":{"attendees":["alice"],"date":"tomorrow"}},{"type":"email","description":"Send confirmation email to Alice","params":{"recipients":["alice"],"purpose":"meeting confirmation"}}]}

"Schedule meetings with Joe, Dan, and Sally next week"
{"isMultiStep":false,"steps":[{"type":"schedule","description":"Schedule multiple meetings","params":{}}]}"""

PROTECTED_TIME_SYSTEM_PROMPT = (
    "Extract protected time details as valid JSON only. Be precise with times and days.")

PROTECTED_TIME_PROMPT_TEMPLATE = """Extract protected time block details from this request. Return ONLY a valid JSON object with these fields:
- label: string (descriptive name like "Morning workout", "Lunch break", "Focus time")
- start: string (HH:MM format in 24-hour time, e.g., "06:00" for 6 AM)
- end: string (HH:MM format in 24-hour time, e.g., "09:00" for 9 AM)
- days: number[] (array where 0=Sunday, 1=Monday, 2=Tuesday, 3=Wednesday, 4=Thursday, 5=Friday, 6=Saturday)

Common patterns:
- "mornings" typically means 06:00-09:00
- "lunch" typically means 12:00-13:00
- "afternoons" typically means 13:00-17:00
- "weekdays" = [1,2,3,4,5]
- "weekends" = [0,6]
- "every day" = [0,1,2,3,4,5,6]

Examples:
Input: "Block my mornings for workouts on weekdays"
Output: {"label":"Morning workout","start":"06:00","end":"09:00","days":[1,2,3,4,5]}

Input: "Keep 12-1pm free for lunch Monday through Friday"
Output: {"label":"Lunch break","start":"12:00","end":"13:00","days":[1,2,3,4,5]}

Input: "Don't schedule meetings before 10am"
Output: {"label":"Morning blocked","start":"06:00","end":"10:00","days":[1,2,3,4,5]}

Message: "{MESSAGE}\""""

_TONE_GUIDANCE = {
    "formal": "Use professional, formal language.",
    "casual": "Keep it friendly and conversational.",
    "neutral": "Be professional but personable.",
}

_SHORT_DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
_CATEGORY_LABELS = {
    "meeting": "meeting",
    "external": "external meeting",
    "focus": "focus",
    "personal": "personal",
}


def build_extraction_prompt(message: str, today: date, preferences: Preferences) -> str:
  return (MEETING_EXTRACTION_PROMPT_TEMPLATE
          .replace("{MESSAGE}", message)
          .replace("{TODAY}", today.isoformat())
          .replace("{WORK_START}", preferences.working_hours.start)
          .replace("{WORK_END}", preferences.working_hours.end))


def build_workflow_prompt(message: str) -> str:
  return WORKFLOW_ANALYSIS_PROMPT_TEMPLATE.replace("{MESSAGE}", message)


def build_protected_time_prompt(message: str) -> str:
  return PROTECTED_TIME_PROMPT_TEMPLATE.replace("{MESSAGE}", message)


def build_email_draft_prompt(user_name: str,
                             recipient: str,
                             purpose: str,
                             recipient_name: Optional[str] = None,
                             tone: str = "neutral",
                             specific_content: Optional[str] = None,
                             suggested_times: Optional[List[str]] = None) -> str:
  times_section = ""
  if suggested_times:
    lines = "\n".join(f"- {t}" for t in suggested_times)
    times_section = f"\nSuggested times to offer:\n{lines}"
  if specific_content:
    content_section = f"\nSPECIFIC CONTENT FROM USER (YOU MUST USE THIS): {specific_content}"
  else:
    content_section = f"\nPurpose: {purpose}"
  guidance = _TONE_GUIDANCE.get(tone, _TONE_GUIDANCE["neutral"])

  return f"""Draft a brief, professional email for {user_name} to send to {recipient_name or recipient}.
{content_section}{times_section}

Guidelines:
- Keep it short (3-5 sentences max)
- Sound natural, not templated
- {guidance}
- End with a clear ask or next step
- Don't use overly formal language like "I hope this email finds you well"
- CRITICAL: If SPECIFIC CONTENT is provided above, use it as the core message. Do not hallucinate or add significant new information or facts. If only a purpose is provided, expand it logically and professionally.

Return only the email body text, no subject line or greeting/signature formatting."""


def _hours(minutes: int) -> float:
  return round(minutes / 60, 1)


def build_schedule_context(schedule: DaySchedule, preferences: Preferences) -> str:
  """Day summary handed to the assistant. Times are in the user's timezone."""
  tz = schedule.timezone or preferences.timezone
  day = schedule.date
  lines = []
  for event in schedule.events:
    label = _CATEGORY_LABELS.get(event.category, event.category)
    extra = f", {len(event.attendees)} attendees" if event.attendees else ""
    lines.append(f"- {format_time_12h(event.start, tz)}-{format_time_12h(event.end, tz)}: "
                 f"{event.title} ({label}{extra})")
  meetings = sum(1 for e in schedule.events if e.category in ("meeting", "external"))
  focus = sum(1 for e in schedule.events if e.category == "focus")
  personal = sum(1 for e in schedule.events if e.category == "personal")
  stats = schedule.stats

  return f"""Current date: {day.strftime('%A, %B')} {day.day}
Working hours: {preferences.working_hours.start} - {preferences.working_hours.end}
Timezone: {tz}

Today's schedule (all times in user's timezone above):
{chr(10).join(lines) or 'No events scheduled'}

Summary: {meetings} meeting(s), {focus} focus block(s), {personal} personal block(s).

Stats:
- Meeting time: {_hours(stats.meeting_minutes)} hours
- Focus time: {_hours(stats.focus_minutes)} hours
- Available time: {_hours(stats.available_minutes)} hours"""


def build_protected_times_context(preferences: Preferences) -> str:
  if not preferences.protected_times:
    return "No protected time blocks configured."
  blocks = []
  for rule in preferences.protected_times:
    days = ", ".join(_SHORT_DAY_NAMES[d] for d in rule.days_of_week)
    blocks.append(f"- {rule.label}: {rule.start}-{rule.end} on {days}")
  return "Protected time blocks (do not schedule over these):\n" + "\n".join(blocks)
