from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

import requests
from mcp.server.fastmcp import FastMCP

BACKEND_BASE_URL = os.getenv("BACKEND_BASE_URL", "http://localhost:8000").rstrip("/")
DEFAULT_SESSION_ID = os.getenv("GCAL_SESSION_ID", "").strip()
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "gcal_session")
REQUEST_TIMEOUT = float(os.getenv("MCP_BACKEND_TIMEOUT", "30"))
DEBUG_MODE = os.getenv("MCP_DEBUG", "0").strip() in ("1", "true", "True", "yes")

mcp = FastMCP("calendar-copilot")


def _log_tool_call(tool_name: str, input_data: Dict[str, Any], output_data: Dict[str, Any]) -> None:
  if not DEBUG_MODE:
    return
  print(f"\n{'='*80}")
  print(f"Tool: {tool_name}")
  print("input:")
  print(json.dumps(input_data, indent=2, ensure_ascii=False, default=str))
  print("output:")
  print(json.dumps(output_data, indent=2, ensure_ascii=False, default=str))
  print(f"{'='*80}\n")


def _session_id(session_id: Optional[str]) -> Optional[str]:
  sid = (session_id or DEFAULT_SESSION_ID).strip()
  return sid or None


def _request(method: str,
             path: str,
             session_id: Optional[str],
             params: Optional[Dict[str, Any]] = None,
             payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
  sid = _session_id(session_id)
  if sid is None:
    return {
        "ok": False,
        "code": "invalid_request",
        "message": f"{SESSION_COOKIE_NAME} is required. Pass session_id or set GCAL_SESSION_ID.",
    }
  url = f"{BACKEND_BASE_URL}{path}"
  headers = {"Cookie": f"{SESSION_COOKIE_NAME}={sid}"}
  try:
    resp = requests.request(method,
                            url,
                            params={k: v for k, v in (params or {}).items() if v is not None},
                            json=payload,
                            headers=headers,
                            timeout=REQUEST_TIMEOUT)
  except requests.RequestException as exc:
    return {
        "ok": False,
        "code": "request_failed",
        "message": f"Backend request failed: {exc}",
    }

  try:
    data = resp.json()
  except ValueError:
    data = {"raw": resp.text}

  if resp.status_code >= 400:
    return {
        "ok": False,
        "code": "backend_error",
        "status": resp.status_code,
        "error": data,
    }
  return {"ok": True, "data": data}


def _call(tool_name: str, input_data: Dict[str, Any], method: str, path: str,
          params: Optional[Dict[str, Any]] = None,
          payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
  result = _request(method, path, input_data.get("session_id"), params=params, payload=payload)
  _log_tool_call(tool_name, input_data, result)
  return result


# -------------------------
# Calendar tools
# -------------------------
@mcp.tool(name="calendar.freebusy")
def calendar_freebusy(
    start_date: str,
    end_date: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    respect_protected_time: bool = True,
    timezone: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
  """Free slots between start_date and end_date (YYYY-MM-DD) inside working hours."""
  params = {
      "start": start_date,
      "end": end_date,
      "duration": duration_minutes,
      "respectProtectedTime": "true" if respect_protected_time else "false",
      "timezone": timezone,
  }
  return _call("calendar.freebusy", {**params, "session_id": session_id},
               "GET", "/api/calendar/availability", params=params)


@mcp.tool(name="calendar.day_schedule")
def calendar_day_schedule(
    date: Optional[str] = None,
    timezone: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
  params = {"date": date, "timezone": timezone}
  return _call("calendar.day_schedule", {**params, "session_id": session_id},
               "GET", "/api/calendar/day", params=params)


@mcp.tool(name="calendar.week_schedule")
def calendar_week_schedule(
    date: Optional[str] = None,
    timezone: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
  params = {"date": date, "timezone": timezone}
  return _call("calendar.week_schedule", {**params, "session_id": session_id},
               "GET", "/api/calendar/week", params=params)


@mcp.tool(name="calendar.create_event")
def calendar_create_event(
    title: str,
    start: str,
    end: str,
    timezone: Optional[str] = None,
    attendees: Optional[List[str]] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
  """Create one event. start/end are ISO datetimes."""
  payload: Dict[str, Any] = {
      "title": title,
      "start": start,
      "end": end,
      "timezone": timezone,
      "attendees": attendees or [],
      "description": description or "",
      "location": location or "",
  }
  return _call("calendar.create_event", {**payload, "session_id": session_id},
               "POST", "/api/calendar/events", payload=payload)


# -------------------------
# Assistant tools
# -------------------------
@mcp.tool(name="agent.chat")
def agent_chat(
    message: str,
    timezone: Optional[str] = None,
    user_name: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
  payload = {"message": message, "timezone": timezone, "user_name": user_name}
  return _call("agent.chat", {**payload, "session_id": session_id},
               "POST", "/api/ai/chat", payload=payload)


@mcp.tool(name="agent.run_workflow")
def agent_run_workflow(
    message: str,
    steps: Optional[List[Dict[str, Any]]] = None,
    user_name: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
  """Run a multi-step workflow. Steps are planned from the message when omitted."""
  payload: Dict[str, Any] = {"message": message, "user_name": user_name}
  if steps:
    payload["steps"] = steps
  return _call("agent.run_workflow", {**payload, "session_id": session_id},
               "POST", "/api/ai/workflow", payload=payload)


@mcp.tool(name="preferences.get")
def preferences_get(session_id: Optional[str] = None) -> Dict[str, Any]:
  return _call("preferences.get", {"session_id": session_id},
               "GET", "/api/user/preferences")


if __name__ == "__main__":
  import uvicorn

  host = os.getenv("MCP_HOST", "0.0.0.0")
  port = int(os.getenv("MCP_PORT", "8001"))
  uvicorn.run(mcp.streamable_http_app(), host=host, port=port)
