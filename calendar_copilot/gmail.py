from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from email.message import EmailMessage
from typing import Any, Callable, Dict, List

from googleapiclient.discovery import build

from .gcal import is_google_configured, load_credentials
from .utils import _log_debug

logger = logging.getLogger(__name__)


class EmailSendError(Exception):
  pass


def get_gmail_service(user_id: str):
  if not is_google_configured():
    raise RuntimeError("Gmail is not configured.")
  return build("gmail", "v1", credentials=load_credentials(user_id),
               cache_discovery=False)


def encode_message(to: str, subject: str, body: str) -> str:
  message = EmailMessage()
  message["To"] = to
  message["Subject"] = subject
  message.set_content(body)
  return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


class EmailGateway:

  async def send_email(self, user_id: str, to: str, subject: str, body: str) -> str:
    raise NotImplementedError


class GmailGateway(EmailGateway):

  def __init__(self, service_factory: Callable[[str], Any] = get_gmail_service) -> None:
    self._service_factory = service_factory

  def _send(self, user_id: str, to: str, subject: str, body: str) -> Dict[str, Any]:
    service = self._service_factory(user_id)
    return service.users().messages().send(
        userId="me", body={"raw": encode_message(to, subject, body)}).execute()

  async def send_email(self, user_id: str, to: str, subject: str, body: str) -> str:
    if not to or "@" not in to:
      raise EmailSendError(f"Invalid recipient: {to!r}")
    try:
      response = await asyncio.to_thread(self._send, user_id, to, subject, body)
    except Exception as exc:
      logger.warning("Gmail send failed: %s", exc)
      raise EmailSendError(str(exc)) from exc
    _log_debug(f"[GMAIL] sent message {response.get('id')}")
    return response.get("id") or ""


class InMemoryEmailGateway(EmailGateway):
  """Records messages instead of sending them."""

  def __init__(self) -> None:
    self.sent: List[Dict[str, str]] = []

  async def send_email(self, user_id: str, to: str, subject: str, body: str) -> str:
    if not to or "@" not in to:
      raise EmailSendError(f"Invalid recipient: {to!r}")
    message_id = uuid.uuid4().hex
    self.sent.append({
        "id": message_id,
        "user_id": user_id,
        "to": to,
        "subject": subject,
        "body": body,
    })
    return message_id
