from __future__ import annotations

import logging
import re
import uuid
from typing import Optional

from ..gmail import EmailGateway
from ..state import PendingDraftStore
from .schemas import ChatResponse, ExecutedAction

logger = logging.getLogger(__name__)

CONFIRMATION_PATTERNS = [
    re.compile(pattern, re.IGNORECASE) for pattern in (
        r"^(yes|yeah|yep|yup|sure|ok|okay|go ahead|do it|send it|looks good|perfect|great"
        r"|sounds good|please|absolutely|definitely|confirmed?)\.?$",
        r"^(yes|yeah|yep),?\s+(please|send|do it|go ahead)",
        r"^send\s*(it|the email|that)?\.?$",
        r"^(that|this)\s*(looks|sounds)\s*(good|great|perfect)",
        r"^(go|proceed|continue|confirm)",
    )
]


def is_confirmation(message: str) -> bool:
  trimmed = (message or "").strip()
  return any(pattern.search(trimmed) for pattern in CONFIRMATION_PATTERNS)


class ConfirmationService:
  """Sends a staged draft once the user explicitly confirms it."""

  def __init__(self, email_gateway: EmailGateway, draft_store: PendingDraftStore) -> None:
    self._email = email_gateway
    self._drafts = draft_store

  async def handle(self, message: str, user_id: Optional[str]) -> Optional[ChatResponse]:
    if not user_id or not is_confirmation(message):
      return None
    draft = self._drafts.get(user_id)
    if draft is None:
      return None

    try:
      await self._email.send_email(user_id, draft.to, draft.subject, draft.body)
    except Exception as exc:
      # the draft stays staged so the user can confirm again
      logger.warning("Sending confirmed draft %s failed: %s", draft.id, exc)
      error = str(exc) or "Unknown error"
      return ChatResponse(
          message=f"  ✗ Failed to complete action\n\nSorry, there was an error: {error}",
          executed_actions=[
              ExecutedAction(id=f"action-failed-{uuid.uuid4().hex[:12]}",
                             type="email",
                             label="Failed to send email",
                             status="failed",
                             detail=error),
          ],
      )

    self._drafts.pop(user_id)
    return ChatResponse(
        message=f"  ✓ Email sent to {draft.to}\n\n**Done!** The email has been sent successfully.",
        executed_actions=[
            ExecutedAction(id=f"action-email-{uuid.uuid4().hex[:12]}",
                           type="email",
                           label=f"Sent email to {draft.to}",
                           status="completed"),
        ],
    )
