from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..llm import Extractor
from .normalizer import extract_email_addresses
from .prompts import SYSTEM_PROMPT, build_email_draft_prompt
from .schemas import EmailDraft, EmailRecipient, FailedDraft

logger = logging.getLogger(__name__)

_SUBJECT_RULES = [
    (("meeting", "schedule"), "Meeting Request"),
    (("follow up", "followup"), "Following Up"),
    (("introduction", "introduce"), "Introduction"),
    (("question", "ask"), "Quick Question"),
    (("thank",), "Thank You"),
    (("update", "project"), "Project Update"),
]


def generate_subject_line(purpose: str) -> str:
  lowered = purpose.lower()
  for markers, subject in _SUBJECT_RULES:
    if any(marker in lowered for marker in markers):
      return subject
  words = " ".join(purpose.split(" ")[:5])
  return words[:1].upper() + words[1:]


def extract_recipients(message: str, params: Dict[str, Any]) -> List[EmailRecipient]:
  """Recipients named in step params, plus any address written in the message."""
  recipients: List[EmailRecipient] = []
  raw = params.get("recipients") if isinstance(params, dict) else None
  if isinstance(raw, list):
    for item in raw:
      if isinstance(item, str):
        if "@" in item:
          recipients.append(EmailRecipient(email=item))
        else:
          recipients.append(EmailRecipient(email="", name=item))
      elif isinstance(item, dict) and "email" in item:
        email = item.get("email")
        name = item.get("name")
        recipients.append(EmailRecipient(
            email=email if isinstance(email, str) else "",
            name=name if isinstance(name, str) else None,
        ))

  for email in extract_email_addresses(message):
    if not any(r.email == email for r in recipients):
      recipients.append(EmailRecipient(email=email))
  return recipients


class EmailDraftService:
  """Drafts email bodies through the extractor. Never sends anything."""

  def __init__(self, extractor: Extractor) -> None:
    self._extractor = extractor

  async def generate_draft(self,
                           user_name: str,
                           recipient: str,
                           purpose: str,
                           recipient_name: Optional[str] = None,
                           tone: str = "neutral",
                           specific_content: Optional[str] = None) -> str:
    prompt = build_email_draft_prompt(user_name, recipient, purpose,
                                      recipient_name=recipient_name,
                                      tone=tone,
                                      specific_content=specific_content)
    body = await self._extractor.reply([
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ], max_tokens=512)
    if not body:
      raise ValueError("No draft returned for this recipient")
    return body

  async def generate_batch(self,
                           user_name: str,
                           recipients: List[EmailRecipient],
                           purpose: str,
                           tone: str = "neutral",
                           specific_content: Optional[str] = None
                           ) -> Tuple[List[EmailDraft], List[FailedDraft]]:
    subject = generate_subject_line(purpose)

    async def _one(recipient: EmailRecipient):
      try:
        body = await self.generate_draft(user_name, recipient.email, purpose,
                                         recipient_name=recipient.name,
                                         tone=tone,
                                         specific_content=specific_content)
      except Exception as exc:
        logger.warning("Draft for %s failed: %s", recipient.email or recipient.name, exc)
        return FailedDraft(email=recipient.email, error=str(exc) or "Failed to generate draft")
      return EmailDraft(email=recipient.email, name=recipient.name, subject=subject, body=body)

    outcomes = await asyncio.gather(*(_one(recipient) for recipient in recipients))
    drafts = [o for o in outcomes if isinstance(o, EmailDraft)]
    failed = [o for o in outcomes if isinstance(o, FailedDraft)]
    return drafts, failed
