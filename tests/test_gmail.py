import base64
from email import message_from_bytes
from types import SimpleNamespace

import pytest

from calendar_copilot.gmail import EmailSendError, GmailGateway, InMemoryEmailGateway, encode_message
from tests.conftest import USER_ID


class _Chain:
    """Stands in for users().messages().send(...).execute()."""

    def __init__(self, result):
        self.result = result
        self.sent = []

    def users(self):
        return self

    def messages(self):
        return self

    def send(self, **kwargs):
        self.sent.append(kwargs)
        return SimpleNamespace(execute=lambda: self.result)


def test_encode_message():
    raw = encode_message("ann@example.com", "Agenda", "See you at 10.")
    parsed = message_from_bytes(base64.urlsafe_b64decode(raw))
    assert parsed["To"] == "ann@example.com"
    assert parsed["Subject"] == "Agenda"
    assert parsed.get_payload().strip() == "See you at 10."


@pytest.mark.asyncio
async def test_gmail_gateway_sends_raw_message():
    service = _Chain({"id": "msg-1"})
    gateway = GmailGateway(service_factory=lambda user_id: service)

    assert await gateway.send_email(USER_ID, "ann@example.com", "Hi", "Hello") == "msg-1"
    assert service.sent[0]["userId"] == "me"
    assert "raw" in service.sent[0]["body"]


@pytest.mark.asyncio
async def test_invalid_recipient_is_rejected():
    gateway = InMemoryEmailGateway()
    with pytest.raises(EmailSendError):
        await gateway.send_email(USER_ID, "ann", "Hi", "Hello")
    assert gateway.sent == []
