"""Shared fixtures for the chat relay test suite."""

from __future__ import annotations

import itertools
import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

from chatrelay.config import RelaySettings
from chatrelay.errors import ProviderError
from chatrelay.events import SessionEventBus
from chatrelay.provider.messages import MessageContent
from chatrelay.serve import create_app
from chatrelay.sessions.store import SessionStore


class FakeProvider:
    """ProviderClient double: records sends, replays scripted outcomes.

    Each scripted outcome is either a message id (str) or an exception to
    raise. With nothing scripted, sends succeed with wamid.1, wamid.2, ...
    """

    def __init__(self) -> None:
        self.sent: list[tuple[MessageContent, str]] = []
        self.outcomes: list[Any] = []
        self.media_urls: dict[str, str] = {}
        self.closed = False
        self._ids = itertools.count(1)

    def script(self, *outcomes: Any) -> None:
        self.outcomes.extend(outcomes)

    async def send(self, content: MessageContent, *, session_id: str = "") -> str:
        self.sent.append((content, session_id))
        outcome = self.outcomes.pop(0) if self.outcomes else f"wamid.{next(self._ids)}"
        if isinstance(outcome, ProviderError):
            raise outcome
        return outcome

    async def fetch_media_url(self, media_id: str) -> str | None:
        return self.media_urls.get(media_id)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(
        _env_file=None,
        api_url="https://graph.example.test/v19.0/123/messages",
        graph_url="https://graph.example.test/v19.0",
        access_token="test-token",
        owner_phone_number="15550001111",
        verify_token="verify-me",
        app_secret="",
    )


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def bus() -> SessionEventBus:
    return SessionEventBus()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def app(settings, provider, store, bus):
    """Relay app with TESTING=1 (no maintenance loop)."""
    os.environ["TESTING"] = "1"
    try:
        yield create_app(settings=settings, client=provider, store=store, bus=bus)
    finally:
        os.environ.pop("TESTING", None)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


def status_payload(message_id: str, status: str) -> dict:
    """Minimal provider envelope carrying one status update."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "statuses": [
                                {
                                    "id": message_id,
                                    "status": status,
                                    "timestamp": "1700000000",
                                    "recipient_id": "15550001111",
                                }
                            ],
                        },
                    }
                ],
            }
        ],
    }


def reply_payload(
    context_id: str | None,
    text: str = "hi back",
    message_id: str = "wamid.in.1",
    sender: str = "15550001111",
) -> dict:
    """Minimal provider envelope carrying one owner text reply."""
    message: dict[str, Any] = {
        "from": sender,
        "id": message_id,
        "timestamp": "1700000100",
        "type": "text",
        "text": {"body": text},
    }
    if context_id is not None:
        message["context"] = {"from": "15559990000", "id": context_id}
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "waba-1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {"messaging_product": "whatsapp", "messages": [message]},
                    }
                ],
            }
        ],
    }


@pytest.fixture
def make_status_payload():
    """Factory for status-update envelopes."""
    return status_payload


@pytest.fixture
def make_reply_payload():
    """Factory for owner-reply envelopes."""
    return reply_payload
