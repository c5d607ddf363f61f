"""Chat session data models.

Contract:
- session_id is the access token for a visitor (UUID, not guessable)
- customer_id is the short display id the owner sees (cust1, cust2, ...)
- messages only grow; whole-session eviction is the only removal
- last_activity never moves backwards
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

IDLE_AFTER_SECONDS = 1800  # 30 minutes
WINDOW_SECONDS = 24 * 3600  # provider customer service window


class SessionStatus(str, Enum):
    """Chat session lifecycle states (informational)."""
    ACTIVE = "active"
    IDLE = "idle"        # No activity for > IDLE_AFTER_SECONDS
    EXPIRED = "expired"  # Provider window lapsed


class Sender(str, Enum):
    CUSTOMER = "customer"
    OWNER = "owner"


class DeliveryStatus(str, Enum):
    """Provider delivery states, totally ordered by ``rank``."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def advances_from(self, current: DeliveryStatus) -> bool:
        """True if moving from ``current`` to this status is forward progress."""
        return self.rank > current.rank

    @classmethod
    def parse(cls, value: str) -> DeliveryStatus | None:
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            return None


_STATUS_RANK = {
    DeliveryStatus.SENT: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.READ: 2,
    DeliveryStatus.FAILED: 3,
}


class MessageKind(str, Enum):
    TEXT = "text"
    TEMPLATE = "template"
    MEDIA = "media"


@dataclass
class MediaAttachment:
    """Non-text payload attached to a message."""
    media_type: str  # image, audio, video, document, sticker
    url: str | None = None
    media_id: str = ""
    caption: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.media_type, "url": self.url, "caption": self.caption or None}


@dataclass
class SessionMessage:
    """A message in the session conversation history."""
    id: str
    sender: Sender
    content: str
    timestamp: float = 0.0
    delivery_status: DeliveryStatus = DeliveryStatus.SENT
    kind: MessageKind = MessageKind.TEXT
    media: MediaAttachment | None = None
    in_reply_to: str | None = None
    sender_id: str = ""  # provider address of the originator (owner replies)

    def to_dict(self, session: ChatSession | None = None) -> dict[str, Any]:
        """Browser-facing representation."""
        data: dict[str, Any] = {
            "id": self.id,
            "sender": self.sender.value,
            "message": self.content,
            "media": self.media.to_dict() if self.media else None,
            "timestamp": _iso(self.timestamp),
            "status": self.delivery_status.value,
            "inReplyTo": self.in_reply_to,
            "isTemplate": self.kind == MessageKind.TEMPLATE,
        }
        if session is not None:
            data["customerId"] = session.customer_id
            data["sessionId"] = session.session_id
        return data


@dataclass
class ChatSession:
    """One visitor's conversation with the owner."""
    session_id: str = ""
    customer_id: str = ""
    status: SessionStatus = SessionStatus.ACTIVE
    messages: list[SessionMessage] = field(default_factory=list)
    correlation_ids: set[str] = field(default_factory=set)
    keepalive_id: str | None = None  # latest keepalive template, the only one kept routable
    created_at: float = 0.0
    last_activity: float = 0.0

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def inactive_for(self, now: float | None = None) -> float:
        """Seconds since the last event that belonged to this session."""
        return max(0.0, (time.time() if now is None else now) - self.last_activity)

    def touch(self, now: float | None = None) -> None:
        """Record activity. ``last_activity`` never decreases."""
        now = time.time() if now is None else now
        if now > self.last_activity:
            self.last_activity = now
        self.status = SessionStatus.ACTIVE

    def refresh_status(self, now: float | None = None) -> SessionStatus:
        idle = self.inactive_for(now)
        if idle >= WINDOW_SECONDS:
            self.status = SessionStatus.EXPIRED
        elif idle >= IDLE_AFTER_SECONDS:
            self.status = SessionStatus.IDLE
        else:
            self.status = SessionStatus.ACTIVE
        return self.status

    def find_message(self, message_id: str) -> SessionMessage | None:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "customerId": self.customer_id,
            "status": self.status.value,
            "createdAt": _iso(self.created_at),
            "lastActivity": _iso(self.last_activity),
            "messages": [m.to_dict(self) for m in self.messages],
        }


def create_session(customer_id: str, now: float | None = None) -> ChatSession:
    """Create a new, empty chat session.

    Args:
        customer_id: Display id allocated by the store
        now: Creation time (defaults to the current time)

    Returns:
        New ChatSession with a generated session_id
    """
    now = time.time() if now is None else now
    return ChatSession(
        session_id=str(uuid.uuid4()),
        customer_id=customer_id,
        status=SessionStatus.ACTIVE,
        created_at=now,
        last_activity=now,
    )


def new_message_id() -> str:
    """Locally generated id for messages the provider never numbered."""
    return f"local-{uuid.uuid4().hex}"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
