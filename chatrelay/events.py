"""Session update events and their per-topic fan-out.

The reconciler produces SessionUpdated values and publishes them on the
bus; the realtime gateway subscribes per session topic and forwards them
to WebSocket clients. Neither side knows about the other.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_QUEUE_MAXSIZE = 500


@dataclass(frozen=True)
class SessionUpdated:
    """One incremental change to a session's history."""
    session_id: str
    kind: str  # "reply" | "status"
    message: dict[str, Any] = field(default_factory=dict)

    @property
    def topic(self) -> str:
        return self.session_id

    @property
    def event_name(self) -> str:
        return f"update-{self.session_id}"

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "update",
            "event": self.event_name,
            "sessionId": self.session_id,
            "kind": self.kind,
            "message": self.message,
        }


class SessionEventBus:
    """Fans out SessionUpdated events to the subscribers of each topic."""

    def __init__(self, maxsize: int = _QUEUE_MAXSIZE):
        self._maxsize = maxsize
        self._topics: dict[str, dict[str, asyncio.Queue]] = {}
        self._published = 0

    def subscribe(self, topic: str) -> tuple[str, asyncio.Queue]:
        """Register a subscriber on ``topic``. Returns (subscriber_id, queue)."""
        sub_id = uuid.uuid4().hex[:8]
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._topics.setdefault(topic, {})[sub_id] = queue
        logger.info("Subscriber %s joined topic %s", sub_id, topic[:8])
        return sub_id, queue

    def unsubscribe(self, topic: str, sub_id: str) -> None:
        subscribers = self._topics.get(topic)
        if not subscribers:
            return
        subscribers.pop(sub_id, None)
        if not subscribers:
            del self._topics[topic]
        logger.info("Subscriber %s left topic %s", sub_id, topic[:8])

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, {}))

    @property
    def published(self) -> int:
        return self._published

    def publish(self, event: SessionUpdated) -> int:
        """Deliver to every subscriber of the event's topic (non-blocking).

        Returns the number of subscribers reached.
        """
        self._published += 1
        subscribers = list(self._topics.get(event.topic, {}).items())
        for sub_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event to make room
                try:
                    queue.get_nowait()
                    queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    logger.warning("Dropped update for subscriber %s", sub_id)
        return len(subscribers)
