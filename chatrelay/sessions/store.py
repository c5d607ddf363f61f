"""Session store — in-memory chat sessions with lifecycle management.

Handles session creation, message appending, delivery-status updates,
correlation recording and eviction.

Concurrency contract:
- One RLock guards the sessions map, the customer counter and the
  correlation index; every mutation is a short critical section
- The lock is never held across provider I/O
- Eviction removes the session and its correlation ids atomically
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Iterator

from chatrelay.errors import SessionNotFound
from chatrelay.sessions.correlation import CorrelationIndex
from chatrelay.sessions.models import (
    ChatSession,
    DeliveryStatus,
    SessionMessage,
    create_session,
)

logger = logging.getLogger(__name__)

RETENTION_SECONDS = 30 * 24 * 3600  # 30 days


class SessionStore:
    """Process-wide session registry, owned by the application and injected.

    Nothing is persisted; a restart loses every session.
    """

    def __init__(self, correlation: CorrelationIndex | None = None):
        self._lock = threading.RLock()
        self._sessions: dict[str, ChatSession] = {}
        self._customer_seq = itertools.count(1)
        self.correlation = correlation if correlation is not None else CorrelationIndex(self._lock)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def create_session(self, now: float | None = None) -> ChatSession:
        """Allocate a fresh, empty session with the next customer id."""
        with self._lock:
            customer_id = f"cust{next(self._customer_seq)}"
            session = create_session(customer_id, now=now)
            while session.session_id in self._sessions:
                session = create_session(customer_id, now=now)
            self._sessions[session.session_id] = session
        logger.info("Session created: %s (customer=%s)", session.session_id[:8], customer_id)
        return session

    def get(self, session_id: str) -> ChatSession | None:
        """Get a session by id. Returns None if unknown or evicted."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.refresh_status()
            return session

    def require(self, session_id: str) -> ChatSession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def evict(self, session_id: str) -> bool:
        """Remove a session together with all of its correlation entries."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            removed = self.correlation.discard_session(session_id)
        logger.info(
            "Session evicted: %s (customer=%s, %d correlation ids)",
            session_id[:8],
            session.customer_id,
            removed,
        )
        return True

    def snapshot(self) -> list[ChatSession]:
        """Point-in-time list of sessions, safe to iterate while others mutate."""
        with self._lock:
            return list(self._sessions.values())

    def __iter__(self) -> Iterator[ChatSession]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    # ── Mutation ─────────────────────────────────────────────────────────

    def touch(self, session_id: str, now: float | None = None) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.touch(now)
            return True

    def append_message(self, session_id: str, message: SessionMessage) -> bool:
        """Append to the session history and record activity.

        Returns False if the session is gone or already has a message with
        the same id (provider redelivery).
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if session.find_message(message.id) is not None:
                return False
            if not message.timestamp:
                message.timestamp = time.time()
            session.messages.append(message)
            session.touch()
            return True

    def find_message(self, session_id: str, message_id: str) -> SessionMessage | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.find_message(message_id) if session else None

    def update_delivery_status(
        self,
        session_id: str,
        message_id: str,
        status: DeliveryStatus,
    ) -> SessionMessage | None:
        """Move a message's delivery status forward.

        Any event for a live session counts as activity. Stale statuses
        (not ahead of the current one) are ignored.

        Returns:
            The updated message, or None if nothing changed
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.touch()
            message = session.find_message(message_id)
            if message is None:
                logger.debug(
                    "Status %s for %s: no message in session %s",
                    status.value,
                    message_id,
                    session_id[:8],
                )
                return None
            if not status.advances_from(message.delivery_status):
                logger.info(
                    "Ignoring stale status %s for %s (currently %s)",
                    status.value,
                    message_id,
                    message.delivery_status.value,
                )
                return None
            message.delivery_status = status
            return message

    # ── Correlation ──────────────────────────────────────────────────────

    def record_correlation(self, session_id: str, provider_message_id: str) -> bool:
        """Tie a provider message id to a live session (idempotent)."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if not self.correlation.record(session_id, provider_message_id):
                return False
            session.correlation_ids.add(provider_message_id)
            return True

    def record_keepalive(self, session_id: str, provider_message_id: str) -> bool:
        """Record a keepalive id, retiring the session's previous one.

        Only the latest keepalive id of a session stays routable.
        """
        with self._lock:
            if not self.record_correlation(session_id, provider_message_id):
                return False
            session = self._sessions[session_id]
            previous = session.keepalive_id
            if previous and previous != provider_message_id:
                self.correlation.discard(session_id, previous)
                session.correlation_ids.discard(previous)
            session.keepalive_id = provider_message_id
            return True

    def resolve(self, provider_message_id: str) -> str | None:
        """Session id for a provider message id, or None.

        The index answers in O(1); a scan of the sessions is the fallback
        for ids that only reached the session's own set.
        """
        with self._lock:
            session_id = self.correlation.resolve(provider_message_id)
            if session_id is not None and session_id in self._sessions:
                return session_id
            for sid, session in self._sessions.items():
                if provider_message_id in session.correlation_ids:
                    logger.warning("Correlation index miss for %s, found by scan", provider_message_id)
                    self.correlation.record(sid, provider_message_id)
                    return sid
            return None

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "sessions": len(self._sessions),
                "active": sum(1 for s in self._sessions.values() if s.is_active),
                "correlations": len(self.correlation),
            }
