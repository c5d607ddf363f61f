"""Correlation index — provider message id -> owning session.

Inbound webhook events reference only the provider id of the original
outbound message (the reply "context"), never the session. Every inbound
event is attributed through this index, so it is global across sessions
and each provider id belongs to exactly one session.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class CorrelationIndex:
    """Global provider-id -> session-id mapping with per-session reverse sets.

    The lock is shared with the SessionStore that owns the index, so that
    eviction of a session and removal of its correlation entries happen
    under one critical section.
    """

    def __init__(self, lock: threading.RLock | None = None):
        self._lock = lock if lock is not None else threading.RLock()
        self._owner: dict[str, str] = {}
        self._by_session: dict[str, set[str]] = {}

    def record(self, session_id: str, provider_message_id: str) -> bool:
        """Map ``provider_message_id`` to ``session_id``.

        Idempotent for the same pair. An id already owned by another session
        is never reassigned.

        Returns:
            True if the mapping now holds, False if the id belongs elsewhere
        """
        if not provider_message_id:
            return False
        with self._lock:
            owner = self._owner.get(provider_message_id)
            if owner is not None and owner != session_id:
                logger.error(
                    "Correlation id %s already owned by session %s, refusing %s",
                    provider_message_id,
                    owner[:8],
                    session_id[:8],
                )
                return False
            self._owner[provider_message_id] = session_id
            self._by_session.setdefault(session_id, set()).add(provider_message_id)
            return True

    def resolve(self, provider_message_id: str) -> str | None:
        """Session id owning ``provider_message_id``, or None."""
        with self._lock:
            return self._owner.get(provider_message_id)

    def ids_for(self, session_id: str) -> set[str]:
        with self._lock:
            return set(self._by_session.get(session_id, ()))

    def discard(self, session_id: str, provider_message_id: str) -> bool:
        """Drop one id, only if ``session_id`` owns it."""
        with self._lock:
            if self._owner.get(provider_message_id) != session_id:
                return False
            del self._owner[provider_message_id]
            ids = self._by_session.get(session_id)
            if ids is not None:
                ids.discard(provider_message_id)
                if not ids:
                    del self._by_session[session_id]
            return True

    def discard_session(self, session_id: str) -> int:
        """Drop every entry owned by ``session_id``. Returns the count removed."""
        with self._lock:
            ids = self._by_session.pop(session_id, set())
            for pid in ids:
                if self._owner.get(pid) == session_id:
                    del self._owner[pid]
            return len(ids)

    def __len__(self) -> int:
        with self._lock:
            return len(self._owner)

    def __contains__(self, provider_message_id: object) -> bool:
        with self._lock:
            return provider_message_id in self._owner
