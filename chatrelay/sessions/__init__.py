"""Session store and correlation index."""

from chatrelay.sessions.correlation import CorrelationIndex
from chatrelay.sessions.store import SessionStore

__all__ = ["CorrelationIndex", "SessionStore"]
