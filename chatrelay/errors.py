"""Relay error taxonomy.

Surfaced errors carry the HTTP status the API layer answers with.
Internal errors (window expiry, orphaned events) never reach a client.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for every error the relay raises on purpose."""

    status_code = 500
    public_message = "Internal relay error"

    def __init__(self, message: str = "", details: Any = None):
        super().__init__(message or self.public_message)
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": str(self)}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigError(RelayError):
    """Invalid configuration value."""


class ValidationError(RelayError):
    """Missing or malformed request fields."""

    status_code = 400
    public_message = "Missing required fields"


class SessionNotFound(RelayError):
    """Session id is unknown (never created or already evicted)."""

    status_code = 404
    public_message = "Session not found"

    def __init__(self, session_id: str = ""):
        super().__init__(self.public_message)
        self.session_id = session_id


class DeliveryFailed(RelayError):
    """The provider did not accept the message."""

    status_code = 500
    public_message = "Failed to deliver message"


class ProviderError(RelayError):
    """Raw, classified failure of a provider call.

    Converted to DeliveryFailed by the dispatcher; never surfaced as-is.
    """

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        code: int | None = None,
        details: Any = None,
        timeout: bool = False,
    ):
        super().__init__(message, details=details)
        self.http_status = http_status
        self.code = code
        self.timeout = timeout


class WindowExpiredError(ProviderError):
    """The 24-hour customer service window is closed for free-form messages."""


class OrphanedEvent(RelayError):
    """Webhook event whose correlation id maps to no live session."""

    def __init__(self, provider_message_id: str):
        super().__init__(f"No session for provider message {provider_message_id}")
        self.provider_message_id = provider_message_id
