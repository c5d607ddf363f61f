"""WhatsApp Cloud API client.

Sends text and template messages to the owner and resolves media ids
into download URLs. Every call has a finite timeout.

Error contract:
- Provider error codes 131047 / 470 (window closed) -> WindowExpiredError
- Any other non-2xx, malformed response, timeout or transport error
  -> ProviderError
- The access token is sent as a bearer header and never logged
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from chatrelay.config import RelaySettings
from chatrelay.errors import ProviderError, WindowExpiredError
from chatrelay.provider.messages import (
    MessageContent,
    TemplateContent,
    TextContent,
    build_payload,
)

logger = logging.getLogger(__name__)

# "Re-engagement message": more than 24 hours since the customer last replied.
WINDOW_EXPIRED_CODES = frozenset({131047, 470})


@runtime_checkable
class ProviderClient(Protocol):
    """The capability the relay components need from the messaging provider."""

    async def send(self, content: MessageContent, *, session_id: str = "") -> str:
        """Send ``content`` to the owner. Returns the provider message id."""
        ...

    async def fetch_media_url(self, media_id: str) -> str | None:
        """Resolve a provider media id into a URL."""
        ...

    async def aclose(self) -> None:
        ...


class WhatsAppClient:
    """ProviderClient for the WhatsApp Cloud API (Graph API ``/messages``)."""

    def __init__(
        self,
        settings: RelaySettings,
        http: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=settings.request_timeout)

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    def _headers(self, session_id: str = "") -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._settings.access_token}",
            "Content-Type": "application/json",
        }
        if session_id:
            headers["X-Debug-Session"] = session_id
        return headers

    async def send(self, content: MessageContent, *, session_id: str = "") -> str:
        if not self.is_configured:
            raise ProviderError("WhatsApp provider not configured")

        payload = build_payload(self._settings.owner_phone_number, content)
        try:
            response = await self._http.post(
                self._settings.api_url,
                json=payload,
                headers=self._headers(session_id),
                timeout=self._settings.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                "WhatsApp API timed out",
                details=type(e).__name__,
                timeout=True,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                "WhatsApp API unreachable",
                details=f"{type(e).__name__}: {e}",
            ) from e

        data = _json_or_none(response)
        if response.is_error:
            raise _classify_error(response.status_code, data, response.text)

        try:
            message_id = data["messages"][0]["id"]
        except (TypeError, KeyError, IndexError):
            raise ProviderError(
                "WhatsApp API response carried no message id",
                http_status=response.status_code,
                details=data,
            ) from None

        logger.info(
            "WhatsApp %s message accepted: %s (session=%s)",
            content.kind.value,
            message_id,
            session_id[:8] or "-",
        )
        return message_id

    async def send_text(self, body: str, *, session_id: str = "") -> str:
        return await self.send(TextContent(body), session_id=session_id)

    async def send_template(
        self,
        name: str,
        parameters: tuple[str, ...] = (),
        *,
        session_id: str = "",
    ) -> str:
        content = TemplateContent(
            name=name,
            language=self._settings.template_language,
            parameters=parameters,
        )
        return await self.send(content, session_id=session_id)

    async def fetch_media_url(self, media_id: str) -> str | None:
        """Look up the download URL of an inbound media object."""
        if not media_id or not self._settings.access_token:
            return None
        try:
            response = await self._http.get(
                f"{self._settings.graph_url}/{media_id}",
                headers=self._headers(),
                timeout=self._settings.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Media lookup failed for %s: %s", media_id, type(e).__name__)
            return None
        data = _json_or_none(response) or {}
        return data.get("url")

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _classify_error(status: int, data: Any, text: str) -> ProviderError:
    """Map a failed Graph API response onto the provider error classes."""
    error = data.get("error", {}) if isinstance(data, dict) else {}
    if not isinstance(error, dict):
        error = {}
    code = error.get("code")
    message = error.get("message") or f"WhatsApp API error: HTTP {status}"
    details = data if data is not None else text[:500]

    if code in WINDOW_EXPIRED_CODES:
        return WindowExpiredError(message, http_status=status, code=code, details=details)
    return ProviderError(message, http_status=status, code=code, details=details)
