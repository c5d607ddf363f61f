"""Outbound dispatcher — relays a visitor's message to the owner.

Policy:
1. Unknown session -> SessionNotFound
2. Free-form text send to the owner
3. Success -> append customer message, record correlation, return the id
4. Window expired -> send the customer template (customer id + text),
   then retry the free-form send exactly once
5. Any other provider failure -> DeliveryFailed; only last_activity changes

Correlation ids are recorded before send() returns, so a fast webhook
reply can never beat its own bookkeeping.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from chatrelay.config import RelaySettings
from chatrelay.errors import DeliveryFailed, ProviderError, WindowExpiredError
from chatrelay.provider.client import ProviderClient
from chatrelay.provider.messages import MessageContent, TemplateContent, TextContent
from chatrelay.sessions.models import DeliveryStatus, Sender, SessionMessage
from chatrelay.sessions.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class SendReceipt:
    """Outcome of a successful relay."""
    message_id: str
    customer_id: str
    template_message_id: str | None = None
    retried: bool = False

    @property
    def used_template(self) -> bool:
        return self.template_message_id is not None


class OutboundDispatcher:
    """Sends visitor messages to the owner, working around window expiry."""

    def __init__(
        self,
        store: SessionStore,
        client: ProviderClient,
        settings: RelaySettings,
    ):
        self._store = store
        self._client = client
        self._settings = settings

    async def send(self, session_id: str, content: str) -> SendReceipt:
        session = self._store.require(session_id)
        customer_id = session.customer_id

        try:
            message_id = await self._deliver(session_id, TextContent(content))
            return SendReceipt(message_id=message_id, customer_id=customer_id)
        except WindowExpiredError as e:
            logger.info(
                "Window expired for session %s (code=%s), sending template",
                session_id[:8],
                e.code,
            )
        except ProviderError as e:
            raise self._failed(session_id, e) from e

        template = TemplateContent(
            name=self._settings.message_template,
            language=self._settings.template_language,
            parameters=(customer_id, content),
        )
        try:
            template_id = await self._deliver(session_id, template)
        except ProviderError as e:
            raise self._failed(session_id, e) from e

        # One retry only; a second window failure is surfaced, not looped on.
        try:
            message_id = await self._deliver(session_id, TextContent(content))
        except ProviderError as e:
            logger.warning(
                "Retry after template failed for session %s: %s",
                session_id[:8],
                e,
            )
            raise self._failed(session_id, e) from e

        return SendReceipt(
            message_id=message_id,
            customer_id=customer_id,
            template_message_id=template_id,
            retried=True,
        )

    async def _deliver(self, session_id: str, content: MessageContent) -> str:
        """Send one message and record it against the session."""
        message_id = await self._client.send(content, session_id=session_id)

        message = SessionMessage(
            id=message_id,
            sender=Sender.CUSTOMER,
            content=content.summary,
            timestamp=time.time(),
            delivery_status=DeliveryStatus.SENT,
            kind=content.kind,
        )
        self._store.record_correlation(session_id, message_id)
        if not self._store.append_message(session_id, message):
            # Evicted while the send was in flight; the provider still has it.
            logger.warning(
                "Session %s vanished during send of %s",
                session_id[:8],
                message_id,
            )
        return message_id

    def _failed(self, session_id: str, error: ProviderError) -> DeliveryFailed:
        self._store.touch(session_id)
        logger.error(
            "Delivery failed for session %s: %s (http=%s code=%s timeout=%s)",
            session_id[:8],
            error,
            error.http_status,
            error.code,
            error.timeout,
        )
        return DeliveryFailed(str(error), details=error.details)
