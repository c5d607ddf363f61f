"""Inbound reconciler — applies webhook events to chat sessions.

Every event is attributed through the correlation index:
- StatusEvent: the status's own message id is the correlation id
- ReplyEvent: the reply context id (the outbound message being answered)

Unresolvable events are orphans (evicted session, stale reply, message
sent by someone else) and are logged and dropped. Each applied change
publishes one incremental SessionUpdated on the event bus.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable

from chatrelay.errors import OrphanedEvent
from chatrelay.events import SessionEventBus, SessionUpdated
from chatrelay.provider.client import ProviderClient
from chatrelay.provider.messages import MediaContent
from chatrelay.sessions.models import (
    DeliveryStatus,
    MediaAttachment,
    Sender,
    SessionMessage,
)
from chatrelay.sessions.store import SessionStore
from chatrelay.webhooks.parser import InboundEvent, ReplyEvent, StatusEvent

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    applied: int = 0
    orphaned: int = 0
    duplicates: int = 0
    ignored: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "applied": self.applied,
            "orphaned": self.orphaned,
            "duplicates": self.duplicates,
            "ignored": self.ignored,
            "failed": self.failed,
        }


class InboundReconciler:
    """Resolves inbound events to sessions and publishes the updates."""

    def __init__(
        self,
        store: SessionStore,
        bus: SessionEventBus,
        client: ProviderClient | None = None,
    ):
        self._store = store
        self._bus = bus
        self._client = client

    async def handle(self, event: InboundEvent) -> SessionUpdated | None:
        """Apply one event.

        Returns:
            The published update, or None when nothing visible changed

        Raises:
            OrphanedEvent: no live session owns the event's correlation id
        """
        if isinstance(event, StatusEvent):
            return self._apply_status(event)
        return await self._apply_reply(event)

    async def handle_batch(self, events: Iterable[InboundEvent]) -> ReconcileReport:
        """Apply events in delivery order; one failure never stops the rest."""
        report = ReconcileReport()
        for event in events:
            try:
                update = await self.handle(event)
            except OrphanedEvent as e:
                report.orphaned += 1
                logger.warning("Orphaned %s dropped: %s", type(event).__name__, e)
                continue
            except Exception:
                report.failed += 1
                logger.exception("Failed to reconcile %s", type(event).__name__)
                continue

            if update is not None:
                report.applied += 1
            elif isinstance(event, ReplyEvent):
                report.duplicates += 1
            else:
                report.ignored += 1
        return report

    def _apply_status(self, event: StatusEvent) -> SessionUpdated | None:
        session_id = self._store.resolve(event.provider_message_id)
        if session_id is None:
            raise OrphanedEvent(event.provider_message_id)

        if event.status == DeliveryStatus.FAILED and event.error_codes:
            logger.warning(
                "Provider reports %s failed (codes=%s)",
                event.provider_message_id,
                ",".join(str(c) for c in event.error_codes),
            )

        message = self._store.update_delivery_status(
            session_id, event.provider_message_id, event.status
        )
        if message is None:
            return None

        session = self._store.get(session_id)
        if session is None:
            return None
        logger.info(
            "Status of %s -> %s (customer=%s)",
            event.provider_message_id,
            event.status.value,
            session.customer_id,
        )
        return self._publish(session_id, "status", message.to_dict(session))

    async def _apply_reply(self, event: ReplyEvent) -> SessionUpdated | None:
        if not event.in_reply_to:
            raise OrphanedEvent(event.provider_message_id or "<no context>")

        session_id = self._store.resolve(event.in_reply_to)
        if session_id is None:
            raise OrphanedEvent(event.in_reply_to)

        if event.provider_message_id and self._store.find_message(
            session_id, event.provider_message_id
        ):
            logger.info("Duplicate reply %s ignored", event.provider_message_id)
            return None

        media = None
        if isinstance(event.content, MediaContent):
            media = MediaAttachment(
                media_type=event.content.media_type,
                media_id=event.content.media_id,
                caption=event.content.caption,
                url=await self._media_url(event.content.media_id),
            )

        reply = SessionMessage(
            id=event.provider_message_id or f"reply-{time.time_ns()}",
            sender=Sender.OWNER,
            content=event.content.summary,
            timestamp=event.timestamp or time.time(),
            delivery_status=DeliveryStatus.DELIVERED,
            kind=event.content.kind,
            media=media,
            in_reply_to=event.in_reply_to,
            sender_id=event.sender_id,
        )
        # Media lookup awaited; the session may have gone or the reply landed twice.
        if not self._store.append_message(session_id, reply):
            if self._store.get(session_id) is None:
                raise OrphanedEvent(event.in_reply_to)
            return None

        # Replies are themselves threadable: the owner may reply to a reply.
        if event.provider_message_id:
            self._store.record_correlation(session_id, event.provider_message_id)

        session = self._store.get(session_id)
        if session is None:
            raise OrphanedEvent(event.in_reply_to)
        logger.info(
            "Relayed owner reply %s to session %s (customer=%s)",
            reply.id,
            session_id[:8],
            session.customer_id,
        )
        return self._publish(session_id, "reply", reply.to_dict(session))

    async def _media_url(self, media_id: str) -> str | None:
        if self._client is None or not media_id:
            return None
        try:
            return await self._client.fetch_media_url(media_id)
        except Exception:
            logger.warning("Media URL lookup failed for %s", media_id, exc_info=True)
            return None

    def _publish(self, session_id: str, kind: str, message: dict) -> SessionUpdated:
        update = SessionUpdated(session_id=session_id, kind=kind, message=message)
        delivered = self._bus.publish(update)
        logger.debug("Update %s for %s reached %d subscriber(s)", kind, session_id[:8], delivered)
        return update
