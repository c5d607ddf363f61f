"""Webhook envelope decoding — provider JSON into typed inbound events.

Decoding happens once, here. Downstream code receives StatusEvent or
ReplyEvent values and never looks at the raw payload.

Envelope shape (WhatsApp Cloud API):
    {"object": "whatsapp_business_account",
     "entry": [{"changes": [{"value": {"statuses": [...], "messages": [...]}}]}]}

Every status and message item is decoded on its own; a malformed item (or
entry, or change) is logged and counted without affecting its siblings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from chatrelay.errors import ValidationError
from chatrelay.provider.messages import MEDIA_TYPES, MediaContent, TextContent
from chatrelay.sessions.models import DeliveryStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    """Delivery-status change of an outbound message."""
    provider_message_id: str
    status: DeliveryStatus
    timestamp: float = 0.0
    error_codes: tuple[int, ...] = ()


@dataclass(frozen=True)
class ReplyEvent:
    """Inbound message from the owner's side."""
    provider_message_id: str
    content: Union[TextContent, MediaContent]
    sender_id: str = ""
    in_reply_to: str | None = None
    timestamp: float = 0.0


InboundEvent = Union[StatusEvent, ReplyEvent]


@dataclass
class ParsedWebhook:
    events: list[InboundEvent] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0


def parse_webhook(payload: Any) -> ParsedWebhook:
    """Decode a webhook body into inbound events.

    Raises:
        ValidationError: payload is not an envelope at all
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object")

    result = ParsedWebhook()
    entries = payload.get("entry")
    if entries is None or not payload.get("object"):
        logger.info("Webhook without object/entry, nothing to do")
        return result
    if not isinstance(entries, list):
        raise ValidationError("Webhook 'entry' must be a list")

    for entry in entries:
        if not isinstance(entry, dict):
            result.failed += 1
            logger.warning("Skipping malformed webhook entry: %r", type(entry).__name__)
            continue
        _parse_entry(entry, result)
    return result


def _parse_entry(entry: dict[str, Any], result: ParsedWebhook) -> None:
    changes = entry.get("changes") or []
    if not isinstance(changes, list):
        result.failed += 1
        logger.warning("Skipping webhook entry with non-list changes")
        return

    for change in changes:
        value = (change.get("value") or {}) if isinstance(change, dict) else None
        if not isinstance(value, dict):
            result.failed += 1
            logger.warning("Skipping malformed webhook change")
            continue

        _collect(value.get("statuses"), _parse_status, result)
        _collect(value.get("messages"), _parse_message, result)


def _collect(items: Any, parse: Callable[[dict[str, Any]], Any], result: ParsedWebhook) -> None:
    if not items:
        return
    if not isinstance(items, list):
        result.failed += 1
        logger.warning("Expected a list of webhook items, got %s", type(items).__name__)
        return

    for raw in items:
        try:
            event = parse(raw)
        except (KeyError, TypeError, ValueError, AttributeError):
            result.failed += 1
            logger.exception("Skipping malformed webhook item")
            continue
        if event is None:
            result.skipped += 1
        else:
            result.events.append(event)


def _parse_status(raw: dict[str, Any]) -> StatusEvent | None:
    message_id = raw.get("id")
    status = DeliveryStatus.parse(raw.get("status", ""))
    if not message_id or status is None:
        logger.info("Ignoring status %r for %r", raw.get("status"), message_id)
        return None
    codes = tuple(
        int(err["code"]) for err in raw.get("errors") or [] if isinstance(err, dict) and "code" in err
    )
    return StatusEvent(
        provider_message_id=message_id,
        status=status,
        timestamp=_timestamp(raw.get("timestamp")),
        error_codes=codes,
    )


def _parse_message(raw: dict[str, Any]) -> ReplyEvent | None:
    msg_type = raw.get("type", "")
    content = _parse_content(msg_type, raw)
    if content is None:
        logger.info("Unsupported inbound message type %r (%s)", msg_type, raw.get("id"))
        return None

    context = raw.get("context") or {}
    return ReplyEvent(
        provider_message_id=raw.get("id", ""),
        content=content,
        sender_id=raw.get("from", ""),
        in_reply_to=context.get("id") or None,
        timestamp=_timestamp(raw.get("timestamp")),
    )


def _parse_content(msg_type: str, raw: dict[str, Any]) -> TextContent | MediaContent | None:
    if msg_type == "text":
        return TextContent(raw["text"]["body"])
    if msg_type == "button":
        return TextContent(raw["button"].get("text", ""))
    if msg_type == "interactive":
        interactive = raw["interactive"]
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return TextContent(reply.get("title", ""))
    if msg_type in MEDIA_TYPES:
        media = raw.get(msg_type) or {}
        return MediaContent(
            media_type=msg_type,
            media_id=media.get("id", ""),
            caption=media.get("caption", ""),
        )
    return None


def _timestamp(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
