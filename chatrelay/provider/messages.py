"""Message content variants and WhatsApp Cloud API payload rendering.

Content is a tagged variant decided once at the boundary: outbound code
builds a TextContent or TemplateContent, the webhook parser builds
TextContent or MediaContent. Nothing downstream sniffs dict keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from chatrelay.sessions.models import MessageKind

MEDIA_TYPES = ("image", "audio", "video", "document", "sticker")


@dataclass(frozen=True)
class TextContent:
    body: str
    kind: MessageKind = field(default=MessageKind.TEXT, init=False)

    @property
    def summary(self) -> str:
        return self.body


@dataclass(frozen=True)
class TemplateContent:
    """Pre-approved template, the only content allowed outside the window."""
    name: str
    language: str = "en_US"
    parameters: tuple[str, ...] = ()
    kind: MessageKind = field(default=MessageKind.TEMPLATE, init=False)

    @property
    def summary(self) -> str:
        # The last parameter carries the relayed text for customer templates.
        return self.parameters[-1] if self.parameters else f"[template:{self.name}]"


@dataclass(frozen=True)
class MediaContent:
    media_type: str
    media_id: str = ""
    caption: str = ""
    url: str | None = None
    kind: MessageKind = field(default=MessageKind.MEDIA, init=False)

    @property
    def summary(self) -> str:
        return self.caption


MessageContent = Union[TextContent, TemplateContent, MediaContent]


def build_payload(recipient: str, content: MessageContent) -> dict[str, Any]:
    """Render the ``/messages`` request body for ``content``."""
    payload: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": recipient,
    }
    if isinstance(content, TextContent):
        payload["type"] = "text"
        payload["text"] = {"preview_url": False, "body": content.body}
        return payload

    if isinstance(content, TemplateContent):
        template: dict[str, Any] = {
            "name": content.name,
            "language": {"code": content.language},
        }
        if content.parameters:
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": p} for p in content.parameters],
                }
            ]
        payload["type"] = "template"
        payload["template"] = template
        return payload

    raise TypeError(f"Cannot send {type(content).__name__} to the provider")
