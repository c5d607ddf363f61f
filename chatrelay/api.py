"""Visitor-facing HTTP routes.

POST /start-session   -> {sessionId, customerId}
POST /send-message    -> {success, messageId, customerId}
GET  /sessions/{id}/messages -> full history for reconnecting clients
GET  /health
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from pydantic import BaseModel

from chatrelay.config import RelaySettings
from chatrelay.errors import ValidationError
from chatrelay.relay.outbound import OutboundDispatcher
from chatrelay.sessions.store import SessionStore

logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    # Optional so that missing fields answer 400 from our taxonomy, not 422.
    sessionId: str | None = None
    message: str | None = None
    customerId: str | None = None  # accepted for client compatibility, ignored


def register_api_routes(
    app: FastAPI,
    store: SessionStore,
    dispatcher: OutboundDispatcher,
    settings: RelaySettings,
) -> None:
    """Register session routes on the FastAPI app."""

    @app.post("/start-session")
    async def start_session():
        session = store.create_session()
        return {"sessionId": session.session_id, "customerId": session.customer_id}

    @app.post("/send-message")
    async def send_message(body: SendMessageRequest | None = None):
        if body is None or not body.sessionId or not body.message or not body.message.strip():
            raise ValidationError()

        receipt = await dispatcher.send(body.sessionId, body.message)
        return {
            "success": True,
            "messageId": receipt.message_id,
            "customerId": receipt.customer_id,
        }

    @app.get("/sessions/{session_id}/messages")
    async def session_messages(session_id: str):
        return store.require(session_id).to_dict()

    @app.get("/health")
    async def health():
        stats = store.stats()
        return {
            "status": "ok",
            "sessions": stats["sessions"],
            "correlations": stats["correlations"],
            "configured": settings.is_configured,
        }
