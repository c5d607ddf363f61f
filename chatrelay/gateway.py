"""Realtime gateway — WebSocket pass-through for session updates.

Client frames:
    {"type": "join", "sessionId": "..."}
    {"type": "leave", "sessionId": "..."}

Server frames:
    {"type": "joined", "sessionId": "..."}
    {"type": "error", "error": "..."}
    {"type": "update", "event": "update-<sessionId>", "sessionId": "...",
     "kind": "reply" | "status", "message": {...}}

Updates are incremental (one message each); clients merge them into their
history by message id.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from chatrelay.events import SessionEventBus
from chatrelay.sessions.store import SessionStore

logger = logging.getLogger(__name__)


class GatewayConnection:
    """One WebSocket client and the session topics it has joined."""

    def __init__(self, websocket: WebSocket, bus: SessionEventBus, store: SessionStore):
        self._ws = websocket
        self._bus = bus
        self._store = store
        self._forwarders: dict[str, tuple[str, asyncio.Task]] = {}

    @property
    def joined(self) -> set[str]:
        return set(self._forwarders)

    async def handle_frame(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            await self._send_error("Frames must be JSON objects")
            return
        frame_type = frame.get("type")
        session_id = frame.get("sessionId")
        if frame_type not in ("join", "leave") or not isinstance(session_id, str) or not session_id:
            await self._send_error("Expected {type: join|leave, sessionId}")
            return

        if frame_type == "join":
            await self.join(session_id)
        else:
            self.leave(session_id)

    async def join(self, session_id: str) -> None:
        if session_id in self._forwarders:
            await self._ws.send_json({"type": "joined", "sessionId": session_id})
            return
        if session_id not in self._store:
            await self._send_error("Session not found")
            return

        sub_id, queue = self._bus.subscribe(session_id)
        task = asyncio.create_task(self._forward(queue))
        task.add_done_callback(_log_forwarder_exit)
        self._forwarders[session_id] = (sub_id, task)
        logger.info("Client joined session %s", session_id[:8])
        await self._ws.send_json({"type": "joined", "sessionId": session_id})

    def leave(self, session_id: str) -> None:
        entry = self._forwarders.pop(session_id, None)
        if entry is None:
            return
        sub_id, task = entry
        task.cancel()
        self._bus.unsubscribe(session_id, sub_id)

    def close(self) -> None:
        for session_id in list(self._forwarders):
            self.leave(session_id)

    async def _forward(self, queue: asyncio.Queue) -> None:
        while True:
            update = await queue.get()
            try:
                await self._ws.send_json(update.to_frame())
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.info("Stopped forwarding %s, socket gone: %r", update.session_id[:8], e)
                return

    async def _send_error(self, message: str) -> None:
        await self._ws.send_json({"type": "error", "error": message})


def _log_forwarder_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Update forwarder crashed", exc_info=exc)


def register_gateway_routes(app: FastAPI, bus: SessionEventBus, store: SessionStore) -> None:
    """Register the realtime WebSocket endpoint."""

    @app.websocket("/ws")
    async def realtime(websocket: WebSocket):
        await websocket.accept()
        connection = GatewayConnection(websocket, bus, store)
        client = websocket.client
        logger.info("WS connected: %s", client.host if client else "?")
        try:
            while True:
                try:
                    frame = await websocket.receive_json()
                except ValueError:
                    await websocket.send_json({"type": "error", "error": "Invalid JSON"})
                    continue
                except KeyError:
                    # Binary frames carry "bytes" instead of "text".
                    await websocket.send_json({"type": "error", "error": "Expected a JSON text frame"})
                    continue
                await connection.handle_frame(frame)
        except WebSocketDisconnect as e:
            logger.info("WS disconnected (code=%s)", e.code)
        finally:
            connection.close()

    logger.info("Realtime route registered: /ws")
