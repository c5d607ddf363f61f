"""Tests for the realtime WebSocket gateway."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.events import SessionUpdated
from chatrelay.gateway import GatewayConnection


class FakeWebSocket:
    def __init__(self) -> None:
        self.frames: list[dict] = []
        self.fail_with: Exception | None = None

    async def send_json(self, data) -> None:
        if self.fail_with is not None and data.get("type") == "update":
            raise self.fail_with
        self.frames.append(data)


class TestGatewayConnection:
    """Frame handling without a network."""

    @pytest.fixture
    def ws(self):
        return FakeWebSocket()

    @pytest.fixture
    def connection(self, ws, bus, store):
        return GatewayConnection(ws, bus, store)

    @pytest.mark.asyncio
    async def test_join_subscribes(self, connection, ws, bus, store):
        session = store.create_session()

        await connection.handle_frame({"type": "join", "sessionId": session.session_id})

        assert ws.frames == [{"type": "joined", "sessionId": session.session_id}]
        assert bus.subscriber_count(session.session_id) == 1
        connection.close()

    @pytest.mark.asyncio
    async def test_join_twice_keeps_one_subscription(self, connection, ws, bus, store):
        session = store.create_session()
        await connection.join(session.session_id)
        await connection.join(session.session_id)

        assert len(ws.frames) == 2
        assert bus.subscriber_count(session.session_id) == 1
        connection.close()

    @pytest.mark.asyncio
    async def test_join_unknown_session(self, connection, ws, bus):
        await connection.handle_frame({"type": "join", "sessionId": "nonexistent"})
        assert ws.frames == [{"type": "error", "error": "Session not found"}]
        assert bus.subscriber_count("nonexistent") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "frame",
        [["join"], {"type": "subscribe", "sessionId": "x"}, {"type": "join"}, {"type": "join", "sessionId": 5}],
    )
    async def test_bad_frames(self, connection, ws, frame):
        await connection.handle_frame(frame)
        assert ws.frames[0]["type"] == "error"

    @pytest.mark.asyncio
    async def test_updates_forwarded(self, connection, ws, bus, store):
        session = store.create_session()
        await connection.join(session.session_id)

        bus.publish(SessionUpdated(session.session_id, "reply", {"id": "wamid.in.1"}))
        for _ in range(50):
            if len(ws.frames) > 1:
                break
            await asyncio.sleep(0.01)

        assert ws.frames[1]["event"] == f"update-{session.session_id}"
        assert ws.frames[1]["message"] == {"id": "wamid.in.1"}
        connection.close()

    @pytest.mark.asyncio
    async def test_closed_socket_stops_forwarder(self, connection, ws, bus, store):
        session = store.create_session()
        await connection.join(session.session_id)
        _, task = connection._forwarders[session.session_id]
        ws.fail_with = RuntimeError("Cannot call \"send\" once a close message has been sent.")

        bus.publish(SessionUpdated(session.session_id, "reply", {"id": "wamid.in.1"}))
        await asyncio.wait_for(task, timeout=1)

        assert task.exception() is None
        connection.close()

    @pytest.mark.asyncio
    async def test_unexpected_send_failure_is_logged(self, connection, ws, bus, store, caplog):
        session = store.create_session()
        await connection.join(session.session_id)
        _, task = connection._forwarders[session.session_id]
        ws.fail_with = ValueError("not serializable")

        bus.publish(SessionUpdated(session.session_id, "reply", {"id": "wamid.in.1"}))
        with pytest.raises(ValueError):
            await asyncio.wait_for(task, timeout=1)
        await asyncio.sleep(0)

        assert "Update forwarder crashed" in caplog.text
        connection.close()

    @pytest.mark.asyncio
    async def test_leave_unsubscribes(self, connection, bus, store):
        session = store.create_session()
        await connection.join(session.session_id)

        await connection.handle_frame({"type": "leave", "sessionId": session.session_id})

        assert bus.subscriber_count(session.session_id) == 0
        assert connection.joined == set()


class TestRealtimeEndpoint:
    """/ws through the app."""

    def test_join_and_receive_reply(self, client, provider, make_reply_payload):
        session_id = client.post("/start-session").json()["sessionId"]
        provider.script("M1")
        client.post("/send-message", json={"sessionId": session_id, "message": "hello"})

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join", "sessionId": session_id})
            assert ws.receive_json() == {"type": "joined", "sessionId": session_id}

            client.post("/webhook", json=make_reply_payload("M1", text="hi back"))
            frame = ws.receive_json()

        assert frame["type"] == "update"
        assert frame["event"] == f"update-{session_id}"
        assert frame["kind"] == "reply"
        assert frame["message"]["message"] == "hi back"
        assert frame["message"]["inReplyTo"] == "M1"

    def test_join_unknown_session(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "join", "sessionId": "nonexistent"})
            assert ws.receive_json() == {"type": "error", "error": "Session not found"}

    def test_invalid_json(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("{not json")
            assert ws.receive_json()["error"] == "Invalid JSON"

    def test_binary_frame(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00\x01")
            assert ws.receive_json()["error"] == "Expected a JSON text frame"
            ws.send_json({"type": "join", "sessionId": "nonexistent"})
            assert ws.receive_json()["type"] == "error"
