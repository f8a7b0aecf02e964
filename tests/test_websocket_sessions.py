# Tests for WebSocket sessions: handshake, framing, ordering, keepalive, teardown.
# Created: 2026-03-14

from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect, WebSocketState

from kickmcp.gateway import Gateway
from kickmcp.server.app import create_app
from kickmcp.server.websocket import Session, SessionManager, SessionState


@pytest.fixture
def client(gateway):
    with TestClient(create_app(gateway)) as c:
        yield c


class TestHandshake:
    def test_first_frame_is_session_id(self, client, gateway):
        with client.websocket_connect("/ws") as ws:
            first = ws.receive_json()
            assert first["type"] == "session"
            assert gateway.sessions.get(first["sessionId"]) is not None
            assert gateway.sessions.active_count == 1

    def test_session_removed_after_disconnect(self, client, gateway):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"jsonrpc": "2.0", "id": 1, "method": "ping"})
            ws.receive_json()
        assert gateway.sessions.active_count == 0
        assert gateway.metrics.sessions_closed == 1


class TestFraming:
    def test_malformed_frame_keeps_connection_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("{this is not json")
            err = ws.receive_json()
            assert err["error"]["code"] == -32700
            assert err["id"] is None

            ws.send_json({"jsonrpc": "2.0", "id": 2, "method": "ping"})
            assert ws.receive_json() == {"jsonrpc": "2.0", "id": 2, "result": {}}

    def test_unknown_method(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"jsonrpc": "2.0", "id": 5, "method": "noSuchMethod"})
            reply = ws.receive_json()
            assert reply["id"] == 5
            assert reply["error"]["code"] == -32601

    def test_replies_in_request_order(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"jsonrpc": "2.0", "id": 1, "method": "getCategories"})
            ws.send_json({"jsonrpc": "2.0", "id": 2, "method": "nope"})
            ws.send_json({"jsonrpc": "2.0", "id": 3, "method": "tools/list"})
            ids = [ws.receive_json()["id"] for _ in range(3)]
            assert ids == [1, 2, 3]

    def test_app_level_ping(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            pong = ws.receive_json()
            assert pong["type"] == "pong"
            assert isinstance(pong["timestamp"], int)

    def test_rate_limited_over_websocket(self, client, gateway):
        gateway.rate_limiter.max_requests = 1
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"jsonrpc": "2.0", "id": 1, "method": "getCategories"})
            ws.send_json({"jsonrpc": "2.0", "id": 2, "method": "getCategories"})
            assert "result" in ws.receive_json()
            assert ws.receive_json()["error"]["code"] == -32029


class TestKeepalive:
    def test_idle_session_closed_with_going_away(self, settings, kick_api):
        settings.ws_ping_interval = 0.05
        settings.ws_idle_timeout = 0.12
        gateway = Gateway(settings, http_transport=kick_api.transport())

        with TestClient(create_app(gateway)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    for _ in range(50):
                        frame = ws.receive_json()
                        assert frame["type"] == "ping"
                assert exc_info.value.code == 1001


class FakeWebSocket:
    def __init__(self):
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED
        self.closed_with: list[int] = []

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed_with.append(code)
        self.application_state = WebSocketState.DISCONNECTED


class TestTeardown:
    async def test_close_is_idempotent(self, gateway):
        manager = SessionManager(gateway.rpc)
        ws = FakeWebSocket()
        session = Session(id="s1", websocket=ws, identity="t", state=SessionState.OPEN)
        session.keepalive = asyncio.create_task(asyncio.sleep(60))
        manager._sessions["s1"] = session

        keepalive = session.keepalive
        assert await manager.close(session, 1001) is True
        assert await manager.close(session, 1001) is False
        await asyncio.gather(keepalive, return_exceptions=True)

        assert keepalive.cancelled()
        assert ws.closed_with == [1001]
        assert session.state is SessionState.CLOSED
        assert manager.active_count == 0
        assert manager.metrics.sessions_closed == 1

    async def test_close_all_stops_accepting(self, gateway):
        manager = SessionManager(gateway.rpc)
        for i in range(3):
            manager._sessions[str(i)] = Session(
                id=str(i), websocket=FakeWebSocket(), identity="t", state=SessionState.OPEN
            )
        assert await manager.close_all() == 3
        assert manager.active_count == 0
        assert manager.accepting is False

    async def test_handle_frame_pong_records_liveness(self, gateway):
        times = iter([100.0, 200.0])
        manager = SessionManager(gateway.rpc, clock=lambda: next(times))
        session = Session(id="s", websocket=FakeWebSocket(), identity="t", last_ping_at=0)
        reply = await manager.handle_frame(session, json.dumps({"type": "pong"}), None)
        assert reply is None
        assert session.last_ping_at == 100.0


class TestStoredCredentialsStayLocal:
    def test_auth_method_without_bearer_rejected(self, client, kick_api, operator_token):
        kick_api.add("POST", "/channels/1/chat/messages", {"data": {"sent": True}})
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(
                {
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "sendChatMessage",
                    "params": {"channel_id": "1", "message": "hi"},
                }
            )
            reply = ws.receive_json()
        assert reply["error"]["code"] == -32010
        assert kick_api.count("POST", "/channels/1/chat/messages") == 0

    def test_explicit_token_param_accepted(self, client, kick_api, operator_token):
        kick_api.add("GET", "/users/me", {"data": {"id": 3}})
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(
                {
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "getUserProfile",
                    "params": {"access_token": "mine"},
                }
            )
            assert ws.receive_json()["result"] == {"data": {"id": 3}}
        assert kick_api.calls[-1].headers["authorization"] == "Bearer mine"
