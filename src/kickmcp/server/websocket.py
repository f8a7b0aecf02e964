"""
WebSocket session manager.
Created: 2026-03-09

Each connection gets a session id (sent as the first frame), a keepalive
task and an idle deadline. Frames on one connection are handled one at a
time, so replies come back in request order.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from kickmcp.errors import ParseError
from kickmcp.metrics import Metrics
from kickmcp.registry.dispatcher import CallerContext
from kickmcp.rpc.handler import JsonRpcHandler, error_response

logger = logging.getLogger(__name__)

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013


class SessionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Session:
    id: str
    websocket: WebSocket
    identity: str
    state: SessionState = SessionState.CONNECTING
    created_at: float = field(default_factory=time.time)
    last_ping_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    keepalive: asyncio.Task | None = None


class SessionManager:
    """Owns the table of live WebSocket sessions."""

    def __init__(
        self,
        handler: JsonRpcHandler,
        ping_interval: float = 30.0,
        idle_timeout: float = 300.0,
        metrics: Metrics | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.handler = handler
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout
        self.metrics = metrics or Metrics()
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self.accepting = True

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # -- connection lifecycle ------------------------------------------------

    async def serve(self, websocket: WebSocket, identity: str) -> None:
        """Run one connection from accept to teardown."""
        if not self.accepting:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return

        now = self._clock()
        session = Session(
            id=uuid.uuid4().hex,
            websocket=websocket,
            identity=identity,
            created_at=now,
            last_ping_at=now,
            last_activity_at=now,
        )
        self._sessions[session.id] = session
        self.metrics.sessions_opened += 1

        try:
            await websocket.accept()
            session.state = SessionState.OPEN
            await websocket.send_json({"type": "session", "sessionId": session.id})
            session.keepalive = asyncio.create_task(
                self._keepalive(session), name=f"ws-keepalive:{session.id[:8]}"
            )
            logger.info("WebSocket session %s opened for %s", session.id[:8], identity)
            await self._receive_loop(session)
        except WebSocketDisconnect:
            pass
        finally:
            await self.close(session)

    async def _receive_loop(self, session: Session) -> None:
        ws = session.websocket
        ctx = CallerContext(identity=session.identity, transport="websocket", enforce_rate_limit=True)
        while session.state is SessionState.OPEN:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect" or session.state is not SessionState.OPEN:
                return
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is None:
                continue
            session.last_activity_at = self._clock()
            reply = await self.handle_frame(session, raw, ctx)
            if reply is not None:
                await ws.send_text(json.dumps(reply, default=str))

    async def handle_frame(self, session: Session, raw: str, ctx: CallerContext) -> Any:
        """Process one inbound frame; returns the reply object or ``None``."""
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Malformed frame on session %s", session.id[:8])
            return error_response(None, ParseError("Parse error"))

        if isinstance(payload, dict) and "jsonrpc" not in payload:
            kind = payload.get("type")
            if kind == "ping":
                return {"type": "pong", "timestamp": int(self._clock() * 1000)}
            if kind == "pong":
                session.last_ping_at = self._clock()
                return None

        return await self.handler.handle_payload(payload, ctx)

    async def _keepalive(self, session: Session) -> None:
        ws = session.websocket
        while session.state is SessionState.OPEN:
            await asyncio.sleep(self.ping_interval)
            if session.state is not SessionState.OPEN:
                return
            now = self._clock()
            if now - session.last_activity_at > self.idle_timeout:
                logger.info("WebSocket session %s idle, closing", session.id[:8])
                await self.close(session, CLOSE_GOING_AWAY, "Session timeout")
                return
            try:
                await ws.send_json({"type": "ping", "timestamp": int(now * 1000)})
                session.last_ping_at = now
            except (RuntimeError, WebSocketDisconnect):
                await self.close(session, CLOSE_GOING_AWAY)
                return

    async def close(self, session: Session, code: int = CLOSE_NORMAL, reason: str = "") -> bool:
        """Tear a session down. Returns False if it was already closing or closed."""
        if session.state in (SessionState.CLOSING, SessionState.CLOSED):
            return False
        session.state = SessionState.CLOSING
        current = asyncio.current_task()

        keepalive, session.keepalive = session.keepalive, None
        if keepalive is not None and keepalive is not current:
            keepalive.cancel()

        ws = session.websocket
        if (
            ws.application_state == WebSocketState.CONNECTED
            and ws.client_state == WebSocketState.CONNECTED
        ):
            try:
                await ws.close(code=code, reason=reason or None)
            except (RuntimeError, WebSocketDisconnect):
                logger.debug("Socket for session %s already gone", session.id[:8])

        session.state = SessionState.CLOSED
        self._sessions.pop(session.id, None)
        self.metrics.sessions_closed += 1
        logger.info("WebSocket session %s closed (%d)", session.id[:8], code)
        return True

    async def close_all(self, code: int = CLOSE_GOING_AWAY) -> int:
        """Stop accepting connections and close every open session."""
        self.accepting = False
        sessions = list(self._sessions.values())
        for session in sessions:
            await self.close(session, code, "Server shutting down")
        return len(sessions)
