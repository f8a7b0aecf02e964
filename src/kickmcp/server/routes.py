# Gateway routes — health, metrics, tool catalog, JSON-RPC over HTTP, OAuth callback.
# Created: 2026-03-11

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request, Response, WebSocket

from kickmcp import __version__
from kickmcp.errors import InvalidParamsError
from kickmcp.registry.dispatcher import CallerContext
from kickmcp.security.rate_limiter import resolve_identity
from kickmcp.server.schemas import (
    AuthCallbackResponse,
    HealthResponse,
    ToolListResponse,
    UpstreamStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header.removeprefix("Bearer ").strip() or None


def client_identity(conn: Request | WebSocket) -> str:
    settings = conn.app.state.gateway.settings
    return resolve_identity(
        conn.client.host if conn.client else None,
        conn.headers,
        source=settings.rate_limit_identity,
        trusted_proxies=settings.trusted_proxies,
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request):
    """Liveness, counters and upstream reachability."""
    gateway = request.app.state.gateway
    upstream = await gateway.check_upstream()
    return HealthResponse(
        status="ok" if upstream["status"] == "ok" else "degraded",
        version=__version__,
        uptime_seconds=round(gateway.metrics.uptime, 1),
        sessions=gateway.sessions.active_count,
        cache_size=gateway.cache.size(),
        methods=len(gateway.registry),
        upstream=UpstreamStatus(**upstream),
    )


@router.get("/metrics", tags=["Health"])
async def metrics(request: Request):
    return request.app.state.gateway.metrics_snapshot()


@router.get("/tools/list", response_model=ToolListResponse, tags=["RPC"])
async def list_tools(request: Request):
    return {"tools": request.app.state.gateway.registry.tool_schemas()}


@router.post("/rpc", tags=["RPC"])
async def rpc(request: Request):
    """JSON-RPC 2.0 over HTTP; single messages and batches."""
    gateway = request.app.state.gateway
    ctx = CallerContext(
        identity=client_identity(request),
        transport="http",
        access_token=bearer_token(request),
    )
    reply = await gateway.rpc.handle_raw(await request.body(), ctx)
    if reply is None:
        return Response(status_code=204)
    return Response(content=reply, media_type="application/json")


@router.get("/auth/callback", response_model=AuthCallbackResponse, tags=["Auth"])
async def auth_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
):
    """OAuth redirect target; completes a login started with ``initiateLogin``."""
    if error:
        raise InvalidParamsError("error", f"Authorization failed: {error}")
    if not code:
        raise InvalidParamsError("code")
    if not state:
        raise InvalidParamsError("state")
    record = await request.app.state.gateway.auth.exchange_code(code, state)
    return AuthCallbackResponse(
        token_type=record.token_type, scope=record.scope, expires_at=record.expires_at
    )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    gateway = websocket.app.state.gateway
    await gateway.sessions.serve(websocket, client_identity(websocket))
