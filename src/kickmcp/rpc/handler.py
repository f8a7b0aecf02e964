"""JSON-RPC 2.0 envelope handling shared by stdio, WebSocket and ``POST /rpc``.

Gateway errors are converted into JSON-RPC error objects here; anything
unexpected becomes ``-32603`` without leaking details to the caller.

Created: 2026-03-08
"""

from __future__ import annotations

import json
import logging
from typing import Any

from kickmcp import __version__
from kickmcp.errors import (
    GatewayError,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    ParseError,
)
from kickmcp.registry.dispatcher import CallerContext, Dispatcher

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "kick-mcp"

_NO_ID = object()


def error_response(request_id: Any, error: GatewayError) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()}


def result_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


class JsonRpcHandler:
    """Parses envelopes, serves reserved methods and forwards the rest."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    async def handle_raw(self, raw: str | bytes, ctx: CallerContext) -> str | None:
        """Handle one serialized message; returns the serialized reply or ``None``."""
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("Unparseable frame from %s", ctx.identity)
            return json.dumps(error_response(None, ParseError("Parse error")))
        reply = await self.handle_payload(payload, ctx)
        if reply is None:
            return None
        return json.dumps(reply, default=str)

    async def handle_payload(self, payload: Any, ctx: CallerContext) -> Any:
        if isinstance(payload, list):
            if not payload:
                return error_response(None, InvalidRequestError("Invalid Request: empty batch"))
            replies = []
            for item in payload:
                reply = await self.handle_message(item, ctx)
                if reply is not None:
                    replies.append(reply)
            return replies or None
        return await self.handle_message(payload, ctx)

    async def handle_message(self, message: Any, ctx: CallerContext) -> dict[str, Any] | None:
        if not isinstance(message, dict):
            return error_response(None, InvalidRequestError("Invalid Request"))

        request_id = message.get("id", _NO_ID)
        is_notification = request_id is _NO_ID
        reply_id = None if is_notification else request_id

        method = message.get("method")
        if (
            message.get("jsonrpc") != "2.0"
            or not isinstance(method, str)
            or not method
            or not isinstance(reply_id, (str, int, float, type(None)))
            or isinstance(reply_id, bool)
        ):
            return error_response(
                reply_id if isinstance(reply_id, (str, int)) else None,
                InvalidRequestError("Invalid Request"),
            )

        try:
            result = await self.call(method, message.get("params"), ctx)
        except GatewayError as exc:
            if is_notification:
                return None
            return error_response(reply_id, exc)
        except Exception:
            logger.error("Unhandled error in %s", method, exc_info=True)
            if is_notification:
                return None
            return error_response(reply_id, InternalError("Internal error"))

        if is_notification:
            return None
        return result_response(reply_id, result)

    async def call(self, method: str, params: Any, ctx: CallerContext) -> Any:
        if method == "initialize":
            return self.initialize(params)
        if method == "ping":
            return {}
        if method.startswith("notifications/"):
            return None
        if method == "tools/list":
            return {"tools": self.dispatcher.registry.tool_schemas()}
        if method == "tools/call":
            return await self.call_tool(params, ctx)
        return await self.dispatcher.dispatch(method, params, ctx)

    def initialize(self, params: Any) -> dict[str, Any]:
        requested = params.get("protocolVersion") if isinstance(params, dict) else None
        return {
            "protocolVersion": requested or PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    async def call_tool(self, params: Any, ctx: CallerContext) -> dict[str, Any]:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise InvalidParamsError("name", "tools/call requires a tool name")
        arguments = params.get("arguments") or {}
        result = await self.dispatcher.dispatch(params["name"], arguments, ctx)
        text = result if isinstance(result, str) else json.dumps(result, default=str)
        return {"content": [{"type": "text", "text": text}], "isError": False}
