# Tests for JSON-RPC envelope handling and the stdio transport.
# Created: 2026-03-14

from __future__ import annotations

import io
import json

from kickmcp.registry.dispatcher import CallerContext
from kickmcp.rpc.stdio import run_stdio

CTX = CallerContext()


async def _call(gateway, payload):
    raw = payload if isinstance(payload, str) else json.dumps(payload)
    reply = await gateway.rpc.handle_raw(raw, CTX)
    return None if reply is None else json.loads(reply)


class TestEnvelope:
    async def test_parse_error(self, gateway):
        reply = await _call(gateway, "{not json")
        assert reply == {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}

    async def test_invalid_request(self, gateway):
        reply = await _call(gateway, {"id": 1, "method": "ping"})
        assert reply["error"]["code"] == -32600
        assert reply["id"] == 1

    async def test_non_object(self, gateway):
        reply = await _call(gateway, "42")
        assert reply["error"]["code"] == -32600

    async def test_method_not_found(self, gateway):
        reply = await _call(gateway, {"jsonrpc": "2.0", "id": 7, "method": "doesNotExist"})
        assert reply["id"] == 7
        assert reply["error"]["code"] == -32601

    async def test_invalid_params(self, gateway):
        reply = await _call(
            gateway, {"jsonrpc": "2.0", "id": 1, "method": "getChannelInfo", "params": {}}
        )
        assert reply["error"]["code"] == -32602
        assert reply["error"]["data"] == {"field": "channel_id"}

    async def test_auth_required(self, gateway):
        reply = await _call(gateway, {"jsonrpc": "2.0", "id": 1, "method": "getUserProfile"})
        assert reply["error"]["code"] == -32010

    async def test_upstream_error(self, gateway, kick_api):
        kick_api.add("GET", "/channels/9", {"message": "gone"}, status=404)
        reply = await _call(
            gateway,
            {"jsonrpc": "2.0", "id": 1, "method": "getChannelInfo", "params": {"channel_id": "9"}},
        )
        assert reply["error"]["code"] == -32000
        assert reply["error"]["data"]["status"] == 404
        assert reply["error"]["data"]["error_code"] == "resource_not_found"

    async def test_result(self, gateway, kick_api):
        reply = await _call(gateway, {"jsonrpc": "2.0", "id": "a", "method": "getCategories"})
        assert reply == {
            "jsonrpc": "2.0",
            "id": "a",
            "result": {"data": [{"id": 1, "name": "Just Chatting"}]},
        }

    async def test_notification_gets_no_reply(self, gateway):
        assert await _call(gateway, {"jsonrpc": "2.0", "method": "getCategories"}) is None
        assert await _call(gateway, {"jsonrpc": "2.0", "method": "nope"}) is None

    async def test_batch(self, gateway):
        reply = await _call(
            gateway,
            [
                {"jsonrpc": "2.0", "id": 1, "method": "ping"},
                {"jsonrpc": "2.0", "method": "notifications/initialized"},
                {"jsonrpc": "2.0", "id": 2, "method": "nope"},
            ],
        )
        assert [r["id"] for r in reply] == [1, 2]
        assert reply[0]["result"] == {}
        assert reply[1]["error"]["code"] == -32601

    async def test_empty_batch(self, gateway):
        reply = await _call(gateway, "[]")
        assert reply["error"]["code"] == -32600


class TestReservedMethods:
    async def test_initialize(self, gateway):
        reply = await _call(
            gateway,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "initialize",
                "params": {"protocolVersion": "2024-11-05", "capabilities": {}},
            },
        )
        result = reply["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert "tools" in result["capabilities"]
        assert result["serverInfo"]["name"] == "kick-mcp"

    async def test_tools_list(self, gateway):
        reply = await _call(gateway, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        tools = reply["result"]["tools"]
        names = {t["name"] for t in tools}
        assert {"getChannelInfo", "sendChatMessage", "initiateLogin"} <= names
        assert all(t["inputSchema"]["type"] == "object" for t in tools)

    async def test_tools_call(self, gateway):
        reply = await _call(
            gateway,
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "tools/call",
                "params": {"name": "getCategories", "arguments": {}},
            },
        )
        content = reply["result"]["content"]
        assert content[0]["type"] == "text"
        assert json.loads(content[0]["text"])["data"][0]["name"] == "Just Chatting"

    async def test_tools_call_without_name(self, gateway):
        reply = await _call(
            gateway, {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {}}
        )
        assert reply["error"]["code"] == -32602


class TestStdio:
    async def test_one_reply_line_per_request(self, gateway):
        reader = io.StringIO(
            "\n".join(
                [
                    json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"}),
                    "",
                    "garbage",
                    json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
                    json.dumps({"jsonrpc": "2.0", "id": 2, "method": "getCategories"}),
                ]
            )
            + "\n"
        )
        writer = io.StringIO()

        handled = await run_stdio(gateway.rpc, reader=reader, writer=writer)

        lines = writer.getvalue().splitlines()
        assert handled == 4
        assert len(lines) == 3
        replies = [json.loads(line) for line in lines]
        assert replies[0]["id"] == 1
        assert replies[1]["error"]["code"] == -32700
        assert replies[2]["id"] == 2

    async def test_stored_token_used_locally(self, gateway, kick_api, operator_token):
        kick_api.add("GET", "/users/me", {"data": {"id": 1}})
        reader = io.StringIO(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "getUserProfile"}) + "\n")
        writer = io.StringIO()

        await run_stdio(gateway.rpc, reader=reader, writer=writer)

        assert json.loads(writer.getvalue())["result"] == {"data": {"id": 1}}
        assert kick_api.calls[-1].headers["authorization"] == "Bearer operator"
