# Tests for the HTTP surface: gateway routes, REST routes, rate-limit headers, errors.
# Created: 2026-03-14

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from kickmcp.server.app import create_app


@pytest.fixture
def client(gateway):
    with TestClient(create_app(gateway)) as c:
        yield c


BEARER = {"Authorization": "Bearer user-token"}


class TestGatewayRoutes:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["upstream"]["status"] == "ok"
        assert data["methods"] > 80

    def test_health_degraded_when_upstream_fails(self, client, kick_api):
        kick_api.add("GET", "/categories", {"message": "down"}, status=503)
        data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["upstream"]["status"] == "unreachable"

    def test_rate_limit_headers_on_every_response(self, client):
        for path in ("/health", "/tools/list", "/metrics", "/does-not-exist"):
            resp = client.get(path)
            assert "X-RateLimit-Limit" in resp.headers, path
            assert "X-RateLimit-Remaining" in resp.headers, path
            assert "X-RateLimit-Reset" in resp.headers, path

    def test_tools_list(self, client):
        tools = client.get("/tools/list").json()["tools"]
        assert any(t["name"] == "getChannelInfo" for t in tools)

    def test_metrics(self, client):
        client.get("/health")
        data = client.get("/metrics").json()
        assert data["http"]["requests"] >= 1
        assert "cache" in data
        assert data["sessions_active"] == 0

    def test_unknown_route_uses_error_body(self, client):
        resp = client.get("/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"]["status"] == 404


class TestRateLimiting:
    def test_too_many_requests(self, client, gateway):
        gateway.rate_limiter.max_requests = 2
        client.get("/tools/list")
        client.get("/tools/list")
        resp = client.get("/tools/list")

        assert resp.status_code == 429
        assert resp.json()["error"]["message"] == "Too Many Requests"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in resp.headers
        assert gateway.metrics.rate_limited == 1

    def test_limits_are_per_path(self, client, gateway):
        gateway.rate_limiter.max_requests = 1
        assert client.get("/tools/list").status_code == 200
        assert client.get("/metrics").status_code == 200


class TestRpcEndpoint:
    def test_single_call(self, client):
        resp = client.post("/rpc", json={"jsonrpc": "2.0", "id": 1, "method": "getCategories"})
        assert resp.status_code == 200
        assert resp.json()["result"]["data"][0]["id"] == 1

    def test_bearer_forwarded(self, client, kick_api):
        kick_api.add("GET", "/users/me", {"data": {"id": 9}})
        resp = client.post(
            "/rpc",
            json={"jsonrpc": "2.0", "id": 1, "method": "getUserProfile"},
            headers=BEARER,
        )
        assert resp.json()["result"] == {"data": {"id": 9}}
        assert kick_api.calls[-1].headers["authorization"] == "Bearer user-token"

    def test_parse_error(self, client):
        resp = client.post("/rpc", content="{oops", headers={"content-type": "application/json"})
        assert resp.json()["error"]["code"] == -32700

    def test_notification_no_content(self, client):
        resp = client.post("/rpc", json={"jsonrpc": "2.0", "method": "ping"})
        assert resp.status_code == 204


class TestRestRoutes:
    def test_public_get(self, client, kick_api):
        kick_api.add("GET", "/channels/123", {"data": {"id": 123}})
        assert client.get("/api/channels/123").json() == {"data": {"id": 123}}
        assert client.get("/api/channels/123").json() == {"data": {"id": 123}}
        assert kick_api.count("GET", "/channels/123") == 1

    def test_auth_route_requires_bearer(self, client, kick_api):
        resp = client.get("/api/users/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == -32010
        assert kick_api.count("GET", "/users/me") == 0

    def test_static_path_beats_placeholder(self, client, kick_api):
        kick_api.add("GET", "/livestreams/categories", {"data": ["cat"]})
        resp = client.get("/api/livestreams/categories", headers=BEARER)
        assert resp.json() == {"data": ["cat"]}

    def test_post_body_and_upstream_error(self, client, kick_api):
        kick_api.add("POST", "/channels/1/chat/messages", {"message": "Unauthorized"}, status=401)
        resp = client.post("/api/channels/1/chat/messages", json={"message": "hi"}, headers=BEARER)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == -32000
        assert json.loads(kick_api.calls[-1].content) == {"message": "hi"}

    def test_patch_body_becomes_data(self, client, kick_api):
        kick_api.add("PATCH", "/channels/1", {"ok": True})
        resp = client.patch("/api/channels/1", json={"title": "New"}, headers=BEARER)
        assert resp.json() == {"ok": True}
        assert json.loads(kick_api.calls[-1].content) == {"title": "New"}

    def test_missing_body_field(self, client):
        resp = client.post("/api/channels/1/chat/messages", json={}, headers=BEARER)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == -32602

    def test_query_params_forwarded(self, client, kick_api):
        client.get("/api/categories?limit=3")
        assert kick_api.calls[-1].url.params["limit"] == "3"


class TestAuthCallback:
    @pytest.fixture(autouse=True)
    def token_endpoint(self, kick_api):
        kick_api.add(
            "POST",
            "/oauth/token",
            {"access_token": "fresh", "refresh_token": "r", "expires_in": 3600, "scope": "user:read"},
        )

    def test_completes_login(self, client, gateway):
        state = gateway.auth.initiate_login()["state"]
        resp = client.get("/auth/callback", params={"code": "c", "state": state})
        assert resp.status_code == 200
        assert resp.json()["status"] == "authenticated"
        assert gateway.token_store.get_access_token() == "fresh"

    def test_replayed_state(self, client, gateway):
        state = gateway.auth.initiate_login()["state"]
        client.get("/auth/callback", params={"code": "c", "state": state})
        resp = client.get("/auth/callback", params={"code": "c", "state": state})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == -32002

    def test_missing_code(self, client):
        resp = client.get("/auth/callback", params={"state": "s"})
        assert resp.status_code == 400

    def test_provider_error(self, client):
        resp = client.get("/auth/callback", params={"error": "access_denied"})
        assert resp.status_code == 400
        assert "access_denied" in resp.json()["error"]["message"]


class TestStoredCredentialsStayLocal:
    def test_rpc_without_bearer_rejected(self, client, kick_api, operator_token):
        kick_api.add("POST", "/channels/1/chat/messages", {"data": {"sent": True}})
        resp = client.post(
            "/rpc",
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "sendChatMessage",
                "params": {"channel_id": "1", "message": "hi"},
            },
        )
        assert resp.json()["error"]["code"] == -32010
        assert kick_api.count("POST", "/channels/1/chat/messages") == 0

    def test_rpc_bearer_used_instead_of_store(self, client, kick_api, operator_token):
        kick_api.add("GET", "/users/me", {"data": {"id": 9}})
        client.post(
            "/rpc",
            json={"jsonrpc": "2.0", "id": 1, "method": "getUserProfile"},
            headers=BEARER,
        )
        assert kick_api.calls[-1].headers["authorization"] == "Bearer user-token"

    def test_rest_without_bearer_rejected(self, client, kick_api, operator_token):
        resp = client.get("/api/users/me")
        assert resp.status_code == 401
        assert kick_api.count("GET", "/users/me") == 0

    def test_revoke_with_foreign_bearer_keeps_store(self, client, gateway, kick_api, operator_token):
        kick_api.add("POST", "/oauth/revoke")
        resp = client.post(
            "/rpc",
            json={"jsonrpc": "2.0", "id": 1, "method": "revokeToken"},
            headers={"Authorization": "Bearer someone-else"},
        )
        assert resp.json()["result"] == {"revoked": True, "stored_cleared": False}
        assert kick_api.calls[-1].url.params["token"] == "someone-else"
        assert gateway.token_store.get_access_token() == "operator"

    def test_refresh_of_stored_token_rejected(self, client, kick_api, operator_token):
        resp = client.post("/rpc", json={"jsonrpc": "2.0", "id": 1, "method": "refreshAccessToken"})
        assert resp.json()["error"]["code"] == -32010
        assert kick_api.calls == []
