# Shared fixtures: settings bound to tmp_path and a fake Kick API.
# Created: 2026-03-12

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from kickmcp.auth.models import TokenRecord
from kickmcp.config import Settings
from kickmcp.gateway import Gateway

API_ROOT = "/public/v1"
TEST_KEY = "ab" * 32


class FakeKickApi:
    """Routes ``(METHOD, path)`` to canned responses and records every call."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status, body)

    def add_handler(self, method: str, path: str, fn: Callable[[httpx.Request], httpx.Response]):
        self.routes[(method.upper(), path)] = fn

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.calls if r.method == method and self._path(r) == path)

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(API_ROOT):] if path.startswith(API_ROOT) else path

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, self._path(request)))
        if route is None:
            return httpx.Response(404, json={"message": "Not found"})
        if callable(route):
            return route(request)
        status, body = route
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, content=json.dumps(body), headers={"content-type": "application/json"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        token_store_path=tmp_path / "tokens.enc",
        token_encryption_key=TEST_KEY,
        client_id="test-client",
        client_secret="test-secret",
        redirect_uri="https://localhost:3001/auth/callback",
        cache_check_period=3600,
        rate_limit_window=60,
        rate_limit_max_requests=100,
        auth_flow_sweep_interval=3600,
    )


@pytest.fixture
def kick_api() -> FakeKickApi:
    api = FakeKickApi()
    api.add("GET", "/categories", {"data": [{"id": 1, "name": "Just Chatting"}]})
    return api


@pytest.fixture
def gateway(settings, kick_api) -> Gateway:
    return Gateway(settings, http_transport=kick_api.transport())


@pytest.fixture
async def operator_token(gateway) -> str:
    """Persist a logged-in operator token in the gateway's store."""
    await gateway.token_store.load()
    await gateway.token_store.save_tokens(TokenRecord(access_token="operator"))
    return "operator"
