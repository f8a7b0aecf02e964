"""The composed gateway service.

``Gateway`` owns every piece of shared state (cache, rate-limit windows,
token store, session table, method registry) and is handed to each
transport. Nothing in the package keeps module-level singletons.

Created: 2026-03-10
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from kickmcp.auth.flow import AuthFlowController
from kickmcp.cache import CacheManager
from kickmcp.config import Settings, get_settings
from kickmcp.errors import GatewayError
from kickmcp.http_client import HttpClient
from kickmcp.lifecycle import PeriodicTask, ShutdownRegistry
from kickmcp.metrics import Metrics
from kickmcp.registry.catalog import DESCRIPTORS, MethodDescriptor
from kickmcp.registry.dispatcher import (
    Dispatcher,
    LocalOperation,
    MethodRegistry,
    UpstreamOperation,
)
from kickmcp.rpc.handler import JsonRpcHandler
from kickmcp.security.rate_limiter import RateLimiter
from kickmcp.security.token_store import PersistentStore
from kickmcp.server.websocket import SessionManager
from kickmcp.webhooks import WebhookVerifier

logger = logging.getLogger(__name__)

_SCOPES_SCHEMA = {
    "scopes": {
        "type": "array",
        "items": {"type": "string"},
        "description": "OAuth scopes; defaults to the configured scopes",
    }
}


def _scopes(params: dict[str, Any]) -> list[str] | None:
    value = params.get("scopes")
    if isinstance(value, str):
        return value.split() or None
    if isinstance(value, list):
        return [str(s) for s in value] or None
    return None


class Gateway:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        token_store: PersistentStore | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        descriptors: tuple[MethodDescriptor, ...] = DESCRIPTORS,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.metrics = Metrics()
        self.cache = CacheManager(s.cache_ttl, s.cache_check_period, s.cacheable_patterns)
        self.rate_limiter = RateLimiter(s.rate_limit_max_requests, s.rate_limit_window)
        self.http = HttpClient(s.api_base_url, s.request_timeout, transport=http_transport)
        self.token_store = token_store or PersistentStore.from_settings(s)
        self.auth = AuthFlowController(s, self.http, self.token_store)

        self.registry = MethodRegistry()
        self.dispatcher = Dispatcher(
            self.registry,
            self.token_store,
            self.rate_limiter,
            self.metrics,
            token_provider=self.auth.get_valid_token,
        )
        self.webhooks = WebhookVerifier(lambda: self.dispatcher.dispatch("getPublicKey", {}))
        self.rpc = JsonRpcHandler(self.dispatcher)
        self.sessions = SessionManager(
            self.rpc, s.ws_ping_interval, s.ws_idle_timeout, metrics=self.metrics
        )

        for descriptor in descriptors:
            self.registry.register(UpstreamOperation(descriptor, self.http, self.cache))
        self._register_local_methods()
        self.registry.freeze()

        self._sweeps = [
            PeriodicTask("cache-sweep", s.cache_check_period, self.cache.sweep),
            PeriodicTask("rate-limit-sweep", s.rate_limit_window * 2, self.rate_limiter.sweep),
            PeriodicTask("auth-flow-sweep", s.auth_flow_sweep_interval, self.auth.sweep),
        ]
        self._shutdown = ShutdownRegistry()
        self._shutdown.register("sessions", self.sessions.close_all)
        self._shutdown.register("sweeps", self._cancel_sweeps)
        self._shutdown.register("http-client", self.http.aclose)
        self._started = False
        self._stopped = False

    # -- local methods -------------------------------------------------------

    def _register_local_methods(self) -> None:
        auth = self.auth

        async def initiate_login(params, _token):
            return auth.initiate_login(_scopes(params))

        async def get_oauth_url(params, _token):
            url, flow = auth.oauth_url(_scopes(params))
            return {"url": url, "state": flow.state}

        async def get_access_token(params, _token):
            record = await auth.exchange_code(params["code"], params["state"])
            return record.to_dict()

        async def refresh_access_token(params, _token):
            record = await auth.refresh(params.get("refresh_token"))
            return record.to_dict()

        async def revoke_token(params, token):
            cleared = await auth.revoke(token)
            return {"revoked": True, "stored_cleared": cleared}

        async def get_app_access_token(params, _token):
            return await auth.app_access_token()

        async def verify_webhook_signature(params, _token):
            valid = await self.webhooks.verify(
                params["signature"], params["message_id"], params["timestamp"], params["body"]
            )
            return {"valid": valid}

        for op in (
            LocalOperation(
                "initiateLogin",
                initiate_login,
                description="Start an OAuth login and return the authorization URL",
                properties=_SCOPES_SCHEMA,
            ),
            LocalOperation(
                "getOAuthUrl",
                get_oauth_url,
                description="Build an OAuth authorization URL",
                properties=_SCOPES_SCHEMA,
            ),
            LocalOperation(
                "getAccessToken",
                get_access_token,
                required_params=("code", "state"),
                description="Exchange an authorization code for tokens",
            ),
            LocalOperation(
                "refreshAccessToken",
                refresh_access_token,
                description="Refresh the stored access token",
                properties={"refresh_token": {"type": "string"}},
                stored_fallback="refresh_token",
            ),
            LocalOperation(
                "revokeToken",
                revoke_token,
                requires_auth=True,
                description="Revoke an access token; stored credentials are cleared if it was theirs",
                properties={"access_token": {"type": "string"}},
            ),
            LocalOperation(
                "getAppAccessToken",
                get_app_access_token,
                description="Get an app access token (client credentials)",
            ),
            LocalOperation(
                "verifyWebhookSignature",
                verify_webhook_signature,
                required_params=("signature", "message_id", "timestamp", "body"),
                description="Verify a webhook signature against the platform public key",
            ),
        ):
            self.registry.register(op)

    # -- lifecycle -----------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.token_store.load()
        for task in self._sweeps:
            task.start()
        self._started = True
        logger.info(
            "Gateway started: %d methods, upstream %s", len(self.registry), self.settings.api_base_url
        )

    async def _cancel_sweeps(self) -> None:
        for task in self._sweeps:
            await task.cancel()

    async def shutdown(self) -> None:
        """Stop accepting, close sessions, cancel sweeps, close the HTTP client."""
        if self._stopped:
            return
        self._stopped = True
        await self._shutdown.shutdown_all()
        logger.info("Gateway stopped")

    async def __aenter__(self) -> Gateway:
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()

    # -- status --------------------------------------------------------------

    async def check_upstream(self) -> dict[str, Any]:
        """Probe the platform with a one-item category listing (uncached)."""
        try:
            await self.http.request("GET", "/categories", {"limit": 1})
        except GatewayError as exc:
            return {"status": "unreachable", "error": exc.message}
        return {"status": "ok"}

    def metrics_snapshot(self) -> dict[str, Any]:
        return self.metrics.snapshot(
            cache=self.cache.stats(),
            upstream=self.http.stats(),
            sessions_active=self.sessions.active_count,
            rate_limit_windows=len(self.rate_limiter),
            pending_logins=self.auth.pending_count,
        )
