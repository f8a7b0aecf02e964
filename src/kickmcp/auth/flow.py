# Auth Flow Controller — OAuth 2.1 authorization code + PKCE against Kick.
# Created: 2026-03-07
#
# Pending logins are kept in memory keyed by state. A state is consumed by
# exactly one exchange or dropped by the sweep after the flow timeout.

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
import urllib.parse
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from kickmcp.auth.models import AuthFlowState, TokenRecord
from kickmcp.errors import (
    AuthRequiredError,
    ConfigurationError,
    ExpiredStateError,
    InvalidStateError,
    UpstreamError,
)

if TYPE_CHECKING:
    from kickmcp.config import Settings
    from kickmcp.http_client import HttpClient
    from kickmcp.security.token_store import PersistentStore

logger = logging.getLogger(__name__)


def _token_record(data: Any, user_id: str | None = None) -> TokenRecord:
    """Parse a token endpoint reply; a 200 without ``access_token`` is an upstream fault."""
    if not isinstance(data, dict) or not data.get("access_token"):
        raise UpstreamError(502, data, "Token response missing access_token")
    return TokenRecord.from_token_response(data, user_id=user_id)


def make_pkce_pair() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` using S256."""
    verifier = secrets.token_urlsafe(48)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


class AuthFlowController:
    """Drives login, code exchange, refresh and revocation.

    Tokens obtained here are persisted to the :class:`PersistentStore`, which
    the dispatcher reads when a caller doesn't pass ``access_token``.
    """

    def __init__(
        self,
        settings: Settings,
        http: HttpClient,
        store: PersistentStore,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.http = http
        self.store = store
        self.timeout = settings.auth_flow_timeout
        self._clock = clock
        self._pending: dict[str, AuthFlowState] = {}

    # -- endpoints -----------------------------------------------------------

    @property
    def authorize_url(self) -> str:
        return f"{self.settings.oauth_base_url.rstrip('/')}/oauth/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.settings.oauth_base_url.rstrip('/')}/oauth/token"

    @property
    def revoke_url(self) -> str:
        return f"{self.settings.oauth_base_url.rstrip('/')}/oauth/revoke"

    def _require_client(self, *, secret: bool = False) -> None:
        if not self.settings.client_id:
            raise ConfigurationError("KICK_CLIENT_ID is not configured")
        if secret and not self.settings.client_secret:
            raise ConfigurationError("KICK_CLIENT_SECRET is not configured")

    def _check_redirect_uri(self) -> str:
        uri = self.settings.redirect_uri
        if urllib.parse.urlsplit(uri).scheme != "https":
            raise ConfigurationError("Redirect URI must use HTTPS")
        return uri

    # -- login ---------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def oauth_url(self, scopes: list[str] | None = None) -> tuple[str, AuthFlowState]:
        """Register a pending login and build its authorization URL."""
        self._require_client()
        redirect_uri = self._check_redirect_uri()
        scopes = scopes or self.settings.scopes

        verifier, challenge = make_pkce_pair()
        flow = AuthFlowState(
            state=secrets.token_hex(16),
            code_verifier=verifier,
            scopes=list(scopes),
            created_at=self._clock(),
        )
        self._pending[flow.state] = flow

        query = urllib.parse.urlencode(
            {
                "response_type": "code",
                "client_id": self.settings.client_id,
                "redirect_uri": redirect_uri,
                "scope": " ".join(scopes),
                "state": flow.state,
                "code_challenge": challenge,
                "code_challenge_method": "S256",
            }
        )
        return f"{self.authorize_url}?{query}", flow

    def initiate_login(self, scopes: list[str] | None = None) -> dict[str, Any]:
        url, flow = self.oauth_url(scopes)
        logger.info("Login initiated (state=%s…)", flow.state[:8])
        return {
            "state": flow.state,
            "authorization_url": url,
            "message": "Open the authorization URL in a browser to complete login",
        }

    def take_state(self, state: str) -> AuthFlowState:
        """Consume a pending state; a second call with the same state fails."""
        flow = self._pending.pop(state, None) if state else None
        if flow is None:
            raise InvalidStateError()
        if flow.is_expired(self.timeout, now=self._clock()):
            raise ExpiredStateError()
        return flow

    async def exchange_code(self, code: str, state: str) -> TokenRecord:
        flow = self.take_state(state)
        self._require_client(secret=True)
        data = await self.http.request(
            "POST",
            self.token_url,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "redirect_uri": self.settings.redirect_uri,
                "code_verifier": flow.code_verifier,
            },
        )
        record = _token_record(data)
        await self.store.save_tokens(record)
        logger.info("OAuth tokens obtained via authorization code")
        return record

    # -- tokens --------------------------------------------------------------

    async def refresh(self, refresh_token: str | None = None) -> TokenRecord:
        current = self.store.get_tokens()
        refresh_token = refresh_token or (current.refresh_token if current else None)
        if not refresh_token:
            raise AuthRequiredError("No refresh token available. Please initiate login first.")
        self._require_client(secret=True)

        data = await self.http.request(
            "POST",
            self.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
            },
        )
        # A caller refreshing its own token must not overwrite the stored one.
        owned = current is None or current.refresh_token == refresh_token
        record = _token_record(data, user_id=current.user_id if current and owned else None)
        if record.refresh_token is None:
            record.refresh_token = refresh_token
        if owned:
            await self.store.save_tokens(record)
            logger.info("Refreshed OAuth token")
        else:
            logger.info("Refreshed a caller-supplied OAuth token")
        return record

    async def revoke(self, token: str | None = None) -> bool:
        """Revoke ``token`` (default: the stored one). Returns True if the store was cleared."""
        stored = self.store.get_access_token()
        token = token or stored
        if not token:
            raise AuthRequiredError("No token to revoke")
        await self.http.request(
            "POST",
            self.revoke_url,
            params={"token": token, "token_hint_type": "access_token"},
        )
        if token != stored:
            logger.info("Revoked a caller-supplied OAuth token")
            return False
        await self.store.clear_tokens()
        logger.info("Revoked stored OAuth token")
        return True

    async def app_access_token(self) -> dict[str, Any]:
        """Client-credentials token; never persisted."""
        self._require_client(secret=True)
        data = await self.http.request(
            "POST",
            self.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
            },
        )
        return data or {}

    async def get_valid_token(self, buffer: float = 60.0) -> str | None:
        """Stored access token, refreshed first when it's about to expire."""
        record = self.store.get_tokens()
        if record is None:
            return None
        if record.is_expired(buffer) and record.refresh_token:
            try:
                record = await self.refresh(record.refresh_token)
            except Exception as e:
                logger.warning("Token refresh failed: %s", e)
                return None
        return record.access_token

    # -- housekeeping --------------------------------------------------------

    def sweep(self) -> int:
        """Drop pending logins older than the flow timeout."""
        now = self._clock()
        stale = [s for s, f in self._pending.items() if f.is_expired(self.timeout, now=now)]
        for s in stale:
            del self._pending[s]
        if stale:
            logger.debug("Swept %d expired login states", len(stale))
        return len(stale)
