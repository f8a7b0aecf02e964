"""Gateway configuration.

Settings come from ``KICK_*`` environment variables (or a ``.env`` file in
the working directory). ``get_settings()`` caches one instance per process.

Created: 2026-03-02
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CACHEABLE_PATTERNS = [
    r"/users/me(/.*)?",
    r"/channels/\d+(/.*)?",
    r"/categories(/.*)?",
    r"/livestreams(/.*)?",
    r"/tags",
    r"/events/types(/.*)?",
    r"/public-key",
]


def get_config_dir() -> Path:
    """Return ``~/.kick-mcp``, creating it on first use."""
    d = Path.home() / ".kick-mcp"
    d.mkdir(exist_ok=True)
    return d


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KICK_",
        env_file=".env",
        extra="ignore",
    )

    # Upstream platform
    api_base_url: str = "https://api.kick.com/public/v1"
    oauth_base_url: str = "https://id.kick.com"
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "https://localhost:3001/auth/callback"
    default_scopes: str = "chat:read chat:write channel:read user:read"
    request_timeout: float = 10.0

    # Cache
    cache_ttl: float = 300.0
    cache_check_period: float = 600.0
    cacheable_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_CACHEABLE_PATTERNS))

    # Rate limiting
    rate_limit_window: float = 60.0
    rate_limit_max_requests: int = 100
    rate_limit_identity: Literal["remote_addr", "forwarded_for"] = "remote_addr"
    trusted_proxies: list[str] = Field(default_factory=lambda: ["127.0.0.1", "::1"])

    # Token persistence
    token_store_path: Path | None = None
    token_encryption_key: str | None = None

    # Transports
    transport: Literal["stdio", "http"] = "stdio"
    host: str = "127.0.0.1"
    port: int = 3001
    ws_ping_interval: float = 30.0
    ws_idle_timeout: float = 300.0

    # OAuth flow bookkeeping
    auth_flow_timeout: float = 300.0
    auth_flow_sweep_interval: float = 60.0

    log_level: str = "INFO"

    @field_validator("token_encryption_key")
    @classmethod
    def _check_key(cls, v: str | None) -> str | None:
        if v in (None, ""):
            return None
        if len(v) != 64:
            raise ValueError("token_encryption_key must be 64 hex characters (32 bytes)")
        try:
            bytes.fromhex(v)
        except ValueError as exc:
            raise ValueError("token_encryption_key must be hex encoded") from exc
        return v.lower()

    @field_validator("rate_limit_max_requests")
    @classmethod
    def _check_max_requests(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rate_limit_max_requests must be at least 1")
        return v

    @property
    def scopes(self) -> list[str]:
        return self.default_scopes.split()

    def resolved_token_store_path(self) -> Path:
        if self.token_store_path is not None:
            return self.token_store_path
        return get_config_dir() / "tokens.enc"

    @classmethod
    def load(cls) -> Settings:
        """Build settings from the environment."""
        return cls()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.load()
