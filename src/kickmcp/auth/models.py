# Auth data models — token record and pending login state.
# Created: 2026-03-04

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class TokenRecord:
    """The single OAuth token set held by this process."""

    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None  # Unix timestamp
    user_id: str | None = None
    scope: str | None = None
    token_type: str = "Bearer"

    def is_expired(self, buffer: float = 60.0) -> bool:
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at - buffer

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenRecord:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            user_id=data.get("user_id"),
            scope=data.get("scope"),
            token_type=data.get("token_type") or "Bearer",
        )

    @classmethod
    def from_token_response(cls, data: dict[str, Any], user_id: str | None = None) -> TokenRecord:
        """Build a record from an OAuth token endpoint response."""
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=time.time() + float(expires_in) if expires_in else None,
            user_id=user_id,
            scope=data.get("scope"),
            token_type=data.get("token_type") or "Bearer",
        )


@dataclass
class AuthFlowState:
    """A pending authorization-code login (PKCE)."""

    state: str
    code_verifier: str
    scopes: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    def is_expired(self, timeout: float, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at > timeout
