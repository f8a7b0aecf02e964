# HTTP response schemas.
# Created: 2026-03-11

from __future__ import annotations

from pydantic import BaseModel


class UpstreamStatus(BaseModel):
    status: str
    error: str | None = None


class HealthResponse(BaseModel):
    """Gateway liveness plus a probe of the platform API."""

    status: str = "ok"
    version: str
    uptime_seconds: float
    sessions: int = 0
    cache_size: int = 0
    methods: int = 0
    upstream: UpstreamStatus


class ToolSchema(BaseModel):
    name: str
    description: str = ""
    inputSchema: dict


class ToolListResponse(BaseModel):
    tools: list[ToolSchema]


class AuthCallbackResponse(BaseModel):
    status: str = "authenticated"
    token_type: str = "Bearer"
    scope: str | None = None
    expires_at: float | None = None
