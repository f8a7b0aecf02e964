"""Error taxonomy shared by every layer of the gateway.

Each error carries a JSON-RPC code and an HTTP status so the transport
adapters can convert it at the boundary without knowing which layer raised it.

Created: 2026-03-02
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Upstream error kinds, derived from the HTTP status or the body's ``error.code``."""

    INVALID_TOKEN = "invalid_token"
    INVALID_SCOPE = "invalid_scope"
    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    ACCESS_DENIED = "access_denied"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    STREAM_NOT_FOUND = "stream_not_found"
    STREAM_ALREADY_ACTIVE = "stream_already_active"
    CHANNEL_NOT_FOUND = "channel_not_found"
    USER_NOT_FOUND = "user_not_found"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    INVALID_PARAMETERS = "invalid_parameters"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_ALREADY_EXISTS = "resource_already_exists"
    RESOURCE_FORBIDDEN = "resource_forbidden"
    INTERNAL_SERVER_ERROR = "internal_server_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    BAD_REQUEST = "bad_request"


_ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_TOKEN: "The access token is invalid or has expired",
    ErrorCode.INVALID_SCOPE: "The requested scope is invalid or unknown",
    ErrorCode.INVALID_REQUEST: "The request is missing a required parameter or is malformed",
    ErrorCode.UNAUTHORIZED_CLIENT: "The client is not authorized to request an access token",
    ErrorCode.ACCESS_DENIED: "The resource owner denied the request",
    ErrorCode.UNSUPPORTED_RESPONSE_TYPE: "The authorization server does not support this response type",
    ErrorCode.SERVER_ERROR: "The authorization server encountered an unexpected error",
    ErrorCode.TEMPORARILY_UNAVAILABLE: "The server is temporarily unavailable",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Rate limit exceeded, try again later",
    ErrorCode.STREAM_NOT_FOUND: "The requested stream was not found",
    ErrorCode.STREAM_ALREADY_ACTIVE: "A stream is already active for this channel",
    ErrorCode.CHANNEL_NOT_FOUND: "The requested channel was not found",
    ErrorCode.USER_NOT_FOUND: "The requested user was not found",
    ErrorCode.INSUFFICIENT_PERMISSIONS: "Insufficient permissions for this action",
    ErrorCode.INVALID_PARAMETERS: "Invalid parameters provided",
    ErrorCode.RESOURCE_NOT_FOUND: "The requested resource was not found",
    ErrorCode.RESOURCE_ALREADY_EXISTS: "The resource already exists",
    ErrorCode.RESOURCE_FORBIDDEN: "Access to this resource is forbidden",
    ErrorCode.INTERNAL_SERVER_ERROR: "Internal server error",
    ErrorCode.SERVICE_UNAVAILABLE: "Service is temporarily unavailable",
    ErrorCode.BAD_REQUEST: "Bad request",
}


def error_message(code: ErrorCode) -> str:
    return _ERROR_MESSAGES.get(code, "Unknown error")


def map_status_to_error_code(status: int, body: Any = None) -> ErrorCode:
    """Pick the :class:`ErrorCode` for an upstream response.

    A recognised ``error.code`` (or top-level ``error`` string) in the body
    wins over the status mapping.
    """
    if isinstance(body, dict):
        err = body.get("error")
        candidate = err.get("code") if isinstance(err, dict) else err
        if isinstance(candidate, str):
            try:
                return ErrorCode(candidate)
            except ValueError:
                pass

    if status == 400:
        return ErrorCode.BAD_REQUEST
    if status == 401:
        return ErrorCode.INVALID_TOKEN
    if status == 403:
        return ErrorCode.RESOURCE_FORBIDDEN
    if status == 404:
        return ErrorCode.RESOURCE_NOT_FOUND
    if status == 409:
        text = str(body).lower() if body is not None else ""
        if "stream" in text:
            return ErrorCode.STREAM_ALREADY_ACTIVE
        return ErrorCode.RESOURCE_ALREADY_EXISTS
    if status == 429:
        return ErrorCode.RATE_LIMIT_EXCEEDED
    if status == 503:
        return ErrorCode.SERVICE_UNAVAILABLE
    return ErrorCode.INTERNAL_SERVER_ERROR


class GatewayError(Exception):
    """Base class for every error the gateway reports to a caller."""

    code: int = -32603
    http_status: int = 500

    def __init__(self, message: str, *, data: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """JSON-RPC ``error`` object."""
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data:
            d["data"] = self.data
        return d


class ParseError(GatewayError):
    code = -32700
    http_status = 400


class InvalidRequestError(GatewayError):
    code = -32600
    http_status = 400


class MethodNotFoundError(GatewayError):
    code = -32601
    http_status = 404

    def __init__(self, method: str):
        super().__init__(f"Method not found: {method}", data={"method": method})
        self.method = method


class InvalidParamsError(GatewayError):
    code = -32602
    http_status = 400

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Missing required parameter: {field}", data={"field": field})
        self.field = field


class InternalError(GatewayError):
    code = -32603
    http_status = 500


class UpstreamError(GatewayError):
    """Non-2xx response from the platform API."""

    code = -32000

    def __init__(self, http_status: int, body: Any = None, message: str | None = None):
        self.error_code = map_status_to_error_code(http_status, body)
        self.body = body
        super().__init__(
            message or _upstream_message(body) or error_message(self.error_code),
            data={"status": http_status, "error_code": self.error_code.value},
        )
        self.http_status = http_status


def _upstream_message(body: Any) -> str | None:
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
    return None


class ConfigurationError(GatewayError):
    """Invalid static configuration. Raised at startup and fatal."""

    code = -32001
    http_status = 500


class DuplicateMethodError(ConfigurationError):
    def __init__(self, method: str):
        super().__init__(f"Method already registered: {method}", data={"method": method})
        self.method = method


class InvalidStateError(GatewayError):
    code = -32002
    http_status = 400

    def __init__(self, message: str = "Invalid or already used state parameter"):
        super().__init__(message)


class ExpiredStateError(GatewayError):
    code = -32003
    http_status = 400

    def __init__(self, message: str = "Authorization request has expired"):
        super().__init__(message)


class NetworkError(GatewayError):
    """The upstream call never produced an HTTP response."""

    code = -32004
    http_status = 502

    KINDS = ("timeout", "dns", "connection_refused", "transport")

    def __init__(self, kind: str, message: str):
        if kind not in self.KINDS:
            kind = "transport"
        super().__init__(message, data={"kind": kind})
        self.kind = kind
        if kind == "timeout":
            self.http_status = 504


class AuthRequiredError(GatewayError):
    code = -32010
    http_status = 401

    def __init__(self, message: str = "Authentication required. Please initiate login first."):
        super().__init__(message)


class RateLimitedError(GatewayError):
    code = -32029
    http_status = 429

    def __init__(self, reset_at: int, limit: int | None = None):
        super().__init__("Too Many Requests", data={"reset_at": reset_at})
        self.reset_at = reset_at
        self.limit = limit
