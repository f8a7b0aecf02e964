"""Method registry and generic dispatch.

Every callable method is an :class:`Operation`: upstream pass-through calls
are :class:`UpstreamOperation` objects built from the descriptor table, and
gateway-local methods (OAuth helpers, webhook verification) are
:class:`LocalOperation` objects wrapping a coroutine. The registry is frozen
once the gateway starts.

Created: 2026-03-06
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from kickmcp.cache import CacheManager
from kickmcp.errors import (
    AuthRequiredError,
    ConfigurationError,
    DuplicateMethodError,
    GatewayError,
    InternalError,
    InvalidParamsError,
    MethodNotFoundError,
    RateLimitedError,
)
from kickmcp.http_client import HttpClient
from kickmcp.metrics import Metrics
from kickmcp.registry.catalog import MethodDescriptor
from kickmcp.security.rate_limiter import RateLimiter
from kickmcp.security.token_store import PersistentStore

logger = logging.getLogger(__name__)


@dataclass
class CallerContext:
    """Who is calling and over which transport.

    ``allow_stored_token`` lets a call run on the operator's stored OAuth
    credentials when it brings none of its own. Only the local stdio
    transport sets it; network callers must present a Bearer token.
    """

    identity: str = "local"
    transport: str = "stdio"
    access_token: str | None = None
    enforce_rate_limit: bool = False
    allow_stored_token: bool = False


def is_missing(value: Any) -> bool:
    """Missing means absent, blank, or an empty collection; ``0`` and ``False`` count."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def check_required(params: dict[str, Any], required: Iterable[str]) -> None:
    """Raise for the first missing required field, in declaration order."""
    for field in required:
        if is_missing(params.get(field)):
            raise InvalidParamsError(field)


class Operation(Protocol):
    name: str
    description: str
    requires_auth: bool

    def validate(self, params: dict[str, Any]) -> None: ...

    async def execute(self, params: dict[str, Any], access_token: str | None) -> Any: ...

    def json_schema(self) -> dict[str, Any]: ...


class UpstreamOperation:
    """Pass-through call described by a :class:`MethodDescriptor`."""

    def __init__(self, descriptor: MethodDescriptor, http: HttpClient, cache: CacheManager):
        self.descriptor = descriptor
        self._http = http
        self._cache = cache

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    @property
    def requires_auth(self) -> bool:
        return self.descriptor.requires_auth

    def validate(self, params: dict[str, Any]) -> None:
        check_required(params, self.descriptor.required_params)

    def json_schema(self) -> dict[str, Any]:
        return self.descriptor.json_schema()

    async def execute(self, params: dict[str, Any], access_token: str | None) -> Any:
        d = self.descriptor
        path = d.build_path(params)
        query, body = d.split_params(params)

        cache_key = None
        if self._cache.is_cacheable(d.http_method, path):
            cache_key = self._cache.generate_cache_key(d.http_method, path, query, scope=access_token)
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for %s", cache_key)
                return cached

        if access_token:
            result = await self._http.authenticated_request(
                d.http_method, path, access_token, query, json=body
            )
        else:
            result = await self._http.request(d.http_method, path, query, json=body)

        if cache_key is not None and result is not None:
            self._cache.set(cache_key, result)
        elif not d.is_read:
            self._cache.invalidate_prefix(d.invalidation_prefix(params))
        return result


class LocalOperation:
    """Method served by the gateway itself."""

    def __init__(
        self,
        name: str,
        handler: Callable[[dict[str, Any], str | None], Awaitable[Any]],
        *,
        required_params: tuple[str, ...] = (),
        requires_auth: bool = False,
        description: str = "",
        properties: dict[str, Any] | None = None,
        stored_fallback: str | None = None,
    ):
        self.name = name
        self.description = description
        self.requires_auth = requires_auth
        self.required_params = required_params
        # Param whose absence makes the handler fall back to stored credentials.
        self.stored_fallback = stored_fallback
        self._handler = handler
        self._properties = properties or {}

    def validate(self, params: dict[str, Any]) -> None:
        check_required(params, self.required_params)

    def json_schema(self) -> dict[str, Any]:
        properties = {name: {"type": "string"} for name in self.required_params}
        properties.update(self._properties)
        return {"type": "object", "properties": properties, "required": list(self.required_params)}

    async def execute(self, params: dict[str, Any], access_token: str | None) -> Any:
        return await self._handler(params, access_token)


class MethodRegistry:
    def __init__(self) -> None:
        self._operations: dict[str, Operation] = {}
        self._frozen = False

    def register(self, operation: Operation) -> None:
        if self._frozen:
            raise ConfigurationError(f"Registry is frozen; cannot register {operation.name}")
        if operation.name in self._operations:
            raise DuplicateMethodError(operation.name)
        self._operations[operation.name] = operation

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Operation:
        try:
            return self._operations[name]
        except KeyError:
            raise MethodNotFoundError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def descriptors(self) -> list[MethodDescriptor]:
        return [op.descriptor for op in self._operations.values() if isinstance(op, UpstreamOperation)]

    def tool_schemas(self) -> list[dict[str, Any]]:
        """Method catalog in MCP ``tools/list`` shape."""
        return [
            {"name": op.name, "description": op.description, "inputSchema": op.json_schema()}
            for op in self._operations.values()
        ]


class Dispatcher:
    """Routes a method name and params to its operation.

    Order of checks: rate limit (when the caller requires it), method lookup,
    required params, stored-credential access, token resolution, then
    execution.
    """

    def __init__(
        self,
        registry: MethodRegistry,
        token_store: PersistentStore | None,
        rate_limiter: RateLimiter | None = None,
        metrics: Metrics | None = None,
        token_provider: Callable[[], Awaitable[str | None]] | None = None,
    ):
        self.registry = registry
        self.token_store = token_store
        self.rate_limiter = rate_limiter
        self.metrics = metrics or Metrics()
        self._token_provider = token_provider

    async def resolve_token(self, params: dict[str, Any], ctx: CallerContext) -> str | None:
        """Explicit ``access_token`` param, then the caller's Bearer, then the store.

        The store is only consulted for callers with ``allow_stored_token``.
        """
        explicit = params.get("access_token")
        if isinstance(explicit, str) and explicit.strip():
            return explicit
        if ctx.access_token:
            return ctx.access_token
        if not ctx.allow_stored_token:
            return None
        if self._token_provider is not None:
            return await self._token_provider()
        if self.token_store is not None:
            return self.token_store.get_access_token()
        return None

    async def dispatch(
        self,
        name: str,
        params: dict[str, Any] | None = None,
        ctx: CallerContext | None = None,
    ) -> Any:
        ctx = ctx or CallerContext()
        started = time.monotonic()
        try:
            result = await self._dispatch(name, params, ctx)
        except GatewayError as exc:
            self.metrics.record_error(exc.code)
            logger.warning(
                "%s failed for %s via %s in %.1f ms: [%d] %s",
                name, ctx.identity, ctx.transport,
                (time.monotonic() - started) * 1000, exc.code, exc.message,
            )
            raise
        except Exception as exc:
            self.metrics.record_error(InternalError.code)
            logger.error(
                "%s crashed for %s via %s", name, ctx.identity, ctx.transport, exc_info=True
            )
            raise InternalError("Internal error") from exc

        logger.info(
            "%s ok for %s via %s in %.1f ms",
            name, ctx.identity, ctx.transport, (time.monotonic() - started) * 1000,
        )
        return result

    async def _dispatch(self, name: str, params: Any, ctx: CallerContext) -> Any:
        if ctx.enforce_rate_limit and self.rate_limiter is not None:
            info = self.rate_limiter.check(ctx.identity, f"rpc:{name}")
            if info.limited:
                self.metrics.rate_limited += 1
                raise RateLimitedError(int(info.reset_at), info.limit)

        operation = self.registry.get(name)
        self.metrics.record_dispatch(name)

        if params is None:
            params = {}
        elif not isinstance(params, dict):
            raise InvalidParamsError("params", "params must be an object")

        operation.validate(params)

        fallback = getattr(operation, "stored_fallback", None)
        if fallback and is_missing(params.get(fallback)) and not ctx.allow_stored_token:
            raise AuthRequiredError(f"{name} needs '{fallback}' when called remotely")

        token = await self.resolve_token(params, ctx)
        if operation.requires_auth and not token:
            raise AuthRequiredError()
        return await operation.execute(params, token)
