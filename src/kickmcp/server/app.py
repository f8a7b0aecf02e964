"""FastAPI application for ``kick-mcp serve``.

Serves the gateway routes (``/health``, ``/metrics``, ``/tools/list``,
``/rpc``, ``/auth/callback``, ``/ws``) plus one REST route per method
descriptor under ``/api``. Every HTTP response carries ``X-RateLimit-*``
headers; failures use ``{"error": {"message", "status", "code"}}``.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kickmcp import __version__
from kickmcp.errors import AuthRequiredError, GatewayError, InvalidParamsError
from kickmcp.gateway import Gateway
from kickmcp.registry.catalog import MethodDescriptor
from kickmcp.registry.dispatcher import CallerContext
from kickmcp.server.routes import bearer_token, client_identity, router

logger = logging.getLogger(__name__)

REST_PREFIX = "/api"


def error_body(message: str, status: int, code: int | None = None) -> dict[str, Any]:
    detail: dict[str, Any] = {"message": message, "status": status}
    if code is not None:
        detail["code"] = code
    return {"error": detail}


async def rate_limit_middleware(request: Request, call_next):
    gateway: Gateway = request.app.state.gateway
    info = gateway.rate_limiter.check(client_identity(request), request.url.path)
    if info.limited:
        gateway.metrics.rate_limited += 1
        gateway.metrics.record_request(429)
        return JSONResponse(
            status_code=429,
            content=error_body("Too Many Requests", 429),
            headers=info.headers(),
        )

    response = await call_next(request)
    response.headers.update(info.headers())
    gateway.metrics.record_request(response.status_code)
    return response


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=error_body(exc.message, exc.http_status, exc.code),
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("query", "body", "path"))
    message = f"Invalid parameter: {field}" if field else "Invalid request"
    return JSONResponse(status_code=400, content=error_body(message, 400, InvalidParamsError.code))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=error_body("Internal Server Error", 500))


def _rest_endpoint(descriptor: MethodDescriptor):
    async def endpoint(request: Request):
        gateway: Gateway = request.app.state.gateway
        token = bearer_token(request)
        if descriptor.requires_auth and not token:
            raise AuthRequiredError("Missing Authorization: Bearer token")

        params: dict[str, Any] = dict(request.query_params)
        if descriptor.http_method not in ("GET", "DELETE"):
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except json.JSONDecodeError as exc:
                    raise InvalidParamsError("body", "Request body is not valid JSON") from exc
                if descriptor.body_from is not None:
                    params[descriptor.body_from] = body
                elif isinstance(body, dict):
                    params.update(body)
                else:
                    raise InvalidParamsError("body", "Request body must be a JSON object")
        params.update(request.path_params)

        ctx = CallerContext(identity=client_identity(request), transport="http", access_token=token)
        return await gateway.dispatcher.dispatch(descriptor.name, params, ctx)

    endpoint.__name__ = descriptor.name
    return endpoint


def mount_descriptor_routes(app: FastAPI, descriptors: list[MethodDescriptor]) -> int:
    """Add one REST route per descriptor. Static paths are added first so
    ``/livestreams/categories`` wins over ``/livestreams/{slug}``."""
    seen: set[tuple[str, str]] = set()
    mounted = 0
    for d in sorted(descriptors, key=lambda d: len(d.placeholders)):
        route_key = (d.http_method, d.path_template)
        if route_key in seen:
            logger.warning("Skipping duplicate route %s %s (%s)", d.http_method, d.path_template, d.name)
            continue
        seen.add(route_key)
        app.add_api_route(
            REST_PREFIX + d.path_template,
            _rest_endpoint(d),
            methods=[d.http_method],
            name=d.name,
            summary=d.description or d.name,
            tags=["Kick API"],
        )
        mounted += 1
    return mounted


def create_app(gateway: Gateway | None = None) -> FastAPI:
    """Build the FastAPI application around a gateway (created from settings if omitted)."""
    gateway = gateway or Gateway()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await gateway.start()
        try:
            yield
        finally:
            await gateway.shutdown()

    app = FastAPI(
        title="Kick MCP Gateway",
        description="JSON-RPC / MCP and REST gateway for the Kick API.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    app.middleware("http")(rate_limit_middleware)
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    count = mount_descriptor_routes(app, gateway.registry.descriptors())
    logger.debug("Mounted %d REST routes under %s", count, REST_PREFIX)
    return app


def run_server(host: str | None = None, port: int | None = None, dev: bool = False) -> None:
    """Start the HTTP / WebSocket server."""
    import uvicorn

    gateway = Gateway()
    settings = gateway.settings
    host = host or settings.host
    port = port or settings.port

    logger.info("Kick MCP gateway listening on http://%s:%d", host, port)
    uvicorn.run(
        create_app(gateway),
        host=host,
        port=port,
        ws_ping_interval=settings.ws_ping_interval,
        ws_ping_timeout=settings.ws_ping_interval,
        log_level="debug" if dev else settings.log_level.lower(),
        log_config=None,
    )
