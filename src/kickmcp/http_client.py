# HTTP Client — single-attempt calls to the Kick REST API.
# Created: 2026-03-05
#
# Transport failures become NetworkError, non-2xx responses become
# UpstreamError. Nothing here retries.

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from kickmcp.errors import AuthRequiredError, NetworkError, UpstreamError

logger = logging.getLogger(__name__)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "name resolution",
    "no address associated",
)


def _classify_connect_error(exc: httpx.ConnectError) -> str:
    text = str(exc).lower()
    if any(marker in text for marker in _DNS_MARKERS):
        return "dns"
    if "refused" in text:
        return "connection_refused"
    return "transport"


def _decode_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class HttpClient:
    """Async client bound to one base URL.

    Args:
        base_url: Upstream API root (``https://api.kick.com/public/v1``).
        timeout: Default per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.request_count = 0
        self.total_latency = 0.0

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        *,
        json: Any = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Perform exactly one HTTP call and return the decoded body.

        ``params`` go in the query string; ``json`` or ``data`` (form) form the
        body. A 204 or empty body returns ``None``.

        Raises:
            NetworkError: No response was received.
            UpstreamError: The response status was not 2xx.
        """
        method = method.upper()
        query = {k: v for k, v in (params or {}).items() if v is not None} or None
        started = time.monotonic()
        try:
            resp = await self._client.request(
                method,
                url,
                params=query,
                json=json,
                data=data,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, url)
            raise NetworkError("timeout", "Request timed out") from exc
        except httpx.ConnectError as exc:
            kind = _classify_connect_error(exc)
            logger.warning("%s %s failed to connect (%s): %s", method, url, kind, exc)
            if kind == "dns":
                raise NetworkError(kind, "Unable to resolve API host") from exc
            if kind == "connection_refused":
                raise NetworkError(kind, "Connection refused by API host") from exc
            raise NetworkError(kind, f"Network error: {exc}") from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s transport error: %s", method, url, exc)
            raise NetworkError("transport", f"Network error: {exc}") from exc
        finally:
            elapsed = time.monotonic() - started
            self.request_count += 1
            self.total_latency += elapsed

        logger.debug("%s %s -> %d (%.0f ms)", method, url, resp.status_code, elapsed * 1000)
        body = _decode_body(resp)
        if not resp.is_success:
            raise UpstreamError(resp.status_code, body)
        return body

    async def authenticated_request(
        self,
        method: str,
        url: str,
        access_token: str | None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        *,
        json: Any = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Same as :meth:`request` with a Bearer token; no token means no I/O."""
        if not access_token:
            raise AuthRequiredError()
        merged = dict(headers or {})
        merged["Authorization"] = f"Bearer {access_token}"
        return await self.request(
            method, url, params, merged, timeout, json=json, data=data
        )

    def stats(self) -> dict[str, float]:
        avg = self.total_latency / self.request_count if self.request_count else 0.0
        return {"requests": self.request_count, "avg_latency_ms": round(avg * 1000, 2)}

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()
