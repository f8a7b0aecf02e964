"""Fixed-window rate limiter keyed by caller identity and route.

A window opens with the first request for a key and lasts ``window``
seconds; the request that finds ``now - window_start > window`` starts a new
window with count 1. A caller can therefore spend up to twice the limit
across a window boundary; that burst is accepted.
"""

from __future__ import annotations

import ipaddress
import logging
import math
import time
from collections.abc import Callable, Iterable, Mapping

__all__ = [
    "RateLimiter",
    "RateLimitInfo",
    "RateWindow",
    "resolve_identity",
]

logger = logging.getLogger(__name__)


class RateWindow:
    """Request count for one identity+route key."""

    __slots__ = ("key", "count", "window_start")

    def __init__(self, key: str, window_start: float):
        self.key = key
        self.count = 0
        self.window_start = window_start


class RateLimitInfo:
    """Rate limit state returned by ``check()``."""

    __slots__ = ("limited", "limit", "remaining", "reset_at")

    def __init__(self, limited: bool, limit: int, remaining: int, reset_at: float):
        self.limited = limited
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at

    def retry_after(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_at - now))

    def headers(self) -> dict[str, str]:
        """Return rate-limit response headers; ``X-RateLimit-Reset`` is epoch seconds."""
        h: dict[str, str] = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if self.limited:
            h["Retry-After"] = str(self.retry_after())
        return h


class RateLimiter:
    """Fixed-window limiter.

    Parameters
    ----------
    max_requests : int
        Requests allowed per window per key.
    window : float
        Window length in seconds.
    clock : callable
        Returns wall-clock seconds; injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self.limited_count = 0

    @staticmethod
    def make_key(identity: str, route: str) -> str:
        return f"{identity}:{route}"

    def check(self, identity: str, route: str) -> RateLimitInfo:
        """Count one request for ``identity`` on ``route`` and report the window state."""
        now = self._clock()
        key = self.make_key(identity, route)

        win = self._windows.get(key)
        if win is None or now - win.window_start > self.window:
            win = RateWindow(key, now)
            self._windows[key] = win
        win.count += 1

        limited = win.count > self.max_requests
        if limited:
            self.limited_count += 1
            logger.info("Rate limit exceeded for %s", key)
        return RateLimitInfo(
            limited=limited,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - win.count),
            reset_at=win.window_start + self.window,
        )

    def sweep(self) -> int:
        """Drop windows older than one window length. Returns count removed."""
        now = self._clock()
        stale = [k for k, w in self._windows.items() if now - w.window_start > self.window]
        for k in stale:
            del self._windows[k]
        if stale:
            logger.debug("Swept %d rate-limit windows", len(stale))
        return len(stale)

    def window_for(self, identity: str, route: str) -> RateWindow | None:
        return self._windows.get(self.make_key(identity, route))

    def __len__(self) -> int:
        return len(self._windows)


def _in_networks(host: str, networks: Iterable[str]) -> bool:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return host in networks
    for net in networks:
        try:
            if addr in ipaddress.ip_network(net, strict=False):
                return True
        except ValueError:
            continue
    return False


def resolve_identity(
    remote_addr: str | None,
    headers: Mapping[str, str] | None = None,
    *,
    source: str = "remote_addr",
    trusted_proxies: Iterable[str] = (),
) -> str:
    """Pick the rate-limit identity for a connection.

    With ``source="forwarded_for"`` the left-most ``X-Forwarded-For`` entry is
    used, but only when the direct peer is a trusted proxy.
    """
    peer = remote_addr or "unknown"
    if source != "forwarded_for" or not headers:
        return peer

    forwarded = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if not forwarded or not _in_networks(peer, list(trusted_proxies)):
        return peer
    client = forwarded.split(",")[0].strip()
    return client or peer
