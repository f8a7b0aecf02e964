"""In-memory TTL cache for upstream GET responses.

Entries expire lazily on read and in bulk via ``sweep()``, which the gateway
runs every ``check_period`` seconds.

Created: 2026-03-05
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from kickmcp.config import DEFAULT_CACHEABLE_PATTERNS

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


def _normalize_path(url: str) -> str:
    path = urlsplit(url).path or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return path


class CacheManager:
    """TTL cache with an allow-list of cacheable GET paths."""

    def __init__(
        self,
        ttl: float = 300.0,
        check_period: float = 600.0,
        patterns: Iterable[str] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.check_period = check_period
        self._clock = clock
        self._patterns = [
            re.compile(p) for p in (patterns if patterns is not None else DEFAULT_CACHEABLE_PATTERNS)
        ]
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    # -- keys ----------------------------------------------------------------

    @staticmethod
    def generate_cache_key(
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        scope: str | None = None,
    ) -> str:
        """Deterministic key for a request.

        Parameter order never changes the key. ``scope`` (typically the access
        token) is folded in as a short hash so per-user responses don't leak
        between callers.
        """
        encoded = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
        key = f"{method.upper()}:{url}:{encoded}"
        if scope:
            key += ":" + hashlib.sha256(scope.encode()).hexdigest()[:16]
        return key

    def is_cacheable(self, method: str, url: str) -> bool:
        if method.upper() != "GET":
            return False
        path = _normalize_path(url)
        return any(p.fullmatch(path) for p in self._patterns)

    # -- entries -------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(key, value, self._clock() + ttl)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove every expired entry. Returns count removed."""
        now = self._clock()
        stale = [k for k, e in self._entries.items() if now > e.expires_at]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug("Swept %d expired cache entries", len(stale))
        return len(stale)

    def invalidate_prefix(self, path_prefix: str) -> int:
        """Drop cached GETs whose path is ``path_prefix`` or lies under it."""
        prefix = _normalize_path(path_prefix)
        removed = 0
        for key in list(self._entries):
            method, _, rest = key.partition(":")
            if method != "GET":
                continue
            path = _normalize_path(rest.partition(":")[0])
            if path == prefix or path.startswith(prefix + "/"):
                del self._entries[key]
                removed += 1
        if removed:
            logger.debug("Invalidated %d cache entries under %s", removed, prefix)
        return removed

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching the regular expression ``pattern``."""
        rx = re.compile(pattern)
        stale = [k for k in self._entries if rx.search(k)]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def keys(self) -> list[str]:
        return list(self._entries)

    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}
