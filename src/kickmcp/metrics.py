"""Process-wide counters exposed at ``GET /metrics``."""

from __future__ import annotations

import time
from collections import Counter
from typing import Any


class Metrics:
    def __init__(self) -> None:
        self.started_at = time.time()
        self.requests = 0
        self.responses: Counter[int] = Counter()
        self.dispatches: Counter[str] = Counter()
        self.errors: Counter[int] = Counter()
        self.rate_limited = 0
        self.sessions_opened = 0
        self.sessions_closed = 0

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def record_request(self, status: int) -> None:
        self.requests += 1
        self.responses[status] += 1

    def record_dispatch(self, method: str) -> None:
        self.dispatches[method] += 1

    def record_error(self, code: int) -> None:
        self.errors[code] += 1

    def snapshot(self, **extra: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "uptime_seconds": round(self.uptime, 1),
            "http": {
                "requests": self.requests,
                "responses": {str(k): v for k, v in sorted(self.responses.items())},
            },
            "dispatch": {
                "total": sum(self.dispatches.values()),
                "by_method": dict(self.dispatches.most_common()),
                "errors": {str(k): v for k, v in sorted(self.errors.items())},
            },
            "rate_limited": self.rate_limited,
            "websocket": {
                "opened": self.sessions_opened,
                "closed": self.sessions_closed,
            },
        }
        data.update(extra)
        return data
