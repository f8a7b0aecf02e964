"""Background loops and ordered shutdown.

``PeriodicTask`` wraps one sweep loop (cache, rate-limit windows, auth
flows). ``ShutdownRegistry`` runs teardown callbacks in registration order;
errors are logged but don't stop the remaining callbacks.

Created: 2026-03-03
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``callback`` every ``interval`` seconds until cancelled.

    ``cancel()`` may be called any number of times; the underlying task is
    cancelled exactly once.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Any]):
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        if self._cancelled:
            raise RuntimeError(f"Periodic task {self.name!r} was already cancelled")
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self._callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Periodic task %s failed", self.name, exc_info=True)

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Cancelled periodic task %s", self.name)


class ShutdownRegistry:
    """Ordered registry of teardown callbacks."""

    def __init__(self) -> None:
        self._callbacks: list[tuple[str, Callable[[], Any]]] = []

    def register(self, name: str, shutdown: Callable[[], Any]) -> None:
        """Append a sync or async teardown callback.

        Args:
            name: Label used in log output (e.g. ``"sessions"``).
            shutdown: Called once by :meth:`shutdown_all`.
        """
        self._callbacks.append((name, shutdown))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._callbacks]

    async def shutdown_all(self) -> None:
        """Run every callback in order, awaiting async ones, then clear the registry."""
        callbacks, self._callbacks = self._callbacks, []
        for name, shutdown_cb in callbacks:
            try:
                result = shutdown_cb()
                if asyncio.iscoroutine(result):
                    await result
                logger.debug("Shut down %s", name)
            except Exception:
                logger.warning("Error shutting down %s", name, exc_info=True)
