"""Periodic reconciliation of pending notifications.

Each tick also runs the registered housekeeping sweeps (expired reset
tokens, aged audit entries and metrics). A failing sweep is logged and does
not stop the others.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
import logging

from nutriplan.services.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

Sweep = Callable[[], Awaitable[int]]


class NotificationReconciler:
    """Background task running ``reconcile_pending`` every ``interval_seconds``."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        interval_seconds: float = 300,
        stale_after_seconds: float = 600,
        sweeps: Mapping[str, Sweep] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.sweeps: dict[str, Sweep] = dict(sweeps or {})
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        try:
            return await self.dispatcher.reconcile_pending(self.stale_after)
        finally:
            await self.run_sweeps()

    async def run_sweeps(self) -> dict[str, int]:
        """Run every housekeeping sweep and return the count each removed."""
        removed: dict[str, int] = {}
        for name, sweep in self.sweeps.items():
            try:
                removed[name] = await sweep()
            except Exception:
                logger.exception("Housekeeping sweep %s failed", name)
                continue
            if removed[name]:
                logger.info("Housekeeping sweep %s removed %d entries", name, removed[name])
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Notification reconciliation failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="notification-reconciler")
        logger.info("Notification reconciler started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Notification reconciler stopped")
