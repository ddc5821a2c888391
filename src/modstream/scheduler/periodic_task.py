"""Generic scheduler for periodic background maintenance.

Runs a user-supplied callable on a fixed interval in its own asyncio task.
Used for the spam-window sweep and the policy cache sync. A failing run is
logged and the loop keeps going; only cancellation stops it.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Union

from modstream.util.logger import get_logger

logger = get_logger("periodic_task")

Job = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """
    Reusable periodic runner.

    Args:
        name: Human-readable name for logging (e.g., "SPAM SWEEP").
        job: Sync or async callable taking no arguments.
        get_interval: Callable returning the interval in seconds (read at start).
    """

    def __init__(self, name: str, job: Job, get_interval: Callable[[], float]) -> None:
        self._name = name
        self._job = job
        self._get_interval = get_interval
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        result = self._job()
        if inspect.isawaitable(result):
            result = await result
        self.runs += 1
        return result

    async def _run_loop(self, interval: float) -> None:
        """Sleep, run, repeat."""
        logger.info("[%s] Starting periodic task (interval=%.1fs)", self._name, interval)
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("[%s] Unexpected error during run: %s", self._name, exc)
        except asyncio.CancelledError:
            logger.info("[%s] Periodic task cancelled", self._name)
            raise

    def start(self) -> None:
        """Start the background task if not already running."""
        if self.running:
            logger.warning("[%s] Task already running", self._name)
            return
        interval = self._get_interval()
        self._task = asyncio.create_task(self._run_loop(interval), name=f"periodic-{self._name.lower()}")

    async def shutdown(self) -> None:
        """Stop the task and wait for it to exit."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[%s] Periodic task shut down", self._name)
