"""
TimeoutSweeper — background asyncio task that periodically runs
``ProctorService.sweep_expired``: timeouts, pending review flags, and
eviction of finished sessions past retention.

Runs on the application's event loop (started/stopped from the FastAPI
lifespan). A failing sweep is logged and the loop carries on; nothing the
sweep does can take the process down.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging

from proctor.sessions.service import ProctorService

logger = logging.getLogger(__name__)


class TimeoutSweeper:
    def __init__(self, service: ProctorService, interval_seconds: float) -> None:
        self.name = self.__class__.__name__
        self._service  = service
        self._interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        logger.info("%s starting, interval=%.1fs", self.name, self._interval)
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()

    async def run_once(self) -> int:
        try:
            terminated = await self._service.sweep_expired()
        except Exception as exc:
            logger.error("%s sweep failed: %s", self.name, exc, exc_info=True)
            return 0
        if terminated:
            logger.info("%s terminated %d session(s)", self.name, terminated)
        return terminated
