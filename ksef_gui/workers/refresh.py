from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ksef_gui.application.orchestrator import JobOrchestrator
from ksef_gui.infrastructure.prefs import PreferencesStore

logger = logging.getLogger(__name__)

CHECK_INTERVAL_SECONDS = 30.0


class BackgroundRefresher:
    """Periodically refreshes the cached results of the non-active profiles."""

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        prefs: PreferencesStore,
        *,
        check_interval: float = CHECK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._prefs = prefs
        self._check_interval = check_interval
        self._clock = clock
        self._sleep = sleep
        self._last_run: float | None = None
        self._task: asyncio.Task[None] | None = None

    def _interval_seconds(self) -> float:
        try:
            minutes = int(self._prefs.load().get("autoRefreshMinutes") or 0)
        except (TypeError, ValueError):
            return 0.0
        return max(minutes, 0) * 60.0

    def is_due(self) -> bool:
        interval = self._interval_seconds()
        if interval <= 0:
            return False
        return self._last_run is None or self._clock() - self._last_run >= interval

    async def run_once(self) -> dict[str, int]:
        """Refresh every eligible profile; one failing profile does not stop the others."""

        self._last_run = self._clock()
        results: dict[str, int] = {}
        for name in self._orchestrator.refresh_candidates():
            try:
                results[name] = await self._orchestrator.refresh_profile(name)
            except Exception as exc:
                logger.warning("Background refresh of %s failed: %s", name, exc)
        return results

    async def run(self) -> None:
        while True:
            await self._sleep(self._check_interval)
            if self.is_due():
                await self.run_once()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="ksef-gui-background-refresh")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
