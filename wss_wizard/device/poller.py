"""
Periodic device status polling.

One cycle at a time: fetch, hand the snapshot over, wait the interval,
repeat. A slow request delays the next tick instead of overlapping it,
and poll_now() shares the same lock so manual triggers never overlap a
scheduled cycle either.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from wss_wizard.device.status import DeviceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


class StatusPoller:
    """Polls device status and forwards snapshots to a handler."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[DeviceSnapshot]],
        on_snapshot: Callable[[DeviceSnapshot], Any],
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._fetch = fetch
        self._on_snapshot = on_snapshot
        self._interval = interval
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._running = False

        self.cycles = 0
        self.failures = 0
        self.handler_errors = 0
        self.last_error: str | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"Poll interval must be positive, got {value}")
        if value != self._interval:
            logger.info(f"Status poll interval changed to {value}s")
        self._interval = value

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background poll loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Status polling every {self._interval}s")

    async def stop(self) -> None:
        """Stop the poll loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Status polling stopped")

    async def poll_now(self) -> DeviceSnapshot | None:
        """
        Run one poll cycle immediately.

        Returns:
            The snapshot, or None if the device could not be read
        """
        async with self._lock:
            self.cycles += 1
            try:
                snapshot = await self._fetch()
            except Exception as e:
                # Device offline is expected during setup (AP switches, reboots)
                self.failures += 1
                self.last_error = str(e)
                logger.debug(f"Status poll failed: {e}")
                return None

            self.last_error = None
            try:
                result = self._on_snapshot(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.handler_errors += 1
                logger.warning(f"Status handler failed: {e}", exc_info=True)
            return snapshot

    async def _loop(self) -> None:
        while self._running:
            await self.poll_now()
            await asyncio.sleep(self._interval)
