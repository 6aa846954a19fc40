"""
Refresh Scheduler - periodic read cycles while someone is looking.

Ticks only while auto-refresh is enabled, the link is connected and the
host application is in the foreground. A tick that finds the previous
cycle still running is skipped, never queued.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .types import RefreshConfig


logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Timer driving the read cycle.

    The cycle itself runs as its own task, so stopping the timer lets a
    cycle in flight finish.
    """

    def __init__(
        self,
        cycle: Callable[[], Awaitable[Any]],
        config: Optional[RefreshConfig] = None,
    ) -> None:
        """
        Args:
            cycle: Coroutine function performing one full read cycle
            config: Interval and settle delay
        """
        self._cycle = cycle
        self.config = config or RefreshConfig()
        self._interval = self.config.interval

        self._enabled = False
        self._connected = False
        self._foreground = True

        self._ticker: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self.ticks = 0
        self.skipped_ticks = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_ticking(self) -> bool:
        """Check if the timer is currently armed"""
        return self._ticker is not None and not self._ticker.done()

    @property
    def cycle_running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def set_enabled(self, enabled: bool, interval: Optional[float] = None) -> None:
        """
        Enable or disable auto-refresh.

        Args:
            enabled: Whether to tick
            interval: New period in seconds, used from the next tick on
        """
        if interval is not None:
            self.set_interval(interval)
        if enabled != self._enabled:
            logger.info(f"Auto-refresh {'enabled' if enabled else 'disabled'} ({self._interval}s)")
        self._enabled = enabled
        self._reconcile()

    def set_interval(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive: {interval}")
        self._interval = interval

    def set_connected(self, connected: bool) -> None:
        self._connected = connected
        self._reconcile()

    def set_foreground(self, active: bool) -> None:
        """Host application moved to foreground (True) or background (False)"""
        if active != self._foreground:
            logger.info(f"App went to {'foreground' if active else 'background'}")
        self._foreground = active
        self._reconcile()

    def _reconcile(self) -> None:
        should_tick = self._enabled and self._connected and self._foreground
        if should_tick and not self.is_ticking:
            self._ticker = asyncio.get_running_loop().create_task(self._tick_loop())
        elif not should_tick and self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._fire()

    def _fire(self) -> None:
        if self.cycle_running:
            self.skipped_ticks += 1
            logger.debug("Previous read cycle still running, skipping tick")
            return
        self.ticks += 1
        self._inflight = asyncio.get_running_loop().create_task(self._run_cycle())

    async def _run_cycle(self) -> None:
        try:
            await self._cycle()
        except Exception as e:
            logger.error(f"Error in refresh cycle: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop ticking and cancel a cycle in flight (shutdown)"""
        self._enabled = False
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            try:
                await self._inflight
            except asyncio.CancelledError:
                pass
        self._inflight = None
