"""
Cancellable countdown timer

Ticks once per interval from N down to zero, then fires an expiry
callback. Kept free of any network behaviour so the SOS state machine can
swap or test it on its own.
"""

import asyncio
import logging
from typing import Callable, Optional


class CountdownTimer:
    """Counts down on the running event loop"""

    def __init__(
        self,
        seconds: int,
        interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None
    ):
        if seconds < 1:
            raise ValueError(f"Countdown must be at least 1 tick, got {seconds}")
        if interval <= 0:
            raise ValueError(f"Tick interval must be positive, got {interval}")

        self.logger = logging.getLogger(__name__)
        self.seconds = seconds
        self.interval = interval
        self.on_tick = on_tick
        self.on_expire = on_expire

        self._remaining = seconds
        self._cancelled = False
        self._expired = False
        self._task: Optional[asyncio.Task] = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled and not self._expired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self):
        """Start ticking; a timer can only be started once"""
        if self._task is not None:
            return

        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> bool:
        """
        Stop the countdown immediately

        No tick or expiry callback runs after this returns.

        Returns:
            True if a running countdown was stopped
        """
        if self._cancelled or self._expired:
            return False

        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

        self.logger.debug(f"Countdown cancelled with {self._remaining} tick(s) left")
        return True

    async def wait(self):
        """Wait for the countdown task to finish, however it ends"""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self):
        while self._remaining > 0:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                return

            self._remaining -= 1
            self._notify_tick()

            if self._cancelled:
                return

        self._expired = True
        if self.on_expire:
            self.on_expire()

    def _notify_tick(self):
        if not self.on_tick:
            return
        try:
            self.on_tick(self._remaining)
        except Exception as e:
            self.logger.error(f"Error in countdown tick callback: {e}")
