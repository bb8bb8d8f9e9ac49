"""
Shake gesture detection

Turns raw accelerometer samples into a debounced "shake" signal that
auto-activates the SOS flow.
"""

import logging
import math
import time
from typing import Callable, Optional


class ShakeDetector:
    """Fires on_shake when total acceleration crosses the threshold"""

    def __init__(
        self,
        on_shake: Callable[[], None],
        threshold: float = 4.0,
        debounce_seconds: float = 2.0,
        enabled: bool = True
    ):
        self.logger = logging.getLogger(__name__)
        self.on_shake = on_shake
        self.threshold = threshold
        self.debounce_seconds = debounce_seconds
        self.enabled = enabled
        self._last_shake: Optional[float] = None

    def feed(self, x: float, y: float, z: float, now: Optional[float] = None) -> bool:
        """
        Process one accelerometer sample (in g)

        Returns:
            True if this sample triggered a shake
        """
        if not self.enabled:
            return False

        magnitude = math.sqrt(x * x + y * y + z * z)
        if magnitude <= self.threshold:
            return False

        now = time.monotonic() if now is None else now
        if self._last_shake is not None and now - self._last_shake <= self.debounce_seconds:
            return False

        self._last_shake = now
        self.logger.info(f"Shake detected ({magnitude:.2f}g)")
        self.on_shake()
        return True

    def reset(self):
        self._last_shake = None
