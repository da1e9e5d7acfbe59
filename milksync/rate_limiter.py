"""
Cooldown gate for periodic remote operations.

A ``RateLimiter`` says "not ready again until T": it is ready if it has never
fired, or if at least ``min_interval`` seconds have passed since it last fired.
"""

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval limiter for a single periodic operation."""

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._last_fired: Optional[float] = None

    def is_ready(self) -> bool:
        """True if never fired, or the interval has elapsed since the last firing."""
        if self._last_fired is None:
            return True
        return self._clock() - self._last_fired >= self.min_interval

    def have_fired(self) -> None:
        """Record now as the last firing."""
        self._last_fired = self._clock()
        logger.debug(f"Rate limiter fired, next ready in {self.min_interval:.0f}s")

    def reset(self) -> None:
        """Forget the last firing so the limiter is ready immediately."""
        self._last_fired = None

    @property
    def seconds_until_ready(self) -> float:
        """Seconds left before the limiter is ready again."""
        if self._last_fired is None:
            return 0.0
        return max(0.0, self.min_interval - (self._clock() - self._last_fired))
