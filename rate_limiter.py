import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Per-identifier fixed-window limiter used to slow down access-code guessing.
    State lives in process memory; multi-instance deployments need a shared store.
    """

    def __init__(
        self,
        limit: int = 10,
        window: float = 60.0,
        max_keys: int = 500,
        clock: Optional[Callable[[], float]] = None,
    ):
        if limit <= 0:
            raise ValueError("limit must be positive")
        if window <= 0:
            raise ValueError("window must be positive")
        self.limit = int(limit)
        self.window = float(window)
        self.max_keys = int(max_keys)
        self._clock = clock or time.monotonic
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, identifier: str, limit: Optional[int] = None) -> None:
        """Count one request for ``identifier``; raise RateLimited past the limit."""
        allowed = int(limit) if limit is not None else self.limit
        with self._lock:
            now = self._clock()
            if len(self._windows) > self.max_keys:
                self._cleanup(now)

            state = self._windows.get(identifier)
            if state is None or now >= state.reset_at:
                self._windows[identifier] = _Window(count=1, reset_at=now + self.window)
                return

            state.count += 1
            if state.count > allowed:
                retry_after = max(1, math.ceil(state.reset_at - now))
                logger.warning("Rate limit hit for %s (%d/%d)", identifier, state.count, allowed)
                raise RateLimited("Too many attempts, try again in a few minutes.",
                                  retry_after=retry_after)

    def remaining(self, identifier: str) -> int:
        with self._lock:
            state = self._windows.get(identifier)
            if state is None or self._clock() >= state.reset_at:
                return self.limit
            return max(0, self.limit - state.count)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _cleanup(self, now: float) -> None:
        expired = [key for key, state in self._windows.items() if now >= state.reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.info("Cleaned up %d expired rate limit windows", len(expired))
