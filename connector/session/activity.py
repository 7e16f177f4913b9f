import time
from typing import Callable, Optional


class ActivityMonitor:
    """Tracks whether the user did anything since the flag was last consumed.

    UI collaborators (pointer, key and touch handlers) call ``record_activity``;
    the renewal scheduler consumes the flag. Recording is a no-op until
    ``enable`` is called.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._enabled = False
        self._activity_detected = False
        self.last_activity_at: Optional[float] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def activity_detected(self) -> bool:
        return self._activity_detected

    def enable(self) -> None:
        if self._enabled:
            return
        self._enabled = True
        # time spent before watching started is not idle time
        self.last_activity_at = self._clock()

    def disable(self) -> None:
        self._enabled = False
        self._activity_detected = False

    def reset(self, now: Optional[float] = None) -> None:
        """Start a fresh inactivity window (login, restore)."""
        self._activity_detected = False
        self.last_activity_at = self._clock() if now is None else now

    def record_activity(self) -> None:
        if not self._enabled:
            return
        self._activity_detected = True
        self.last_activity_at = self._clock()

    def consume_activity(self) -> bool:
        detected, self._activity_detected = self._activity_detected, False
        return detected
