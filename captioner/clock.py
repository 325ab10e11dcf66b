"""
Media Clock - the playhead of a loaded video.

Stands in for a media element's native clock: while playing, the current
time advances with the wall clock (time.perf_counter) from the point where
playback started; pause freezes it and seek snaps it. The time source is
injectable so tests can drive the clock by hand.
"""

import time
import threading
from typing import Callable

TimeFn = Callable[[], float]


class MediaClock:
    """Wall-clock driven playhead in seconds, clamped to [0, duration]."""

    def __init__(self, duration: float, time_fn: TimeFn = time.perf_counter):
        if duration < 0:
            raise ValueError(f"Duration must be >= 0, got {duration}")
        self.duration = float(duration)
        self._time_fn = time_fn
        self._lock = threading.Lock()
        self._position = 0.0          # media time at the last anchor
        self._anchor = None           # wall time when playback started

    @property
    def playing(self) -> bool:
        return self._anchor is not None

    @property
    def ended(self) -> bool:
        return self.duration > 0 and self.current_time() >= self.duration

    def current_time(self) -> float:
        with self._lock:
            return self._now_locked()

    def play(self):
        """Start advancing. Playing from the end restarts at 0."""
        with self._lock:
            if self._anchor is not None:
                return
            if self._position >= self.duration:
                self._position = 0.0
            self._anchor = self._time_fn()

    def pause(self):
        with self._lock:
            self._position = self._now_locked()
            self._anchor = None

    def seek(self, t: float) -> float:
        """Jump to t (clamped); keeps playing if it was playing."""
        with self._lock:
            self._position = max(0.0, min(self.duration, float(t)))
            if self._anchor is not None:
                self._anchor = self._time_fn()
            return self._position

    def _now_locked(self) -> float:
        if self._anchor is None:
            return self._position
        elapsed = self._time_fn() - self._anchor
        return min(self.duration, self._position + elapsed)
