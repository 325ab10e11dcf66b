"""
Cooperative yielding between chunks of long-running work.

Long loops (down-mixing, resampling, inference progress, export frames)
call tick() once per chunk. Every `every` ticks the worker gives up its
time slice and, if system CPU usage is above the configured ceiling,
backs off briefly so the interface thread stays responsive.
"""

import time
import logging
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


class CooperativeYield:
    """Explicit yield point with optional CPU back-off."""

    def __init__(
        self,
        every: int = 5,
        max_cpu_percent: Optional[int] = None,
        check_interval: float = 2.0,
    ):
        """
        Args:
            every: Yield once per this many ticks.
            max_cpu_percent: Back off when CPU usage exceeds this. None disables.
            check_interval: Minimum seconds between CPU usage samples.
        """
        self.every = max(1, every)
        self.max_cpu_percent = max_cpu_percent
        self.check_interval = check_interval
        self._ticks = 0
        self._last_check = 0.0
        self._backoffs = 0

    def tick(self):
        """Count one chunk of work; yield on every `every`-th chunk."""
        if self._ticks % self.every == 0:
            self.yield_now()
        self._ticks += 1

    def yield_now(self):
        time.sleep(0)
        if self.max_cpu_percent is None:
            return

        now = time.monotonic()
        if now - self._last_check < self.check_interval:
            return
        self._last_check = now

        usage = psutil.cpu_percent(interval=None)
        if usage > self.max_cpu_percent:
            self._backoffs += 1
            pause = min(0.5, (usage - self.max_cpu_percent) / 200.0 + 0.05)
            if self._backoffs <= 3 or self._backoffs % 10 == 0:
                logger.debug(
                    f"CPU at {usage:.0f}% (limit: {self.max_cpu_percent}%), "
                    f"backing off {pause:.2f}s (#{self._backoffs})"
                )
            time.sleep(pause)

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def total_backoffs(self) -> int:
        return self._backoffs
