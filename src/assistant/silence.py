"""
Silence detection for auto-stopping a recording.

The monitor is a polling, level-triggered detector. Every tick it reads the
analysis window and compares its peak deviation from the zero level against a
threshold:

- silent tick, no timer pending: arm one timer for the silence duration
- silent tick, timer expired: fire once and end the loop
- loud tick: drop any pending timer

Silent ticks never re-arm a pending timer, so silence has to last the full
duration without interruption. The clock is injectable so tests can drive
time deterministically.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from src.assistant.audio import max_deviation

logger = structlog.get_logger(__name__)


@dataclass
class SilenceTimer:
    """Pending auto-stop, armed on the first silent tick."""
    armed_at: float
    deadline: float

    def expired(self, now: float) -> bool:
        return now >= self.deadline


class SilenceMonitor:
    def __init__(
        self,
        read_sample: Callable[[], Sequence[int]],
        on_silence: Callable[[], Awaitable[Any]],
        *,
        threshold: float,
        duration_s: float,
        interval_s: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.duration_s = duration_s
        self.interval_s = interval_s
        self._read_sample = read_sample
        self._on_silence = on_silence
        self._clock = clock
        self._timer: Optional[SilenceTimer] = None
        self._running = False

    @property
    def timer(self) -> Optional[SilenceTimer]:
        return self._timer

    @property
    def is_running(self) -> bool:
        return self._running

    def check(self) -> bool:
        """
        Run one silence check.

        Returns:
            True when a pending timer has expired (the caller should stop)
        """
        now = self._clock()
        deviation = max_deviation(self._read_sample())

        if deviation <= self.threshold:
            if self._timer is None:
                self._timer = SilenceTimer(armed_at=now, deadline=now + self.duration_s)
                logger.debug("Silence timer armed", deviation=round(deviation, 4))
            elif self._timer.expired(now):
                self._timer = None
                return True
        elif self._timer is not None:
            self._timer = None
            logger.debug("Silence timer cancelled", deviation=round(deviation, 4))

        return False

    def cancel_timer(self) -> None:
        self._timer = None

    def stop(self) -> None:
        self._running = False
        self._timer = None

    async def run(self) -> None:
        """Check once per tick until stopped or until silence fires."""
        self._running = True
        try:
            while self._running:
                if self.check():
                    self._running = False
                    logger.info("Silence detected, stopping recording", silence_s=self.duration_s)
                    await self._on_silence()
                    return
                await asyncio.sleep(self.interval_s)
        finally:
            self._running = False
            self._timer = None
