"""
Periodic timers scheduled on the event loop.
"""

import asyncio
import inspect
import logging
import math
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


def frame_interval_ms(framerate: float) -> int:
    """Snapshot period for a frame-capture rate: ceil(1000 / framerate)."""
    if framerate <= 0:
        raise ValueError(f"framerate must be positive, got {framerate}")
    return math.ceil(1000 / framerate)


def format_recording_time(seconds: float) -> str:
    """Format elapsed recording time as MM:SS.s (75.3 -> '01:15.3')."""
    tenths = int(round(max(seconds, 0.0) * 10))
    minutes, rest = divmod(tenths, 600)
    return f"{minutes:02d}:{rest // 10:02d}.{rest % 10}"


class PeriodicTimer:
    """
    Calls a callback every interval_ms until cancelled.

    The first call happens one interval after start(). Callback errors are
    logged and do not stop the timer.
    """

    def __init__(
        self,
        interval_ms: int,
        callback: Callable[[], Awaitable[None] | None],
        name: str = "timer",
    ):
        self.interval_ms = interval_ms
        self.name = name
        self._callback = callback
        self._task: asyncio.Task | None = None
        self._ticks = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self) -> None:
        if self.active:
            raise RuntimeError(f"Timer '{self.name}' already running")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug(f"Timer '{self.name}' started: every {self.interval_ms}ms")

    async def _run(self) -> None:
        interval = self.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self._ticks += 1
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Timer '{self.name}' callback error: {e}")

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug(f"Timer '{self.name}' cancelled after {self._ticks} ticks")
