from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable

from ..config import settings

LOGGER = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "Idle"
    ARMED = "Armed"


class DebounceScheduler:
    """Fire ``on_fire`` once after ``quiet_seconds`` without a new ``arm()``.

    Every ``arm()`` or ``cancel()`` bumps the generation; a timer only fires when its
    generation is still current, so a cancelled timer that already left the loop's
    queue cannot fire either.
    """

    def __init__(self, on_fire: Callable[[int], None], quiet_seconds: float | None = None) -> None:
        self._on_fire = on_fire
        self.quiet_seconds = settings.debounce_seconds if quiet_seconds is None else quiet_seconds
        self._generation = 0
        self._handle: asyncio.TimerHandle | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.ARMED if self._handle is not None else SchedulerState.IDLE

    def arm(self) -> int:
        loop = asyncio.get_running_loop()
        self._drop_handle()
        self._generation += 1
        self._handle = loop.call_later(self.quiet_seconds, self._fire, self._generation)
        return self._generation

    def cancel(self) -> None:
        self._drop_handle()
        self._generation += 1

    def flush(self) -> bool:
        """Fire a pending timer right away. Returns whether anything fired."""
        if self._handle is None:
            return False
        self._drop_handle()
        self._fire(self._generation)
        return True

    def _drop_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int) -> None:
        if generation != self._generation:
            LOGGER.debug("Ignoring superseded timer generation=%s current=%s", generation, self._generation)
            return
        self._handle = None
        self._on_fire(generation)


__all__ = ["DebounceScheduler", "SchedulerState"]
