from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

_LOGGER = logging.getLogger("soundscape.clock")


class AudioClock:
    """Monotonic audio time derived from the number of rendered frames.

    Only the render path advances the clock; while the context is
    suspended no frames are rendered and the clock stands still.
    """

    def __init__(self, sample_rate: int) -> None:
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        self.sample_rate = sample_rate
        self._frames = 0

    @property
    def frames(self) -> int:
        return self._frames

    @property
    def current_time(self) -> float:
        return self._frames / self.sample_rate

    def advance(self, frames: int) -> None:
        if frames < 0:
            raise ValueError("the audio clock cannot run backwards")
        self._frames += frames


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    """Wall-clock timer service used for fade completion callbacks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopTimers:
    """Timers backed by the asyncio loop that issues engine commands.

    Callbacks run on the loop thread, the same thread as every other
    command, so completion callbacks never race with commands.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @classmethod
    def for_running_loop(cls) -> "LoopTimers":
        return cls(asyncio.get_running_loop())

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        if self._loop.is_closed():
            _LOGGER.warning("Timer loop is closed; running callback immediately")
            callback()
            return _DoneHandle()
        return self._loop.call_later(max(0.0, delay), callback)


class _DoneHandle:
    def cancel(self) -> None:
        return None
