"""Crossfade scheduling on gain targets.

Every request on a target first cancels whatever the target still has
pending: automation is cancelled and held at "now", and a fade-out
completion task that has not fired yet is cancelled. A later command
therefore always wins over an earlier one, and a stale teardown can never
fire after a newer fade-in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .clock import AudioClock, TimerHandle, Timers
from .config import EngineConfig, clamp_gain
from .logging_utils import report_clock_skew
from .params import AudioParam

_LOGGER = logging.getLogger("soundscape.fades")

# Completion timers firing this far ahead of the ramp end get reported.
SKEW_TOLERANCE_SECONDS = 0.05


class _Unarmed:
    def cancel(self) -> None:
        return None


_UNARMED = _Unarmed()


class FadeState(str, Enum):
    IDLE = "idle"
    FADING_IN = "fading_in"
    STEADY = "steady"
    FADING_OUT = "fading_out"


class FadeKind(str, Enum):
    FADE_IN = "fade_in"
    FADE_OUT = "fade_out"
    VOLUME = "volume"


@dataclass(frozen=True, slots=True)
class FadeOperation:
    kind: FadeKind
    start_value: float
    end_value: float
    duration: float
    start_time: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class GainTarget:
    """A gain stage plus the fade bookkeeping kept for it."""

    def __init__(self, name: str, value: float = 1.0) -> None:
        self.name = name
        self.param = AudioParam(value)
        self.operation: FadeOperation | None = None
        self._completion: tuple[object, TimerHandle] | None = None

    @property
    def completion_pending(self) -> bool:
        return self._completion is not None

    def state_at(self, now: float) -> FadeState:
        op = self.operation
        if op is None:
            return FadeState.IDLE
        in_flight = now < op.end_time
        match op.kind:
            case FadeKind.FADE_IN:
                return FadeState.FADING_IN if in_flight else FadeState.STEADY
            case FadeKind.FADE_OUT:
                return FadeState.FADING_OUT if in_flight or self.completion_pending else FadeState.IDLE
            case _:
                return FadeState.STEADY if op.end_value > 0 or in_flight else FadeState.IDLE

    def __repr__(self) -> str:
        return f"GainTarget({self.name!r}, {self.param!r})"


class CrossfadeScheduler:
    def __init__(self, clock: AudioClock, timers: Timers, config: EngineConfig) -> None:
        self._clock = clock
        self._timers = timers
        self.config = config

    @property
    def now(self) -> float:
        return self._clock.current_time

    def state(self, target: GainTarget) -> FadeState:
        return target.state_at(self.now)

    def _supersede(self, target: GainTarget, now: float) -> float:
        pending = target._completion
        if pending is not None:
            pending[1].cancel()
            target._completion = None
        target.operation = None
        return target.param.cancel_and_hold_at_time(now)

    def cancel(self, target: GainTarget) -> float:
        """Drop pending automation and completion; returns the held value."""

        return self._supersede(target, self.now)

    def fade_in(
        self,
        target: GainTarget,
        to_value: float,
        duration: float | None = None,
    ) -> FadeOperation:
        now = self.now
        self._supersede(target, now)
        end_value = clamp_gain(to_value)
        length = self.config.fade_duration if duration is None else max(0.0, duration)
        if not self.config.enable_crossfade or length == 0:
            target.param.set_value(end_value)
            op = FadeOperation(FadeKind.FADE_IN, end_value, end_value, 0.0, now)
        else:
            target.param.set_value_at_time(0.0, now)
            target.param.linear_ramp_to_value_at_time(end_value, now + length)
            op = FadeOperation(FadeKind.FADE_IN, 0.0, end_value, length, now)
        target.operation = op
        return op

    def fade_out(
        self,
        target: GainTarget,
        duration: float | None = None,
        on_complete: Callable[[], None] | None = None,
    ) -> FadeOperation:
        now = self.now
        held = self._supersede(target, now)
        length = self.config.fade_duration if duration is None else max(0.0, duration)
        op = FadeOperation(FadeKind.FADE_OUT, held, 0.0, length, now)
        target.operation = op
        if length == 0:
            target.param.set_value(0.0)
            if on_complete is not None:
                on_complete()
            return op

        target.param.linear_ramp_to_value_at_time(0.0, now + length)
        if on_complete is not None:
            token = object()

            def _complete() -> None:
                pending = target._completion
                if pending is None or pending[0] is not token:
                    return
                target._completion = None
                fired_at = self._clock.current_time
                lag = op.end_time - fired_at
                if lag > SKEW_TOLERANCE_SECONDS:
                    report_clock_skew(_LOGGER, target.name, lag, audio_elapsed=fired_at - op.start_time)
                on_complete()

            target._completion = (token, _UNARMED)
            handle = self._timers.call_later(length, _complete)
            if target._completion is not None and target._completion[0] is token:
                target._completion = (token, handle)
        return op

    def set_volume(
        self,
        target: GainTarget,
        value: float,
        duration: float | None = None,
    ) -> FadeOperation:
        """Short de-click ramp to ``value``, regardless of the crossfade setting."""

        now = self.now
        held = self._supersede(target, now)
        end_value = clamp_gain(value)
        length = self.config.volume_ramp if duration is None else max(0.0, duration)
        if length == 0:
            target.param.set_value(end_value)
        else:
            target.param.linear_ramp_to_value_at_time(end_value, now + length)
        op = FadeOperation(FadeKind.VOLUME, held, end_value, length, now)
        target.operation = op
        return op
