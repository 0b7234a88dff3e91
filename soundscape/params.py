"""Sample-accurate parameter automation.

An :class:`AudioParam` holds an intrinsic value and a timeline of
automation events on the audio clock. The control thread edits the
timeline; the render thread evaluates it per block. The whole state is a
single tuple that is swapped on every edit, so the render thread always
reads a consistent snapshot without locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

import numpy as np

from .audio import FloatArray


@dataclass(frozen=True, slots=True)
class SetValue:
    time: float
    value: float


@dataclass(frozen=True, slots=True)
class LinearRamp:
    time: float
    value: float


AutomationEvent: TypeAlias = SetValue | LinearRamp
_Timeline: TypeAlias = tuple[float, tuple[AutomationEvent, ...]]


class AudioParam:
    def __init__(self, value: float = 1.0, *, min_value: float = 0.0, max_value: float = 1.0) -> None:
        self.min_value = min_value
        self.max_value = max_value
        self._timeline: _Timeline = (self._clamp(value), ())

    def _clamp(self, value: float) -> float:
        return min(self.max_value, max(self.min_value, float(value)))

    @property
    def events(self) -> tuple[AutomationEvent, ...]:
        return self._timeline[1]

    @property
    def has_automation(self) -> bool:
        return bool(self._timeline[1])

    @property
    def intrinsic_value(self) -> float:
        return self._timeline[0]

    def set_value(self, value: float) -> None:
        """Drop all automation and jump to ``value``."""

        self._timeline = (self._clamp(value), ())

    def _insert(self, event: AutomationEvent) -> None:
        base, events = self._timeline
        # Events at the same time keep insertion order.
        kept = tuple(e for e in events if e.time <= event.time)
        later = tuple(e for e in events if e.time > event.time)
        self._timeline = (base, kept + (event,) + later)

    def set_value_at_time(self, value: float, time: float) -> None:
        self._insert(SetValue(time=float(time), value=self._clamp(value)))

    def linear_ramp_to_value_at_time(self, value: float, end_time: float) -> None:
        self._insert(LinearRamp(time=float(end_time), value=self._clamp(value)))

    def cancel_scheduled_values(self, start_time: float) -> None:
        """Remove every event scheduled at or after ``start_time``."""

        base, events = self._timeline
        self._timeline = (base, tuple(e for e in events if e.time < start_time))

    def cancel_and_hold_at_time(self, time: float) -> float:
        """Freeze the param at its value at ``time`` and discard automation.

        Returns the held value.
        """

        held = self.value_at(time)
        self._timeline = (held, (SetValue(time=float(time), value=held),))
        return held

    def value_at(self, time: float) -> float:
        base, events = self._timeline
        value = base
        previous_time: float | None = None
        for event in events:
            if event.time <= time:
                value = event.value
                previous_time = event.time
                continue
            if isinstance(event, LinearRamp) and previous_time is not None:
                span = event.time - previous_time
                fraction = (time - previous_time) / span if span > 0 else 1.0
                return value + (event.value - value) * fraction
            return value
        return value

    def render(self, start_time: float, frames: int, sample_rate: int) -> FloatArray:
        """Evaluate the automation for ``frames`` samples starting at ``start_time``."""

        base, events = self._timeline
        out = np.full(frames, base, dtype=np.float64)
        if not events:
            return out.astype(np.float32)
        times = start_time + np.arange(frames, dtype=np.float64) / sample_rate
        value = base
        previous_time: float | None = None
        for event in events:
            if isinstance(event, LinearRamp) and previous_time is not None:
                span = event.time - previous_time
                inside = (times > previous_time) & (times < event.time)
                if span > 0 and inside.any():
                    out[inside] = value + (event.value - value) * (
                        (times[inside] - previous_time) / span
                    )
            out[times >= event.time] = event.value
            value = event.value
            previous_time = event.time
        return out.astype(np.float32)

    def __repr__(self) -> str:
        base, events = self._timeline
        return f"AudioParam(value={base:.3f}, events={len(events)})"
