from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .analyser import Analyser
from .audio import FloatArray
from .catalog import SoundReference
from .config import clamp_gain
from .fades import CrossfadeScheduler, FadeState, GainTarget
from .sources import Source

_LOGGER = logging.getLogger("soundscape.layer")


@dataclass(frozen=True, slots=True)
class LayerInfo:
    id: str
    is_playing: bool
    current_sound: str | None
    volume: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "isPlaying": self.is_playing,
            "currentSound": self.current_sound,
            "volume": self.volume,
        }


class Layer:
    """An independently controllable channel: source -> gain -> analyser -> master.

    The layer owns at most one source. ``remembered_sound`` keeps the last
    requested sound across stops so the engine can resume the layer later.
    """

    def __init__(
        self,
        layer_id: str,
        volume: float,
        scheduler: CrossfadeScheduler,
        *,
        fft_size: int = 256,
    ) -> None:
        self.id = layer_id
        self._volume = clamp_gain(volume)
        self._scheduler = scheduler
        self.gain = GainTarget(f"layer:{layer_id}", self._volume)
        self.analyser = Analyser(fft_size)
        self.source: Source | None = None
        self.current_sound: SoundReference | None = None
        self.remembered_sound: SoundReference | None = None
        self._playing = False

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def is_playing(self) -> bool:
        source = self.source
        return self._playing and source is not None and not source.finished

    @property
    def is_stopping(self) -> bool:
        return self.gain.completion_pending

    @property
    def fade_state(self) -> FadeState:
        return self._scheduler.state(self.gain)

    def retire_source(self) -> None:
        source = self.source
        if source is None:
            return
        self.source = None
        source.stop()

    def attach(self, source: Source) -> None:
        if self.source is not None:
            self.retire_source()
        self.source = source
        self.current_sound = source.reference

    def begin(self, requested: SoundReference) -> None:
        """Fade the freshly bound source in and start it."""

        if self.source is None:
            raise RuntimeError(f"Layer {self.id} has no bound source to start")
        self.remembered_sound = requested
        self._scheduler.fade_in(self.gain, self._volume)
        self.source.start()
        self._playing = True

    def set_volume(self, value: float) -> None:
        self._volume = clamp_gain(value)
        if self.is_stopping:
            # The pending fade-out wins; the new volume applies on next play.
            return
        if self.is_playing:
            self._scheduler.set_volume(self.gain, self._volume)
        else:
            self.gain.param.set_value(self._volume)
            self.gain.operation = None

    def stop(self) -> None:
        if self.is_stopping:
            return
        if self._playing and self._scheduler.config.enable_crossfade:
            self._playing = False
            self._scheduler.fade_out(self.gain, on_complete=self.teardown)
            return
        self.teardown()

    def teardown(self) -> None:
        """Release the source and clear playback state; safe to repeat."""

        if self.source is None and self.current_sound is None and not self._playing:
            return
        self.retire_source()
        self.current_sound = None
        self._playing = False
        self.gain.operation = None
        self.analyser.reset()
        _LOGGER.info("Stopped layer: %s", self.id)

    def render(self, frames: int, start_time: float, sample_rate: int) -> FloatArray | None:
        source = self.source
        if source is None:
            return None
        block = source.render(frames) * self.gain.param.render(start_time, frames, sample_rate)
        self.analyser.push(block)
        return block

    def analyser_samples(self) -> NDArray[np.uint8] | None:
        """Byte waveform while the layer is audible, fade-outs included."""

        if not (self.is_playing or self.is_stopping):
            return None
        return self.analyser.byte_time_domain()

    def info(self) -> LayerInfo:
        current = self.current_sound
        return LayerInfo(
            id=self.id,
            is_playing=self.is_playing,
            current_sound=current.label if current is not None else None,
            volume=self._volume,
        )

    def __repr__(self) -> str:
        return f"Layer({self.id!r}, volume={self._volume:.2f}, playing={self.is_playing})"
