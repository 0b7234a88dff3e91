"""Audio context: clock, master bus and output sink.

The render path (``AudioContext.render``) is what the sounddevice
callback runs on its own thread. It only reads engine state: each
layer's source and gain automation snapshot, and the master gain
automation. In offline mode nothing calls it but the owner, so the clock
advances exactly by the frames the owner asks for.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Protocol

import numpy as np

from .audio import FloatArray, to_channels
from .clock import AudioClock
from .errors import InitializationError
from .fades import GainTarget
from .logging_utils import RenderFaultReporter

_LOGGER = logging.getLogger("soundscape.context")


class BusInput(Protocol):
    def render(self, frames: int, start_time: float, sample_rate: int) -> FloatArray | None: ...


class ContextState(str, Enum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    CLOSED = "closed"


def _load_sounddevice() -> Any | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    return sd_module


class AudioContext:
    def __init__(
        self,
        inputs: Mapping[str, BusInput],
        *,
        sample_rate: int,
        channels: int = 2,
        block_size: int = 512,
        master_volume: float = 1.0,
    ) -> None:
        self.inputs = inputs
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_size = block_size
        self.clock = AudioClock(sample_rate)
        self.master = GainTarget("master", master_volume)
        self.state = ContextState.SUSPENDED
        self._stream: Any | None = None
        self.faults = RenderFaultReporter(_LOGGER)

    @property
    def current_time(self) -> float:
        return self.clock.current_time

    @property
    def realtime(self) -> bool:
        return self._stream is not None

    def open_output(self) -> None:
        """Open the sounddevice output stream (left stopped until resume)."""

        sd = _load_sounddevice()
        if sd is None:
            raise InitializationError("Realtime playback requires the sounddevice package")
        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                blocksize=self.block_size,
                channels=self.channels,
                dtype="float32",
                callback=self._callback,
            )
        except Exception as exc:
            raise InitializationError(f"Failed to open audio output: {exc}") from exc

    async def resume(self) -> None:
        if self.state is ContextState.CLOSED:
            raise InitializationError("Audio context is closed")
        if self.state is ContextState.RUNNING:
            return
        if self._stream is not None:
            self._stream.start()
        self.state = ContextState.RUNNING
        _LOGGER.debug("Audio context resumed at t=%.3fs", self.current_time)

    async def suspend(self) -> None:
        if self.state is not ContextState.RUNNING:
            return
        if self._stream is not None:
            self._stream.stop()
        self.state = ContextState.SUSPENDED
        _LOGGER.debug("Audio context suspended at t=%.3fs", self.current_time)

    def render(self, frames: int | None = None) -> FloatArray:
        """Mix every input through the master gain; returns ``(frames, channels)``."""

        count = self.block_size if frames is None else frames
        if self.state is not ContextState.RUNNING:
            return np.zeros((count, self.channels), dtype=np.float32)
        start = self.clock.current_time
        mix = np.zeros(count, dtype=np.float32)
        for bus_input in list(self.inputs.values()):
            block = bus_input.render(count, start, self.sample_rate)
            if block is not None:
                mix += block
        mix *= self.master.param.render(start, count, self.sample_rate)
        self.clock.advance(count)
        return to_channels(mix, self.channels)

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            _LOGGER.debug("Output stream status: %s", status)
        try:
            outdata[:] = self.render(frames)
        except Exception as exc:
            self.faults.failure(exc, audio_time=self.current_time)
            outdata.fill(0)
        else:
            self.faults.success()

    def close(self) -> None:
        if self.state is ContextState.CLOSED:
            return
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                if self.state is ContextState.RUNNING:
                    stream.stop()
            finally:
                stream.close()
        self.state = ContextState.CLOSED
        _LOGGER.debug("Audio context closed at t=%.3fs", self.current_time)
