"""Playable sources and the binder that attaches them to layers."""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import soundfile as sf  # type: ignore[import]
from scipy.signal import resample_poly  # type: ignore[import]

from .audio import FloatArray
from .catalog import FileBacked, GeneratedNoise, Oscillator, SoundReference
from .config import EngineConfig
from .errors import AssetResolutionError
from .noise import NoiseCache

if TYPE_CHECKING:
    from .layer import Layer

_LOGGER = logging.getLogger("soundscape.sources")


class Source(ABC):
    """A sound-producing unit owned by exactly one layer.

    ``render`` runs on the audio thread; ``start``/``stop`` on the control
    thread. A stopped source renders silence and cannot be restarted.
    """

    def __init__(self, reference: SoundReference, *, loop: bool = False) -> None:
        self.reference = reference
        self.loop = loop
        self._started = False
        self._stopped = False
        self._finished = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def active(self) -> bool:
        return self._started and not self._stopped and not self._finished

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError(f"{type(self).__name__} cannot be restarted once stopped")
        self._started = True

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.close()

    def close(self) -> None:
        return None

    def render(self, frames: int) -> FloatArray:
        if not self.active:
            return np.zeros(frames, dtype=np.float32)
        return self._render(frames)

    @abstractmethod
    def _render(self, frames: int) -> FloatArray: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.reference.label!r}, active={self.active})"


class BufferSource(Source):
    """Plays an in-memory sample array, optionally looping."""

    def __init__(self, reference: SoundReference, samples: FloatArray, *, loop: bool = True) -> None:
        super().__init__(reference, loop=loop)
        self.samples = samples
        self._position = 0

    def _render(self, frames: int) -> FloatArray:
        total = len(self.samples)
        if total == 0:
            self._finished = True
            return np.zeros(frames, dtype=np.float32)
        if self.loop:
            indices = (self._position + np.arange(frames)) % total
            self._position = int((self._position + frames) % total)
            return np.asarray(self.samples[indices], dtype=np.float32)
        out = np.zeros(frames, dtype=np.float32)
        chunk = self.samples[self._position : self._position + frames]
        out[: len(chunk)] = chunk
        self._position += len(chunk)
        if self._position >= total:
            self._finished = True
        return out


class OscillatorSource(Source):
    """Continuous, phase-continuous sine wave."""

    def __init__(self, reference: Oscillator, sample_rate: int) -> None:
        super().__init__(reference, loop=False)
        self.frequency = reference.frequency_hz
        self.sample_rate = sample_rate
        self._phase = 0.0

    def _render(self, frames: int) -> FloatArray:
        step = 2.0 * math.pi * self.frequency / self.sample_rate
        phases = self._phase + step * np.arange(frames, dtype=np.float64)
        self._phase = float((self._phase + step * frames) % (2.0 * math.pi))
        return np.sin(phases).astype(np.float32)


class FileSource(Source):
    """Streams a decoded file block by block, mixed down to mono."""

    def __init__(self, reference: FileBacked, handle: sf.SoundFile, *, loop: bool) -> None:
        super().__init__(reference, loop=loop)
        self._handle = handle
        # Guards the file handle between the audio thread and close().
        self._lock = threading.Lock()

    def _read(self, frames: int) -> FloatArray:
        block = self._handle.read(frames, dtype="float32", always_2d=True)
        return block.mean(axis=1).astype(np.float32)

    def _render(self, frames: int) -> FloatArray:
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            if self._handle.closed:
                return out
            filled = 0
            while filled < frames:
                chunk = self._read(frames - filled)
                out[filled : filled + len(chunk)] = chunk
                filled += len(chunk)
                if filled >= frames:
                    break
                if not self.loop:
                    self._finished = True
                    break
                self._handle.seek(0)
        return out

    def close(self) -> None:
        with self._lock:
            if not self._handle.closed:
                self._handle.close()


def open_file_source(reference: FileBacked, path: Path, sample_rate: int, *, loop: bool) -> Source:
    """Open ``path`` for playback at ``sample_rate``.

    Files at the context rate are streamed; other rates are decoded and
    resampled in memory.
    """

    if not path.is_file():
        raise AssetResolutionError(f"Audio asset not found: {path}")
    try:
        handle = sf.SoundFile(path)
    except (RuntimeError, OSError) as exc:
        raise AssetResolutionError(f"Cannot decode {path}: {exc}") from exc
    if handle.frames == 0:
        handle.close()
        raise AssetResolutionError(f"Audio asset is empty: {path}")
    source_rate = handle.samplerate
    if source_rate == sample_rate:
        return FileSource(reference, handle, loop=loop)
    try:
        decoded = handle.read(dtype="float32", always_2d=True).mean(axis=1)
    except (RuntimeError, OSError) as exc:
        raise AssetResolutionError(f"Cannot decode {path}: {exc}") from exc
    finally:
        handle.close()
    divisor = math.gcd(source_rate, sample_rate)
    resampled = resample_poly(decoded, sample_rate // divisor, source_rate // divisor)
    _LOGGER.debug("Resampled %s from %d Hz to %d Hz", path, source_rate, sample_rate)
    return BufferSource(reference, np.asarray(resampled, dtype=np.float32), loop=loop)


class SourceBinder:
    """Resolves sound references and binds the result to a layer."""

    def __init__(self, noise_cache: NoiseCache, config: EngineConfig, sample_rate: int) -> None:
        self.noise_cache = noise_cache
        self.config = config
        self.sample_rate = sample_rate

    def asset_path(self, reference: FileBacked) -> Path:
        path = reference.path.expanduser()
        return path if path.is_absolute() else self.config.asset_root / path

    def resolve(self, reference: SoundReference) -> Source:
        match reference:
            case GeneratedNoise(color=color):
                buffer = self.noise_cache.get_or_create(color)
                return BufferSource(reference, buffer.samples, loop=True)
            case Oscillator():
                return OscillatorSource(reference, self.sample_rate)
            case FileBacked():
                return open_file_source(
                    reference,
                    self.asset_path(reference),
                    self.sample_rate,
                    loop=self.config.loop_layers,
                )
            case _:
                raise AssetResolutionError(f"Unsupported sound reference: {reference!r}")

    def fallback(self) -> Source:
        return OscillatorSource(Oscillator(self.config.fallback_frequency), self.sample_rate)

    def bind(self, layer: "Layer", reference: SoundReference) -> Source:
        """Resolve ``reference`` and swap it in for the layer's current source.

        The old source is only retired once a replacement exists. Resolution
        failures never propagate: the layer gets the fallback tone instead
        and the failure is logged.
        """

        try:
            source = self.resolve(reference)
        except (AssetResolutionError, ValueError) as exc:
            _LOGGER.error(
                "Failed to load %s for layer %s, playing %gHz fallback tone: %s",
                reference.label,
                layer.id,
                self.config.fallback_frequency,
                exc,
            )
            source = self.fallback()
        layer.attach(source)
        return source
