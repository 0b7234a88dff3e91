from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray

from .errors import InvalidConfigError

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100


def ensure_audio_contract(
    audio: AudioNumbers,
    *,
    check_peak: bool = True,
) -> FloatArray:
    """Normalize dtype and range to the output contract.

    Mono input is flattened; ``(frames, channels)`` input keeps its shape.
    """

    samples: FloatArray = np.asarray(audio, dtype=np.float32)
    if samples.ndim != 2:
        samples = samples.reshape(-1)
    if samples.size == 0 or not check_peak:
        return samples
    peak = float(np.max(np.abs(samples)))
    if peak > 1.0:
        samples = samples / peak
    return samples


def to_channels(mono: FloatArray, channels: int) -> FloatArray:
    """Spread a mono block across ``channels`` output columns."""

    if channels < 1:
        raise InvalidConfigError(f"channels must be positive, got {channels}")
    column = np.asarray(mono, dtype=np.float32).reshape(-1, 1)
    if channels == 1:
        return column
    return np.repeat(column, channels, axis=1)


def iter_chunks(chunks: Iterable[AudioNumbers]) -> Iterator[FloatArray]:
    """Yield chunks that already respect the audio contract."""

    for chunk in chunks:
        yield ensure_audio_contract(chunk)


def write_wav(
    path: str | Path,
    audio_or_chunks: AudioNumbers | Iterable[AudioNumbers],
    *,
    sample_rate: int = SAMPLE_RATE,
    channels: int = 1,
) -> Path:
    """Write a full array or a chunk iterator to a float wav file."""

    target = Path(path)
    match audio_or_chunks:
        case np.ndarray() as array:
            normalized = ensure_audio_contract(array)
            sf.write(target, normalized, sample_rate, subtype="FLOAT")
            return target
        case str() | bytes():
            raise InvalidConfigError("audio_or_chunks must be audio samples or chunk iterables")
        case Sequence() as sequence if all(isinstance(item, (int, float)) for item in sequence):
            normalized = ensure_audio_contract(np.asarray(sequence, dtype=np.float32))
            sf.write(target, normalized, sample_rate, subtype="FLOAT")
            return target
        case Iterable() as chunks:
            pass
        case _:
            raise InvalidConfigError("audio_or_chunks must be audio samples or chunk iterables")

    with sf.SoundFile(
        target,
        mode="w",
        samplerate=sample_rate,
        channels=channels,
        subtype="FLOAT",
    ) as handle:
        for chunk in iter_chunks(chunks):
            handle.write(chunk)

    return target
