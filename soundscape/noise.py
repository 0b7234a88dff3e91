"""Procedural noise buffers (white, pink, brown) and their cache.

Pink noise uses Paul Kellet's refined filter: six one-pole sections plus
a direct and a one-sample-delayed white term. Brown noise is a leaky
integrator of white noise. Both recursions are evaluated as IIR filters
with ``scipy.signal.lfilter``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

import numpy as np
from scipy.signal import lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE, FloatArray
from .catalog import NOISE_COLORS, NoiseColor
from .config import NOISE_BUFFER_SECONDS

_LOGGER = logging.getLogger("soundscape.noise")

# (decay, gain) per pink section
PINK_POLES: tuple[tuple[float, float], ...] = (
    (0.99886, 0.0555179),
    (0.99332, 0.0750759),
    (0.96900, 0.1538520),
    (0.86650, 0.3104856),
    (0.55000, 0.5329522),
    (-0.7616, -0.0168980),
)
PINK_DIRECT_GAIN = 0.5362
PINK_DELAYED_GAIN = 0.115926
PINK_OUTPUT_SCALE = 0.11

BROWN_STEP = 0.02
BROWN_LEAK = 1.02
BROWN_MAKEUP_GAIN = 3.5


@dataclass(frozen=True, slots=True)
class NoiseBuffer:
    """Immutable, loopable mono noise samples."""

    color: NoiseColor
    samples: FloatArray
    sample_rate: int

    def __post_init__(self) -> None:
        self.samples.setflags(write=False)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


def _white(num_samples: int, rng: np.random.Generator) -> np.ndarray:
    return rng.uniform(-1.0, 1.0, num_samples)


def _pink(white: np.ndarray) -> np.ndarray:
    out = white * PINK_DIRECT_GAIN
    for decay, gain in PINK_POLES:
        # b[n] = decay * b[n-1] + gain * white[n]
        out += lfilter([gain], [1.0, -decay], white)
    delayed = np.empty_like(white)
    delayed[0] = 0.0
    delayed[1:] = white[:-1] * PINK_DELAYED_GAIN
    out += delayed
    return out * PINK_OUTPUT_SCALE


def _brown(white: np.ndarray) -> np.ndarray:
    # y[n] = (y[n-1] + step * white[n]) / leak, y[-1] = 0
    integrated = lfilter([BROWN_STEP / BROWN_LEAK], [1.0, -1.0 / BROWN_LEAK], white)
    return integrated * BROWN_MAKEUP_GAIN


_SHAPERS = MappingProxyType(
    {
        "white": lambda white: white,
        "pink": _pink,
        "brown": _brown,
    }
)


def generate_noise_buffer(
    color: NoiseColor,
    duration: float = NOISE_BUFFER_SECONDS,
    sample_rate: int = SAMPLE_RATE,
    *,
    rng: np.random.Generator | None = None,
) -> NoiseBuffer:
    """Generate ``int(duration * sample_rate)`` samples of ``color`` noise."""

    if color not in _SHAPERS:
        raise ValueError(f"Unknown noise color: {color}. Valid: {list(NOISE_COLORS)}")
    if duration <= 0 or sample_rate <= 0:
        raise ValueError("duration and sample_rate must be positive")
    generator = rng if rng is not None else np.random.default_rng()
    num_samples = int(duration * sample_rate)
    shaped = _SHAPERS[color](_white(num_samples, generator))
    return NoiseBuffer(
        color=color,
        samples=np.ascontiguousarray(shaped, dtype=np.float32),
        sample_rate=sample_rate,
    )


@dataclass
class NoiseCache:
    """Populate-once mapping from noise color to buffer.

    Only the control thread touches the cache, so get-or-create needs no
    locking.
    """

    sample_rate: int = SAMPLE_RATE
    duration: float = NOISE_BUFFER_SECONDS
    rng: np.random.Generator | None = None
    _buffers: dict[NoiseColor, NoiseBuffer] = field(default_factory=dict, repr=False)
    generation_count: int = 0

    def get_or_create(self, color: NoiseColor) -> NoiseBuffer:
        cached = self._buffers.get(color)
        if cached is not None:
            return cached
        buffer = generate_noise_buffer(color, self.duration, self.sample_rate, rng=self.rng)
        self._buffers[color] = buffer
        self.generation_count += 1
        _LOGGER.debug(
            "Generated %s noise buffer (%d samples @ %d Hz)",
            color,
            len(buffer),
            self.sample_rate,
        )
        return buffer

    def __contains__(self, color: object) -> bool:
        return color in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    @property
    def buffers(self) -> Mapping[NoiseColor, NoiseBuffer]:
        return MappingProxyType(self._buffers)

    def clear(self) -> None:
        self._buffers.clear()
