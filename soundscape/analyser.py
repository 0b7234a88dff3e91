from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from .audio import FloatArray


class Analyser:
    """Analysis tap holding the most recent ``fft_size`` post-gain samples."""

    def __init__(self, fft_size: int = 256) -> None:
        self.fft_size = fft_size
        self._window: FloatArray = np.zeros(fft_size, dtype=np.float32)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def push(self, block: FloatArray) -> None:
        if block.size >= self.fft_size:
            window = np.array(block[-self.fft_size :], dtype=np.float32)
        else:
            window = np.concatenate((self._window[block.size :], block.astype(np.float32)))
        # Swap the whole window so readers never see a half-written one.
        self._window = window

    def reset(self) -> None:
        self._window = np.zeros(self.fft_size, dtype=np.float32)

    def float_time_domain(self) -> FloatArray:
        return self._window.copy()

    def byte_time_domain(self, length: int | None = None) -> NDArray[np.uint8]:
        """Time-domain samples mapped to bytes, 128 being silence."""

        count = self.frequency_bin_count if length is None else min(length, self.fft_size)
        window = self._window[:count]
        scaled = np.clip(np.floor(128.0 * (window + 1.0)), 0, 255)
        return scaled.astype(np.uint8)
