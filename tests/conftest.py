from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from soundscape.config import EngineConfig
from soundscape.engine import SoundscapeEngine

TEST_SAMPLE_RATE = 8_000
TEST_FADE = 0.1


class ManualHandle:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Timer service driven by the test instead of a wall clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for handle in sorted(self.pending, key=lambda h: h.when):
            if handle.when <= self.now + 1e-9 and not handle.cancelled:
                handle.fired = True
                handle.callback()

    def fire_all(self) -> None:
        pending = self.pending
        if pending:
            self.advance(max(h.when for h in pending) - self.now)


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., EngineConfig]:
    def _make(**overrides: Any) -> EngineConfig:
        values: dict[str, Any] = {
            "sample_rate": TEST_SAMPLE_RATE,
            "fade_duration": TEST_FADE,
            "noise_duration": 0.5,
            "block_size": 80,
            "asset_root": tmp_path,
        }
        values.update(overrides)
        return EngineConfig(**values)

    return _make


@pytest.fixture
def make_engine(
    make_config: Callable[..., EngineConfig],
    timers: ManualTimers,
) -> Iterator[Callable[..., Awaitable[SoundscapeEngine]]]:
    created: list[SoundscapeEngine] = []

    async def _make(**overrides: Any) -> SoundscapeEngine:
        engine = SoundscapeEngine(
            make_config(**overrides),
            realtime=False,
            timers=timers,
            rng=np.random.default_rng(0),
        )
        await engine.initialize()
        created.append(engine)
        return engine

    yield _make
    for engine in created:
        engine.dispose()
