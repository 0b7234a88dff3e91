"""The soundscape engine: layer registry, master bus and command surface.

All commands are issued from one thread (the asyncio loop that called
:meth:`SoundscapeEngine.initialize`). Only the commands that need a
running audio context are coroutines; everything else is synchronous.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .audio import FloatArray
from .catalog import FileBacked, Oscillator, SoundReference, resolve_sound
from .clock import LoopTimers, Timers
from .config import ConfigInput, EngineConfig, UpdateInput, clamp_gain, coerce_config, coerce_update
from .context import AudioContext
from .errors import AssetResolutionError, EngineNotInitializedError, UnknownLayerError
from .fades import CrossfadeScheduler
from .layer import Layer, LayerInfo
from .noise import NoiseCache
from .presets import BUILTIN_PRESETS, Preset, PresetInput, PresetLayer, get_preset, parse_preset
from .sources import Source, SourceBinder

_LOGGER = logging.getLogger("soundscape.engine")


class SoundscapeEngine:
    """Blends independently controllable layers into one output bus.

    Example:
        engine = SoundscapeEngine({"fadeDuration": 2.0})
        await engine.initialize()
        engine.create_layer("noise", 0.4)
        await engine.play("noise", "noise", "pink")
        ...
        engine.stop("noise")
        engine.dispose()

    ``realtime=False`` skips the output device: the clock then advances only
    through :meth:`render`. ``timers`` replaces the loop-backed timer service
    used for fade-out completion.
    """

    def __init__(
        self,
        config: ConfigInput = None,
        *,
        realtime: bool = True,
        timers: Timers | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.config: EngineConfig = coerce_config(config)
        self.realtime = realtime
        self._timers = timers
        self._rng = rng
        self._layers: dict[str, Layer] = {}
        self._context: AudioContext | None = None
        self._scheduler: CrossfadeScheduler | None = None
        self._binder: SourceBinder | None = None
        self._noise_cache: NoiseCache | None = None
        self._master_volume = self.config.master_volume

    async def __aenter__(self) -> "SoundscapeEngine":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._context is not None

    async def initialize(self) -> None:
        """Create the audio context, master bus and output stream.

        Raises InitializationError when the output cannot be opened.
        """

        if self.is_initialized:
            return
        config = self.config
        timers = self._timers if self._timers is not None else LoopTimers.for_running_loop()
        context = AudioContext(
            self._layers,
            sample_rate=config.sample_rate,
            channels=config.channels,
            block_size=config.block_size,
            master_volume=self._master_volume,
        )
        if self.realtime:
            try:
                context.open_output()
            except Exception as exc:
                _LOGGER.error("Failed to initialize audio engine: %s", exc)
                raise
        noise_cache = NoiseCache(
            sample_rate=config.sample_rate,
            duration=config.noise_duration,
            rng=self._rng,
        )
        self._noise_cache = noise_cache
        self._scheduler = CrossfadeScheduler(context.clock, timers, config)
        self._binder = SourceBinder(noise_cache, config, context.sample_rate)
        self._context = context
        _LOGGER.info(
            "Audio engine initialized (%d Hz, %s)",
            config.sample_rate,
            "realtime" if self.realtime else "offline",
        )

    async def resume(self) -> None:
        """Resume a suspended context; no-op when already running."""

        await self._require_context().resume()

    async def suspend(self) -> None:
        await self._require_context().suspend()

    def dispose(self) -> None:
        """Stop every layer, release the noise cache and close the context."""

        context = self._context
        if context is None:
            return
        scheduler = self._require_scheduler()
        for layer in list(self._layers.values()):
            scheduler.cancel(layer.gain)
            layer.teardown()
        scheduler.cancel(context.master)
        context.close()
        if self._noise_cache is not None:
            self._noise_cache.clear()
        self._layers.clear()
        self._context = None
        self._scheduler = None
        self._binder = None
        self._noise_cache = None
        _LOGGER.info("Audio engine disposed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_context(self) -> AudioContext:
        if self._context is None:
            raise EngineNotInitializedError("Audio engine not initialized")
        return self._context

    def _require_scheduler(self) -> CrossfadeScheduler:
        if self._scheduler is None:
            raise EngineNotInitializedError("Audio engine not initialized")
        return self._scheduler

    def _require_binder(self) -> SourceBinder:
        if self._binder is None:
            raise EngineNotInitializedError("Audio engine not initialized")
        return self._binder

    def _require_layer(self, layer_id: str) -> Layer:
        layer = self._layers.get(layer_id)
        if layer is None:
            raise UnknownLayerError(f"Layer {layer_id} not found")
        return layer

    def _lookup(self, layer_id: str, command: str) -> Layer | None:
        layer = self._layers.get(layer_id)
        if layer is None:
            _LOGGER.warning("Ignoring %s for unknown layer %s", command, layer_id)
        return layer

    def _start(self, layer: Layer, reference: SoundReference) -> Source:
        source = self._require_binder().bind(layer, reference)
        layer.begin(reference)
        _LOGGER.info("Playing %s on layer %s", source.reference.label, layer.id)
        return source

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @property
    def layers(self) -> Mapping[str, Layer]:
        return MappingProxyType(self._layers)

    @property
    def noise_cache(self) -> NoiseCache | None:
        return self._noise_cache

    @property
    def context(self) -> AudioContext | None:
        return self._context

    @property
    def master_volume(self) -> float:
        return self._master_volume

    def create_layer(self, layer_id: str, volume: float | None = None) -> Layer:
        """Create a layer, or return the existing one unchanged."""

        scheduler = self._require_scheduler()
        existing = self._layers.get(layer_id)
        if existing is not None:
            _LOGGER.warning("Layer %s already exists", layer_id)
            return existing
        initial = self.config.default_layer_volume if volume is None else volume
        layer = Layer(layer_id, initial, scheduler, fft_size=self.config.analyser_fft_size)
        self._layers[layer_id] = layer
        _LOGGER.info("Created layer: %s", layer_id)
        return layer

    async def play(self, layer_id: str, category: str, name: str) -> Source:
        """Play a catalog sound on a layer.

        Raises UnknownLayerError for a missing layer. Sounds that cannot be
        found or decoded fall back to a tone instead of failing.
        """

        await self.resume()
        layer = self._require_layer(layer_id)
        try:
            reference: SoundReference = resolve_sound(category, name)
        except AssetResolutionError as exc:
            _LOGGER.error("%s; playing fallback tone on layer %s", exc, layer_id)
            reference = Oscillator(self.config.fallback_frequency)
        return self._start(layer, reference)

    async def play_reference(self, layer_id: str, reference: SoundReference) -> Source:
        await self.resume()
        return self._start(self._require_layer(layer_id), reference)

    def stop(self, layer_id: str) -> None:
        layer = self._lookup(layer_id, "stop")
        if layer is not None:
            layer.stop()

    def stop_all(self) -> None:
        for layer in list(self._layers.values()):
            if layer.is_playing:
                layer.stop()

    async def play_all(self) -> list[str]:
        """Resume every stopped layer that remembers a sound; returns their ids."""

        await self.resume()
        resumed: list[str] = []
        for layer in list(self._layers.values()):
            reference = layer.remembered_sound
            if reference is None or layer.is_playing:
                continue
            self._start(layer, reference)
            resumed.append(layer.id)
        return resumed

    def set_layer_volume(self, layer_id: str, volume: float) -> None:
        layer = self._lookup(layer_id, "set_layer_volume")
        if layer is not None:
            layer.set_volume(volume)

    def set_master_volume(self, volume: float) -> None:
        self._master_volume = clamp_gain(volume)
        if self._context is None:
            return
        self._require_scheduler().set_volume(self._context.master, self._master_volume)

    def get_layer_info(self, layer_id: str) -> LayerInfo | None:
        layer = self._lookup(layer_id, "get_layer_info")
        return layer.info() if layer is not None else None

    def get_active_layers_count(self) -> int:
        return sum(1 for layer in self._layers.values() if layer.is_playing)

    def get_analyser_samples(self, layer_id: str) -> NDArray[np.uint8] | None:
        layer = self._lookup(layer_id, "get_analyser_samples")
        return layer.analyser_samples() if layer is not None else None

    def update_config(self, update: UpdateInput) -> EngineConfig:
        """Apply a partial config update at runtime."""

        parsed = coerce_update(update)
        changes = parsed.changes()
        config = parsed.apply_to(self.config)
        self.config = config
        if self._scheduler is not None:
            self._scheduler.config = config
        if self._binder is not None:
            self._binder.config = config
        if "loop_layers" in changes:
            for layer in self._layers.values():
                if isinstance(layer.current_sound, FileBacked) and layer.source is not None:
                    layer.source.loop = config.loop_layers
        if "master_volume" in changes:
            self.set_master_volume(config.master_volume)
        if "sample_rate" in changes and self.is_initialized:
            _LOGGER.info("sample_rate change takes effect on the next initialize()")
        _LOGGER.debug("Engine config updated: %s", changes)
        return config

    async def apply_preset(self, preset: PresetInput) -> Preset:
        """Stop everything, then set up each preset layer (category = layer id)."""

        if isinstance(preset, str) and preset in BUILTIN_PRESETS:
            parsed = get_preset(preset)
        else:
            parsed = parse_preset(preset)
        await self.resume()
        self.stop_all()
        for layer_id, entry in parsed:
            if layer_id in self._layers:
                self.set_layer_volume(layer_id, entry.volume)
            else:
                self.create_layer(layer_id, entry.volume)
            if entry.sound:
                await self.play(layer_id, layer_id, entry.sound)
        return parsed

    def snapshot_preset(self) -> Preset:
        layers: dict[str, PresetLayer] = {}
        for layer_id, layer in self._layers.items():
            remembered = layer.remembered_sound
            key = remembered.key if remembered is not None else None
            layers[layer_id] = PresetLayer(sound=key.name if key is not None else None, volume=layer.volume)
        return Preset(layers)

    # ------------------------------------------------------------------
    # Offline rendering
    # ------------------------------------------------------------------

    def render(self, frames: int | None = None) -> FloatArray:
        """Render one block from the master bus; ``(frames, channels)``."""

        return self._require_context().render(frames)

    def render_seconds(self, seconds: float) -> FloatArray:
        context = self._require_context()
        total = int(round(seconds * context.sample_rate))
        blocks: list[FloatArray] = []
        remaining = total
        while remaining > 0:
            count = min(context.block_size, remaining)
            blocks.append(context.render(count))
            remaining -= count
        if not blocks:
            return np.zeros((0, context.channels), dtype=np.float32)
        return np.concatenate(blocks, axis=0)

    def __repr__(self) -> str:
        state: Any = self._context.state.value if self._context is not None else "uninitialized"
        return f"SoundscapeEngine(state={state}, layers={len(self._layers)})"
