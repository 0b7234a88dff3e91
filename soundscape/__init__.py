from __future__ import annotations

from .audio import SAMPLE_RATE
from .catalog import (
    NOISE_COLORS,
    SOUND_CATALOG,
    CatalogKey,
    FileBacked,
    GeneratedNoise,
    NoiseColor,
    Oscillator,
    SoundReference,
    resolve_sound,
)
from .config import EngineConfig, EngineConfigUpdate, parse_config, parse_update
from .engine import SoundscapeEngine
from .errors import (
    AssetResolutionError,
    EngineNotInitializedError,
    InitializationError,
    InvalidConfigError,
    InvalidPresetError,
    SoundscapeError,
    UnknownLayerError,
)
from .fades import CrossfadeScheduler, FadeOperation, FadeState, GainTarget
from .layer import Layer, LayerInfo
from .logging_utils import configure_logging as _configure_logging
from .noise import NoiseBuffer, NoiseCache, generate_noise_buffer
from .presets import BUILTIN_PRESETS, Preset, PresetLayer, dump_preset, get_preset, parse_preset

__all__ = [
    "SAMPLE_RATE",
    "NOISE_COLORS",
    "SOUND_CATALOG",
    "BUILTIN_PRESETS",
    "AssetResolutionError",
    "CatalogKey",
    "CrossfadeScheduler",
    "EngineConfig",
    "EngineConfigUpdate",
    "EngineNotInitializedError",
    "FadeOperation",
    "FadeState",
    "FileBacked",
    "GainTarget",
    "GeneratedNoise",
    "InitializationError",
    "InvalidConfigError",
    "InvalidPresetError",
    "Layer",
    "LayerInfo",
    "NoiseBuffer",
    "NoiseCache",
    "NoiseColor",
    "Oscillator",
    "Preset",
    "PresetLayer",
    "SoundReference",
    "SoundscapeEngine",
    "SoundscapeError",
    "UnknownLayerError",
    "dump_preset",
    "generate_noise_buffer",
    "get_preset",
    "parse_config",
    "parse_preset",
    "parse_update",
    "resolve_sound",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
