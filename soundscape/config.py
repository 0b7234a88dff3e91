from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .audio import SAMPLE_RATE
from .errors import InvalidConfigError

_LOGGER = logging.getLogger("soundscape.config")
_ASSET_DIR_ENV = "SOUNDSCAPE_ASSET_DIR"

DEFAULT_FADE_DURATION = 1.0
DEFAULT_MASTER_VOLUME = 0.7
DEFAULT_LAYER_VOLUME = 0.6
VOLUME_RAMP_SECONDS = 0.05
NOISE_BUFFER_SECONDS = 2.0
FALLBACK_FREQUENCY = 220.0


def default_asset_root() -> Path:
    configured = os.environ.get(_ASSET_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path("assets") / "audio"


def clamp_gain(value: float) -> float:
    """Clamp a gain value to [0, 1]."""

    return min(1.0, max(0.0, float(value)))


class EngineConfig(BaseModel):
    """Runtime options of the mixer engine.

    Field names are snake_case; the camelCase spellings used by UI
    payloads (``fadeDuration``, ``enableCrossfade``, ...) are accepted too.
    """

    fade_duration: float = Field(default=DEFAULT_FADE_DURATION, ge=0.0)
    enable_crossfade: bool = True
    loop_layers: bool = True
    sample_rate: int = Field(default=SAMPLE_RATE, gt=0)

    master_volume: float = Field(default=DEFAULT_MASTER_VOLUME, ge=0.0, le=1.0)
    default_layer_volume: float = Field(default=DEFAULT_LAYER_VOLUME, ge=0.0, le=1.0)
    volume_ramp: float = Field(default=VOLUME_RAMP_SECONDS, ge=0.0)
    noise_duration: float = Field(default=NOISE_BUFFER_SECONDS, gt=0.0)
    fallback_frequency: float = Field(default=FALLBACK_FREQUENCY, gt=0.0)
    channels: int = Field(default=2, ge=1, le=2)
    block_size: int = Field(default=512, gt=0)
    analyser_fft_size: int = Field(default=256, ge=32, le=32_768)
    asset_root: Path = Field(default_factory=default_asset_root)

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("analyser_fft_size")
    @classmethod
    def _power_of_two(cls, value: int) -> int:
        if value & (value - 1):
            raise ValueError(f"analyser_fft_size must be a power of two, got {value}")
        return value


class EngineConfigUpdate(BaseModel):
    """Strict partial update applied with :meth:`apply_to`."""

    fade_duration: float | None = Field(default=None, ge=0.0)
    enable_crossfade: bool | None = None
    loop_layers: bool | None = None
    sample_rate: int | None = Field(default=None, gt=0)

    master_volume: float | None = Field(default=None, ge=0.0, le=1.0)
    default_layer_volume: float | None = Field(default=None, ge=0.0, le=1.0)
    volume_ramp: float | None = Field(default=None, ge=0.0)
    fallback_frequency: float | None = Field(default=None, gt=0.0)
    asset_root: Path | None = None

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def apply_to(self, base: EngineConfig) -> EngineConfig:
        return base.model_copy(update=self.changes())


ConfigInput = EngineConfig | Mapping[str, Any] | None
UpdateInput = EngineConfigUpdate | Mapping[str, Any]


def parse_config(payload: Mapping[str, Any]) -> EngineConfig:
    """Parse a config payload, raising InvalidConfigError on failure."""

    try:
        return EngineConfig.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse engine config: %s", exc)
        raise InvalidConfigError(str(exc)) from exc


def parse_update(payload: Mapping[str, Any]) -> EngineConfigUpdate:
    """Parse a strict update payload, raising InvalidConfigError on failure."""

    try:
        return EngineConfigUpdate.model_validate(payload)
    except ValidationError as exc:
        _LOGGER.warning("Failed to parse engine config update: %s", exc)
        raise InvalidConfigError(str(exc)) from exc


def coerce_config(config: ConfigInput) -> EngineConfig:
    match config:
        case None:
            return EngineConfig()
        case EngineConfig():
            return config
        case Mapping():
            return parse_config(config)
        case _:
            raise InvalidConfigError(f"Unsupported config type: {type(config).__name__}")


def coerce_update(update: UpdateInput) -> EngineConfigUpdate:
    match update:
        case EngineConfigUpdate():
            return update
        case Mapping():
            return parse_update(update)
        case _:
            raise InvalidConfigError(f"Unsupported update type: {type(update).__name__}")
