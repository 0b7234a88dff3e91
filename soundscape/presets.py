"""Preset layout shared with preset storage.

A preset is a JSON object keyed by layer id; each value names the sound
to play on that layer (its catalog name within the category of the same
id, or null for silence) and the layer volume.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError

from .errors import InvalidPresetError

_LOGGER = logging.getLogger("soundscape.presets")


class PresetLayer(BaseModel):
    sound: str | None = None
    volume: float = Field(ge=0.0, le=1.0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class Preset(RootModel[dict[str, PresetLayer]]):
    def __iter__(self):  # type: ignore[override]
        return iter(self.root.items())

    def __getitem__(self, layer_id: str) -> PresetLayer:
        return self.root[layer_id]

    def __len__(self) -> int:
        return len(self.root)

    @property
    def layer_ids(self) -> list[str]:
        return list(self.root)


PresetInput = Preset | Mapping[str, Any] | str | bytes


def parse_preset(payload: PresetInput) -> Preset:
    """Validate a preset from a model, mapping or JSON text."""

    if isinstance(payload, Preset):
        return payload
    try:
        if isinstance(payload, (str, bytes)):
            return Preset.model_validate_json(payload)
        return Preset.model_validate(dict(payload))
    except (ValidationError, json.JSONDecodeError, TypeError) as exc:
        _LOGGER.warning("Failed to parse preset: %s", exc)
        raise InvalidPresetError(str(exc)) from exc


def dump_preset(preset: Preset) -> str:
    return preset.model_dump_json(indent=2)


def _builtin(layers: Mapping[str, tuple[str | None, float]]) -> Preset:
    return Preset({layer_id: PresetLayer(sound=sound, volume=volume) for layer_id, (sound, volume) in layers.items()})


BUILTIN_PRESETS: Mapping[str, Preset] = MappingProxyType(
    {
        "deep-focus": _builtin(
            {"nature": ("stream", 0.3), "music": ("ambient", 0.5), "noise": ("brown", 0.4), "ambient": ("space", 0.2)}
        ),
        "calm-workspace": _builtin(
            {"nature": ("rain", 0.4), "music": ("piano", 0.3), "noise": ("cafe", 0.3), "ambient": (None, 0.0)}
        ),
        "nature-retreat": _builtin(
            {"nature": ("forest", 0.6), "music": (None, 0.0), "noise": (None, 0.0), "ambient": ("wind", 0.4)}
        ),
        "rain-study": _builtin(
            {"nature": ("rain", 0.7), "music": ("lofi", 0.4), "noise": ("white", 0.2), "ambient": (None, 0.0)}
        ),
        "meditation": _builtin(
            {"nature": ("ocean", 0.3), "music": (None, 0.0), "noise": (None, 0.0), "ambient": ("tibetan", 0.5)}
        ),
    }
)


def get_preset(name: str) -> Preset:
    try:
        return BUILTIN_PRESETS[name]
    except KeyError as exc:
        raise InvalidPresetError(f"Preset not found: {name}. Valid: {sorted(BUILTIN_PRESETS)}") from exc
