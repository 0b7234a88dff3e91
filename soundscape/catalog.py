"""Sound catalog and the tagged sound references the engine plays.

The catalog maps category -> sound name -> asset path relative to the
configured asset root. A ``None`` path marks a procedurally generated
noise color rather than a file.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Literal, NamedTuple, TypeAlias, get_args

from .errors import AssetResolutionError

NoiseColor = Literal["white", "pink", "brown"]
NOISE_COLORS: tuple[NoiseColor, ...] = get_args(NoiseColor)

NOISE_CATEGORY = "noise"


class CatalogKey(NamedTuple):
    category: str
    name: str

    def __str__(self) -> str:
        return f"{self.category}/{self.name}"


@dataclass(frozen=True, slots=True)
class FileBacked:
    path: Path
    key: CatalogKey | None = None

    @property
    def label(self) -> str:
        return str(self.key) if self.key is not None else self.path.stem


@dataclass(frozen=True, slots=True)
class GeneratedNoise:
    color: NoiseColor

    @property
    def key(self) -> CatalogKey:
        return CatalogKey(NOISE_CATEGORY, self.color)

    @property
    def label(self) -> str:
        return str(self.key)


@dataclass(frozen=True, slots=True)
class Oscillator:
    frequency_hz: float

    @property
    def key(self) -> None:
        return None

    @property
    def label(self) -> str:
        return f"tone/{self.frequency_hz:g}Hz"


SoundReference: TypeAlias = FileBacked | GeneratedNoise | Oscillator


def _freeze(catalog: Mapping[str, Mapping[str, str | None]]) -> Mapping[str, Mapping[str, Path | None]]:
    return MappingProxyType(
        {
            category: MappingProxyType(
                {name: Path(path) if path is not None else None for name, path in sounds.items()}
            )
            for category, sounds in catalog.items()
        }
    )


SOUND_CATALOG: Mapping[str, Mapping[str, Path | None]] = _freeze(
    {
        "nature": {
            "rain": "nature/rain.mp3",
            "forest": "nature/forest.mp3",
            "ocean": "nature/ocean.mp3",
            "stream": "nature/stream.mp3",
            "birds": "nature/birds.mp3",
        },
        "music": {
            "piano": "music/piano.mp3",
            "ambient": "music/ambient.mp3",
            "guitar": "music/guitar.mp3",
            "strings": "music/strings.mp3",
            "lofi": "music/lofi.mp3",
        },
        NOISE_CATEGORY: {
            "white": None,
            "pink": None,
            "brown": None,
            "fan": "noise/fan.mp3",
            "cafe": "noise/cafe.mp3",
        },
        "ambient": {
            "space": "ambient/space.mp3",
            "temple": "ambient/temple.mp3",
            "wind": "ambient/wind.mp3",
            "tibetan": "ambient/tibetan.mp3",
            "meditation": "ambient/meditation.mp3",
        },
    }
)


def is_noise_color(name: str) -> bool:
    return name in NOISE_COLORS


def resolve_sound(
    category: str,
    name: str,
    catalog: Mapping[str, Mapping[str, Path | None]] = SOUND_CATALOG,
) -> SoundReference:
    """Turn a catalog entry into a sound reference.

    Raises AssetResolutionError when the entry is not in the catalog.
    """

    sounds = catalog.get(category)
    if sounds is None or name not in sounds:
        raise AssetResolutionError(f"Audio not found: {category}/{name}")
    path = sounds[name]
    if path is None:
        if not is_noise_color(name):
            raise AssetResolutionError(f"{category}/{name} has no asset and is not a noise color")
        return GeneratedNoise(color=name)  # type: ignore[arg-type]
    return FileBacked(path=path, key=CatalogKey(category, name))


def iter_catalog(
    catalog: Mapping[str, Mapping[str, Path | None]] = SOUND_CATALOG,
) -> list[tuple[CatalogKey, Path | None]]:
    return [
        (CatalogKey(category, name), path)
        for category, sounds in catalog.items()
        for name, path in sounds.items()
    ]
