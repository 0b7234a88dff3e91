from __future__ import annotations


class SoundscapeError(Exception):
    """Base error for the soundscape mixer."""


class InitializationError(SoundscapeError):
    """Raised when the audio context or output stream cannot be created."""


class EngineNotInitializedError(SoundscapeError):
    """Raised when a command needs an initialized engine."""


class AssetResolutionError(SoundscapeError):
    """Raised when a sound asset is missing or cannot be decoded."""


class UnknownLayerError(SoundscapeError):
    """Raised when a play command targets a layer that does not exist."""


class InvalidConfigError(SoundscapeError):
    """Raised when a config cannot be parsed or validated."""


class InvalidPresetError(SoundscapeError):
    """Raised when a preset payload does not match the preset layout."""
