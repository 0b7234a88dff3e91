"""Logging setup for the mixer plus the reporters the audio path logs through.

The render callback runs once per block on the audio thread, so a failure
there would otherwise log hundreds of identical tracebacks per second.
:class:`RenderFaultReporter` logs the first one in full and then only
summaries.
"""

from __future__ import annotations

import logging
import os
import sys
import traceback
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("soundscape.logging")
_ROOT_LOGGER = "soundscape"
_LOG_DIR_ENV = "SOUNDSCAPE_LOG_DIR"
_DEBUG_ENV = "SOUNDSCAPE_DEBUG"
_LEVEL_ENV = "SOUNDSCAPE_LOG_LEVEL"
_LOG_FILE = "soundscape.log"
_HANDLER_TAG = "_soundscape_handler"

_CONSOLE_FORMAT = "%(level_icon)s [%(component)s] %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_LEVEL_ICONS = {
    logging.DEBUG: "🐛",
    logging.INFO: "🎧",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}

_configured = False


class _ConsoleFormatter(logging.Formatter):
    """Short console lines: icon, component (logger name minus the package)."""

    def format(self, record: logging.LogRecord) -> str:
        record.level_icon = _LEVEL_ICONS.get(record.levelno, "")
        prefix = f"{_ROOT_LOGGER}."
        record.component = record.name[len(prefix) :] if record.name.startswith(prefix) else record.name
        return super().format(record)


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "soundscape" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def console_level() -> int:
    """Console threshold: ``SOUNDSCAPE_LOG_LEVEL``, else DEBUG/INFO by ``SOUNDSCAPE_DEBUG``."""

    named = os.environ.get(_LEVEL_ENV, "").strip().upper()
    if named:
        level = logging.getLevelName(named)
        if isinstance(level, int):
            return level
        _LOGGER.warning("Ignoring unknown %s=%s", _LEVEL_ENV, named)
    return logging.DEBUG if os.environ.get(_DEBUG_ENV) else logging.INFO


def _tag(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in logger.handlers if getattr(handler, _HANDLER_TAG, False)]


def configure_logging(*, force: bool = False) -> None:
    """Attach the console and file handlers to the ``soundscape`` logger.

    The console handler is skipped when the root logger already has
    handlers (an app or test harness owns the console), unless ``force``.
    ``force`` also replaces handlers installed by an earlier call.
    """

    global _configured
    if _configured and not force:
        return

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()

    if force or not logging.getLogger().handlers:
        console = logging.StreamHandler(stream=sys.__stderr__)
        console.setLevel(console_level())
        console.setFormatter(_ConsoleFormatter(_CONSOLE_FORMAT))
        logger.addHandler(_tag(console))

    try:
        get_log_dir().mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    except OSError as exc:
        _LOGGER.warning("File logging disabled: %s", exc)
    else:
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(_tag(file_handler))

    logger.propagate = True
    _configured = True


def log_exception(
    context: str,
    exc: BaseException,
    *,
    details: Mapping[str, object] | None = None,
) -> Path | None:
    """Append a timestamped traceback, plus optional key/value details, to the log file."""

    path = get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now().isoformat()}] {context} failed: {type(exc).__name__}: {exc}\n")
            for key, value in (details or {}).items():
                handle.write(f"    {key}: {value}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
    return path


class RenderFaultReporter:
    """Rate-limits render failures on the audio thread.

    The first failure of a streak is logged with its traceback; after that
    only every ``summary_every``-th consecutive failure is logged, and one
    line when rendering recovers.
    """

    def __init__(self, logger: logging.Logger, *, summary_every: int = 100) -> None:
        self._logger = logger
        self.summary_every = summary_every
        self.streak = 0
        self.total = 0

    def failure(self, exc: BaseException, *, audio_time: float) -> None:
        self.streak += 1
        self.total += 1
        if self.streak == 1:
            self._logger.error("Render failed at t=%.3fs, output silenced: %s", audio_time, exc, exc_info=exc)
        elif self.streak % self.summary_every == 0:
            self._logger.error("Render still failing: %d consecutive blocks silenced", self.streak)

    def success(self) -> None:
        if self.streak:
            self._logger.warning("Render recovered after %d silenced blocks", self.streak)
            self.streak = 0


def report_clock_skew(
    logger: logging.Logger,
    target: str,
    lag: float,
    *,
    audio_elapsed: float,
) -> None:
    """Warn that a wall-clock fade completion beat the audio clock by ``lag`` seconds."""

    if audio_elapsed <= 0:
        cause = "audio clock did not advance; context suspended or not rendering"
    else:
        cause = f"audio clock advanced only {audio_elapsed:.3f}s"
    logger.warning("Fade-out on %s completed %.3fs before its ramp ended (%s)", target, lag, cause)
