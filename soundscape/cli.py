from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .audio import write_wav
from .catalog import iter_catalog
from .config import EngineConfig
from .engine import SoundscapeEngine
from .logging_utils import configure_logging, log_exception
from .presets import BUILTIN_PRESETS, Preset, dump_preset, get_preset

_LOGGER = logging.getLogger("soundscape.cli")
_CONSOLE = Console()


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    overrides: dict[str, object] = {}
    if getattr(args, "assets", None):
        overrides["asset_root"] = Path(args.assets)
    if getattr(args, "fade", None) is not None:
        overrides["fade_duration"] = args.fade
    return EngineConfig(**overrides)


def _print_catalog() -> None:
    table = Table(title="Sound catalog")
    table.add_column("category")
    table.add_column("name")
    table.add_column("source")
    for key, path in iter_catalog():
        table.add_row(key.category, key.name, str(path) if path is not None else "generated")
    _CONSOLE.print(table)


def _print_presets(show_layers: bool) -> None:
    for name, preset in BUILTIN_PRESETS.items():
        _CONSOLE.print(f"[bold]{name}[/bold]")
        if show_layers:
            _CONSOLE.print(dump_preset(preset))


async def _render_preset(
    preset: Preset,
    duration: float,
    output: Path,
    config: EngineConfig,
) -> Path:
    async with SoundscapeEngine(config, realtime=False) as engine:
        await engine.apply_preset(preset)
        audio = engine.render_seconds(duration)
    return write_wav(output, audio, sample_rate=config.sample_rate, channels=config.channels)


async def _play_preset(preset: Preset, duration: float, config: EngineConfig) -> None:
    async with SoundscapeEngine(config) as engine:
        await engine.apply_preset(preset)
        await asyncio.sleep(duration)
        engine.stop_all()
        # Let the fade-outs finish before the context closes.
        await asyncio.sleep(config.fade_duration if config.enable_crossfade else 0.0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="soundscape")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("catalog", help="List the sounds the mixer knows about.")

    presets = sub.add_parser("presets", help="List the built-in presets.")
    presets.add_argument("--verbose", action="store_true", help="Print each preset's layers.")

    render = sub.add_parser("render", help="Render a preset to a wav file offline.")
    render.add_argument("--preset", type=str, default="deep-focus")
    render.add_argument("--duration", type=float, default=10.0)
    render.add_argument("--output", type=str, default="soundscape.wav")
    render.add_argument("--assets", type=str, default=None, help="Audio asset directory.")
    render.add_argument("--fade", type=float, default=None, help="Crossfade length in seconds.")

    play = sub.add_parser("play", help="Play a preset on the default output device.")
    play.add_argument("--preset", type=str, default="deep-focus")
    play.add_argument("--duration", type=float, default=30.0)
    play.add_argument("--assets", type=str, default=None, help="Audio asset directory.")
    play.add_argument("--fade", type=float, default=None, help="Crossfade length in seconds.")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    try:
        parser = build_parser()
        args = parser.parse_args(argv)

        if args.command == "catalog":
            _print_catalog()
            return 0

        if args.command == "presets":
            _print_presets(args.verbose)
            return 0

        if args.command == "render":
            config = _engine_config(args)
            preset = get_preset(args.preset)
            with _CONSOLE.status(f"Rendering {args.preset}"):
                path = asyncio.run(_render_preset(preset, args.duration, Path(args.output), config))
            _CONSOLE.print(f"Wrote {args.preset} to {path} (sr={config.sample_rate})")
            return 0

        if args.command == "play":
            config = _engine_config(args)
            preset = get_preset(args.preset)
            _CONSOLE.print(f"Playing {args.preset} for {args.duration:g}s")
            asyncio.run(_play_preset(preset, args.duration, config))
            return 0

        parser.print_help()
        return 1
    except Exception as exc:
        debug = bool(os.environ.get("SOUNDSCAPE_DEBUG"))
        _LOGGER.warning("soundscape CLI failed: %s", exc, exc_info=debug)
        command_line = argv if argv is not None else sys.argv[1:]
        log_exception("soundscape CLI", exc, details={"argv": " ".join(command_line)})
        _CONSOLE.print(f"[red]soundscape failed:[/red] {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
