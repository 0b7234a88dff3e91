import logging
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf  # type: ignore[import]

from soundscape.catalog import FileBacked, GeneratedNoise, Oscillator
from soundscape.context import ContextState
from soundscape.engine import SoundscapeEngine
from soundscape.errors import EngineNotInitializedError, UnknownLayerError
from soundscape.fades import FadeState
from soundscape.presets import get_preset

from conftest import TEST_FADE


def _settle(engine: SoundscapeEngine) -> None:
    engine.render_seconds(TEST_FADE + 0.05)


@pytest.mark.asyncio
async def test_commands_before_initialize_raise() -> None:
    engine = SoundscapeEngine(realtime=False)
    with pytest.raises(EngineNotInitializedError):
        engine.create_layer("nature")
    with pytest.raises(EngineNotInitializedError):
        await engine.play("nature", "nature", "rain")
    engine.dispose()


@pytest.mark.asyncio
async def test_create_layer_is_idempotent(make_engine, caplog) -> None:
    engine = await make_engine()
    first = engine.create_layer("nature", 0.3)

    with caplog.at_level(logging.WARNING, logger="soundscape.engine"):
        second = engine.create_layer("nature", 0.9)

    assert first is second
    assert second.volume == pytest.approx(0.3)
    assert "already exists" in caplog.text
    assert engine.create_layer("music").volume == pytest.approx(engine.config.default_layer_volume)


@pytest.mark.asyncio
async def test_play_noise_fades_in_to_layer_volume(make_engine) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.4)

    await engine.play("noise", "noise", "pink")

    assert layer.is_playing
    assert layer.fade_state is FadeState.FADING_IN
    info = engine.get_layer_info("noise")
    assert info is not None
    assert info.to_dict() == {"id": "noise", "isPlaying": True, "currentSound": "noise/pink", "volume": 0.4}
    _settle(engine)
    assert layer.gain.param.value_at(engine.context.current_time) == pytest.approx(0.4)
    assert layer.fade_state is FadeState.STEADY
    assert float(np.abs(engine.render(80)).max()) > 0.0


@pytest.mark.asyncio
async def test_noise_buffers_are_shared_between_layers(make_engine) -> None:
    engine = await make_engine()
    engine.create_layer("a")
    engine.create_layer("b")

    await engine.play("a", "noise", "white")
    await engine.play("b", "noise", "white")

    assert engine.noise_cache is not None
    assert engine.noise_cache.generation_count == 1
    assert engine.layers["a"].source.samples is engine.layers["b"].source.samples


@pytest.mark.asyncio
async def test_stop_fades_out_then_tears_down_on_completion(make_engine, timers) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.5)
    await engine.play("noise", "noise", "brown")
    _settle(engine)

    engine.stop("noise")

    assert not layer.is_playing
    assert layer.is_stopping
    assert layer.source is not None
    assert engine.get_active_layers_count() == 0
    _settle(engine)
    assert layer.gain.param.value_at(engine.context.current_time) == 0.0
    assert layer.source is not None

    timers.fire_all()

    assert layer.source is None
    assert layer.current_sound is None
    assert layer.remembered_sound == GeneratedNoise("brown")
    assert engine.get_layer_info("noise").current_sound is None


@pytest.mark.asyncio
async def test_stop_right_after_play_keeps_source_until_timer(make_engine, timers) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.5)
    await engine.play("noise", "noise", "white")

    engine.stop("noise")
    assert timers.pending[0].when == pytest.approx(TEST_FADE)
    engine.render_seconds(TEST_FADE)

    assert layer.gain.param.value_at(engine.context.current_time) == 0.0
    assert layer.source is not None
    assert layer.is_stopping

    timers.fire_all()

    assert layer.source is None
    assert not layer.is_stopping
    assert layer.fade_state is FadeState.IDLE


@pytest.mark.asyncio
async def test_fade_state_is_idle_before_play_and_after_immediate_stop(make_engine) -> None:
    engine = await make_engine(enable_crossfade=False)
    layer = engine.create_layer("noise", 0.5)
    assert layer.fade_state is FadeState.IDLE

    await engine.play("noise", "noise", "pink")
    assert layer.fade_state is FadeState.STEADY

    engine.stop("noise")
    assert layer.source is None
    assert layer.fade_state is FadeState.IDLE


@pytest.mark.asyncio
async def test_unresolvable_reference_falls_back_without_losing_layer(make_engine) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.5)
    await engine.play("noise", "noise", "white")
    previous = layer.source

    await engine.play_reference("noise", GeneratedNoise("purple"))  # type: ignore[arg-type]

    assert previous is not None and previous.stopped
    assert layer.source is not None
    assert layer.current_sound == Oscillator(engine.config.fallback_frequency)
    assert layer.is_playing


@pytest.mark.asyncio
async def test_engine_accepts_camel_case_config_and_updates(timers) -> None:
    engine = SoundscapeEngine({"fadeDuration": 2.0, "sampleRate": 8_000}, realtime=False, timers=timers)
    assert engine.config.fade_duration == 2.0

    await engine.initialize()
    config = engine.update_config({"fadeDuration": 0.5, "enableCrossfade": False})

    assert config.fade_duration == 0.5
    assert engine.config.enable_crossfade is False
    engine.dispose()


@pytest.mark.asyncio
async def test_stop_during_fade_in_starts_from_current_gain(make_engine) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.4)
    await engine.play("noise", "noise", "white")
    engine.render_seconds(TEST_FADE / 2)

    engine.stop("noise")

    assert layer.gain.operation is not None
    assert layer.gain.operation.start_value == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_replay_during_fade_out_cancels_teardown(make_engine, timers) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.5)
    await engine.play("noise", "noise", "white")
    _settle(engine)
    engine.stop("noise")
    engine.render_seconds(TEST_FADE / 2)

    await engine.play("noise", "noise", "pink")
    timers.fire_all()

    assert layer.is_playing
    assert layer.current_sound == GeneratedNoise("pink")
    assert layer.source is not None
    assert timers.pending == []


@pytest.mark.asyncio
async def test_early_completion_logs_clock_skew(make_engine, timers, caplog) -> None:
    engine = await make_engine()
    engine.create_layer("noise")
    await engine.play("noise", "noise", "white")
    engine.stop("noise")

    with caplog.at_level(logging.WARNING, logger="soundscape.fades"):
        timers.fire_all()

    assert "before its ramp ended" in caplog.text
    assert "audio clock did not advance" in caplog.text
    assert engine.layers["noise"].source is None


@pytest.mark.asyncio
async def test_crossfade_disabled_switches_immediately(make_engine) -> None:
    engine = await make_engine(enable_crossfade=False)
    layer = engine.create_layer("noise", 0.7)

    await engine.play("noise", "noise", "white")

    assert not layer.gain.param.has_automation
    assert layer.gain.param.intrinsic_value == pytest.approx(0.7)
    engine.stop("noise")
    assert layer.source is None


@pytest.mark.asyncio
async def test_set_volume_depends_on_layer_state(make_engine, timers) -> None:
    engine = await make_engine()
    layer = engine.create_layer("noise", 0.5)

    engine.set_layer_volume("noise", 0.3)
    assert not layer.gain.param.has_automation
    assert layer.gain.param.intrinsic_value == pytest.approx(0.3)

    await engine.play("noise", "noise", "white")
    _settle(engine)
    engine.set_layer_volume("noise", 0.9)
    engine.render_seconds(engine.config.volume_ramp + 0.01)
    assert layer.gain.param.value_at(engine.context.current_time) == pytest.approx(0.9)

    engine.stop("noise")
    engine.set_layer_volume("noise", 0.1)
    assert layer.volume == pytest.approx(0.1)
    assert layer.is_stopping
    _settle(engine)
    assert layer.gain.param.value_at(engine.context.current_time) == 0.0
    timers.fire_all()
    assert layer.source is None


@pytest.mark.asyncio
async def test_stop_all_and_play_all_restore_layers(make_engine, timers) -> None:
    engine = await make_engine()
    engine.create_layer("noise", 0.3)
    engine.create_layer("music", 0.8)
    engine.create_layer("ambient", 0.4)
    await engine.play("noise", "noise", "white")
    await engine.play("music", "noise", "brown")

    engine.stop_all()
    _settle(engine)
    timers.fire_all()
    assert engine.get_active_layers_count() == 0

    resumed = await engine.play_all()
    _settle(engine)

    assert resumed == ["noise", "music"]
    assert engine.get_active_layers_count() == 2
    assert engine.layers["music"].current_sound == GeneratedNoise("brown")
    assert not engine.layers["ambient"].is_playing
    now = engine.context.current_time
    for layer_id, volume in [("noise", 0.3), ("music", 0.8)]:
        layer = engine.layers[layer_id]
        assert layer.volume == pytest.approx(volume)
        assert layer.gain.param.value_at(now) == pytest.approx(volume)


@pytest.mark.asyncio
async def test_unknown_layer_commands(make_engine, caplog) -> None:
    engine = await make_engine()

    with caplog.at_level(logging.WARNING, logger="soundscape.engine"):
        engine.stop("ghost")
        engine.set_layer_volume("ghost", 0.5)
        assert engine.get_layer_info("ghost") is None
        assert engine.get_analyser_samples("ghost") is None

    assert caplog.text.count("unknown layer ghost") == 4
    with pytest.raises(UnknownLayerError):
        await engine.play("ghost", "noise", "white")


@pytest.mark.asyncio
async def test_catalog_miss_plays_fallback_tone(make_engine) -> None:
    engine = await make_engine()
    layer = engine.create_layer("nature")

    await engine.play("nature", "nature", "thunder")

    assert layer.is_playing
    assert layer.remembered_sound == Oscillator(220.0)
    assert engine.get_layer_info("nature").current_sound == "tone/220Hz"


@pytest.mark.asyncio
async def test_missing_asset_plays_fallback_but_remembers_request(make_engine) -> None:
    engine = await make_engine()
    layer = engine.create_layer("nature")

    await engine.play("nature", "nature", "rain")

    assert layer.is_playing
    assert isinstance(layer.remembered_sound, FileBacked)
    assert layer.remembered_sound.label == "nature/rain"
    assert layer.current_sound == Oscillator(engine.config.fallback_frequency)


@pytest.mark.asyncio
async def test_file_layer_follows_loop_setting(make_engine, tmp_path: Path) -> None:
    sf.write(tmp_path / "clip.wav", np.full(40, 0.25, dtype=np.float32), 8_000, subtype="FLOAT")
    engine = await make_engine()
    layer = engine.create_layer("music", 1.0)
    await engine.play_reference("music", FileBacked(Path("clip.wav")))
    assert layer.source is not None and layer.source.loop

    engine.update_config({"loopLayers": False})
    engine.render_seconds(0.05)

    assert not layer.source.loop
    assert not layer.is_playing
    assert engine.get_active_layers_count() == 0


@pytest.mark.asyncio
async def test_analyser_reports_bytes_until_teardown(make_engine, timers) -> None:
    engine = await make_engine()
    engine.create_layer("noise", 1.0)
    assert engine.get_analyser_samples("noise") is None

    await engine.play("noise", "noise", "white")
    _settle(engine)
    samples = engine.get_analyser_samples("noise")

    assert samples is not None
    assert samples.dtype == np.uint8
    assert len(samples) == engine.config.analyser_fft_size // 2
    assert len(set(samples.tolist())) > 1

    engine.stop("noise")
    engine.render_seconds(TEST_FADE / 2)
    fading = engine.get_analyser_samples("noise")
    assert fading is not None
    assert len(set(fading.tolist())) > 1
    assert engine.get_active_layers_count() == 0

    engine.render_seconds(TEST_FADE)
    timers.fire_all()
    assert engine.get_analyser_samples("noise") is None


@pytest.mark.asyncio
async def test_master_volume_is_clamped_and_ramped(make_engine) -> None:
    engine = await make_engine()

    engine.set_master_volume(2.0)

    assert engine.master_volume == 1.0
    assert engine.context.master.param.has_automation
    await engine.resume()
    engine.update_config({"masterVolume": 0.2})
    engine.render_seconds(0.1)
    assert engine.context.master.param.value_at(engine.context.current_time) == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_suspended_context_renders_silence_without_advancing(make_engine) -> None:
    engine = await make_engine()

    block = engine.render(80)

    assert block.shape == (80, 2)
    assert not block.any()
    assert engine.context.clock.frames == 0
    await engine.resume()
    engine.render(80)
    assert engine.context.clock.frames == 80


@pytest.mark.asyncio
async def test_apply_preset_and_snapshot(make_engine) -> None:
    engine = await make_engine()

    preset = await engine.apply_preset("rain-study")

    assert set(engine.layers) == {"nature", "music", "noise", "ambient"}
    assert engine.layers["noise"].current_sound == GeneratedNoise("white")
    assert engine.layers["nature"].is_playing
    assert not engine.layers["ambient"].is_playing
    assert engine.layers["ambient"].volume == 0.0
    assert engine.snapshot_preset().root == preset.root == get_preset("rain-study").root


@pytest.mark.asyncio
async def test_apply_preset_replaces_running_mix(make_engine, timers) -> None:
    engine = await make_engine()
    await engine.apply_preset("deep-focus")
    _settle(engine)

    await engine.apply_preset({"noise": {"sound": "pink", "volume": 0.25}})
    _settle(engine)
    timers.fire_all()

    assert engine.layers["noise"].current_sound == GeneratedNoise("pink")
    assert engine.layers["noise"].volume == pytest.approx(0.25)
    assert engine.get_active_layers_count() == 1


@pytest.mark.asyncio
async def test_dispose_is_terminal_and_repeatable(make_engine) -> None:
    engine = await make_engine()
    engine.create_layer("noise")
    await engine.play("noise", "noise", "white")
    context = engine.context

    engine.dispose()
    engine.dispose()

    assert not engine.is_initialized
    assert engine.layers == {}
    assert context.state is ContextState.CLOSED
    with pytest.raises(EngineNotInitializedError):
        engine.create_layer("noise")


@pytest.mark.asyncio
async def test_engine_as_async_context_manager(make_config, timers) -> None:
    async with SoundscapeEngine(make_config(), realtime=False, timers=timers) as engine:
        assert engine.is_initialized
        engine.create_layer("noise")
    assert not engine.is_initialized
