from pathlib import Path

import pytest
import soundfile as sf  # type: ignore[import]

from soundscape import cli


@pytest.fixture(autouse=True)
def _log_dir(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SOUNDSCAPE_LOG_DIR", str(tmp_path / "logs"))


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_catalog_and_presets_commands(capsys) -> None:
    assert cli.main(["catalog"]) == 0
    assert "rain" in capsys.readouterr().out
    assert cli.main(["presets", "--verbose"]) == 0
    assert "deep-focus" in capsys.readouterr().out


def test_render_writes_preset_to_wav(tmp_path: Path) -> None:
    output = tmp_path / "mix.wav"

    code = cli.main(
        [
            "render",
            "--preset",
            "rain-study",
            "--duration",
            "0.25",
            "--output",
            str(output),
            "--assets",
            str(tmp_path),
            "--fade",
            "0.05",
        ]
    )

    assert code == 0
    info = sf.info(str(output))
    assert info.channels == 2
    assert info.samplerate == 44_100
    assert info.frames == round(0.25 * 44_100)


def test_render_unknown_preset_fails(tmp_path: Path) -> None:
    code = cli.main(["render", "--preset", "nope", "--output", str(tmp_path / "x.wav")])

    assert code == 1
    assert not (tmp_path / "x.wav").exists()
    assert "InvalidPresetError" in (tmp_path / "logs" / "soundscape.log").read_text(encoding="utf-8")
