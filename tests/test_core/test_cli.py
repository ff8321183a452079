"""Tests for the pulsefind command line interface."""

import json
from unittest.mock import patch

import pytest

from conftest import FakeRecognitionProvider, acr_payload, acr_track
from pulsefind.cli import _clip, build_parser, main, scan_single_file
from pulsefind.utils.config import get_default_config


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args(["beat.wav"])
        assert args.mode == "loose"
        assert args.deep is False
        assert args.output is None

    def test_rejects_unknown_mode(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--mode", "fuzzy", "beat.wav"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "PulseFind" in capsys.readouterr().out


class TestScanSingleFile:
    def test_missing_file(self, tmp_path, capsys):
        assert scan_single_file(tmp_path / "missing.wav", get_default_config()) == 1
        assert "not found" in capsys.readouterr().out

    def test_scan_writes_json(self, make_engine, beat_wav, tmp_path, capsys):
        audio_file = tmp_path / "beat.wav"
        audio_file.write_bytes(beat_wav)
        output = tmp_path / "out" / "results.json"
        engine = make_engine(provider=FakeRecognitionProvider(
            lambda label: acr_payload(acr_track("Night Drive", "Kid Vector", 92))
        ))

        with patch("pulsefind.cli.create_scan_engine", return_value=engine):
            code = scan_single_file(audio_file, get_default_config(), output_json=output)

        assert code == 0
        assert "Night Drive" in capsys.readouterr().out
        assert json.loads(output.read_text())["matches"][0]["title"] == "Night Drive"

    def test_unreadable_audio(self, make_engine, tmp_path):
        audio_file = tmp_path / "empty.wav"
        audio_file.write_bytes(b"")
        with patch("pulsefind.cli.create_scan_engine", return_value=make_engine()):
            assert scan_single_file(audio_file, get_default_config()) == 2


class TestMain:
    def test_bad_config_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(tmp_path / "missing.yaml"), "beat.wav"])
        assert exc_info.value.code == 1


def test_clip():
    assert _clip("short", 10) == "short"
    assert _clip("a very long song title", 10) == "a very ..."
