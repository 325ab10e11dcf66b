"""
Tests for configuration loading and the command-line parser.
"""

import argparse

import pytest

from config import AppConfig, load_config
from main import build_parser


class TestLoadConfig:
    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert config == AppConfig()

    def test_partial_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "asr:\n"
            "  model: base.en\n"
            "  unknown_key: 1\n"
            "export:\n"
            "  format: mp4\n"
            "style:\n"
            "  font_size: 48\n",
            encoding="utf-8",
        )
        config = load_config(path)

        assert config.asr.model == "base.en"
        assert config.asr.compute_type == "int8"
        assert config.export.format == "mp4"
        assert config.playback.bias == 0.15
        assert config.style == {"font_size": 48}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == AppConfig()

    def test_bundled_config_loads(self):
        config = load_config()
        assert config.audio.sample_rate == 16000
        assert config.segmenter.auto_target_words == 3


class TestArgOverrides:
    def test_overrides(self):
        config = AppConfig()
        args = argparse.Namespace(
            model="small", language="es", quality="1080p",
            container="mkv", max_cpu=50, realtime=True,
        )
        config.update_from_args(args)

        assert config.asr.model == "small"
        assert config.asr.language == "es"
        assert config.export.quality == "1080p"
        assert config.export.format == "mkv"
        assert config.throttle.max_cpu_percent == 50
        assert config.export.realtime

    def test_unset_args_keep_config(self):
        config = AppConfig()
        config.update_from_args(argparse.Namespace(model=None, quality=None))
        assert config.asr.model == "tiny.en"
        assert config.export.quality == "original"


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["talk.mp4"])
        assert str(args.video) == "talk.mp4"
        assert args.words == 0
        assert args.format is None
        assert args.export_video is None

    def test_export_options(self):
        args = build_parser().parse_args([
            "talk.mp4", "--export-video", "out.mp4",
            "--quality", "720p", "--container", "mp4", "-w", "2",
        ])
        assert args.quality == "720p"
        assert args.container == "mp4"
        assert args.words == 2

    def test_rejects_unknown_format(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["talk.mp4", "--format", "docx"])
