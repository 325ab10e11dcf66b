"""
Configuration loader for the Video Captioner.
Loads from config.yaml and allows CLI argument overrides.
"""

import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@dataclass
class AudioConfig:
    sample_rate: int = 16000
    chunk_size: int = 100000
    yield_every: int = 5


@dataclass
class ASRConfig:
    model: str = "tiny.en"
    compute_type: str = "int8"
    device: str = "cpu"
    beam_size: int = 1
    threads: int = 0  # 0 = auto-detect CPU cores
    language: Optional[str] = None
    word_timestamps: bool = True


@dataclass
class SegmenterConfig:
    auto_target_words: int = 3
    min_span: float = 0.2
    pause_gap: float = 0.3
    long_word_chars: int = 8


@dataclass
class PlaybackConfig:
    poll_interval: float = 0.016
    bias: float = 0.15
    default_caption_duration: float = 3.0
    min_font_size: int = 12
    max_font_size: int = 150
    anchor_margin: float = 5.0


@dataclass
class ExportConfig:
    quality: str = "original"
    format: str = "webm"
    fps: int = 30
    gif_fps: int = 10
    realtime: bool = False
    reference_height: int = 720


@dataclass
class ThrottleConfig:
    max_cpu_percent: int = 70
    check_interval: float = 2.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    asr: ASRConfig = field(default_factory=ASRConfig)
    segmenter: SegmenterConfig = field(default_factory=SegmenterConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    # Raw CaptionStyle overrides (snake_case field names)
    style: dict = field(default_factory=dict)

    def update_from_args(self, args):
        """Override config values from CLI arguments."""
        if hasattr(args, "model") and args.model:
            self.asr.model = args.model
        if hasattr(args, "language") and args.language:
            self.asr.language = args.language
        if hasattr(args, "quality") and args.quality:
            self.export.quality = args.quality
        if hasattr(args, "container") and args.container:
            self.export.format = args.container
        if hasattr(args, "max_cpu") and args.max_cpu:
            self.throttle.max_cpu_percent = args.max_cpu
        if hasattr(args, "realtime") and args.realtime:
            self.export.realtime = True


def _dict_to_dataclass(cls, data: dict):
    """Recursively convert a dict to a dataclass, ignoring unknown keys."""
    if data is None:
        return cls()
    field_names = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in field_names}
    return cls(**filtered)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.
    Falls back to defaults if file is missing.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.warning(f"Config file not found at {path}, using defaults.")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    config = AppConfig(
        audio=_dict_to_dataclass(AudioConfig, raw.get("audio")),
        asr=_dict_to_dataclass(ASRConfig, raw.get("asr")),
        segmenter=_dict_to_dataclass(SegmenterConfig, raw.get("segmenter")),
        playback=_dict_to_dataclass(PlaybackConfig, raw.get("playback")),
        export=_dict_to_dataclass(ExportConfig, raw.get("export")),
        throttle=_dict_to_dataclass(ThrottleConfig, raw.get("throttle")),
        logging=_dict_to_dataclass(LoggingConfig, raw.get("logging")),
        style=dict(raw.get("style") or {}),
    )

    logger.info(f"Configuration loaded from {path}")
    return config
