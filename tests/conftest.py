"""
Shared fakes for the external collaborators: the Whisper model, the video
decoder and the FFmpeg encoder.
"""

import threading
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

from captioner.audio_extractor import DecodedAudio


class FakeWord:
    def __init__(self, word, start, end):
        self.word = word
        self.start = start
        self.end = end


class FakeSegment:
    def __init__(self, text, start, end, words=None):
        self.text = text
        self.start = start
        self.end = end
        self.words = words


class FakeWhisperModel:
    """faster-whisper style model: transcribe(audio, **options) -> (segments, info)."""

    def __init__(self, segments, fail_word_level=False, fail_always=False, gate=None):
        self.segments = segments
        self.fail_word_level = fail_word_level
        self.fail_always = fail_always
        self.gate = gate
        self.entered = threading.Event()
        self.calls = []

    def transcribe(self, audio, **options):
        self.calls.append(options)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail_always:
            raise RuntimeError("inference crashed")
        word_level = options.get("word_timestamps")
        if word_level and self.fail_word_level:
            raise RuntimeError("word timestamps unsupported")

        segments = [
            FakeSegment(s.text, s.start, s.end, s.words if word_level else None)
            for s in self.segments
        ]
        info = SimpleNamespace(duration=len(audio) / 16000.0, language="en")
        return iter(segments), info


def make_segments():
    return [
        FakeSegment(" Hello world.", 0.0, 0.7, [
            FakeWord(" Hello", 0.0, 0.3),
            FakeWord(" world.", 0.35, 0.7),
        ]),
        FakeSegment(" Nice to meet you", 1.5, 2.6, [
            FakeWord(" Nice", 1.5, 1.8),
            FakeWord(" to", 1.85, 1.95),
            FakeWord(" meet", 2.0, 2.2),
            FakeWord(" you", 2.25, 2.6),
        ]),
    ]


class FakeSource:
    """Video source producing solid frames."""

    def __init__(self, size=(64, 36), duration=1.0, has_audio=True,
                 fail_at=None, gate=None, value=40):
        self.size = size
        self.duration = duration
        self.has_audio = has_audio
        self.fps = 30.0
        self.path = Path("fake_input.mp4")
        self.fail_at = fail_at
        self.gate = gate
        self.value = value
        self.entered = threading.Event()
        self.closed = False

    def get_frame(self, t):
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail_at is not None and t >= self.fail_at:
            raise IOError(f"cannot decode frame at {t:.2f}s")
        width, height = self.size
        return np.full((height, width, 3), self.value, dtype=np.uint8)

    def close(self):
        self.closed = True


class RecordingEncoder:
    """Stands in for FrameEncoder and keeps every frame it is given."""

    instances = []

    def __init__(self, output_path, size, fps, choice, bitrate=None, audio_source=None):
        self.output_path = Path(output_path)
        self.size = size
        self.fps = fps
        self.choice = choice
        self.bitrate = bitrate
        self.audio_source = audio_source
        self.frames = []
        self.started = False
        self.closed = False
        self.aborted = False
        RecordingEncoder.instances.append(self)

    def start(self):
        self.started = True

    def write(self, image):
        assert image.size == tuple(self.size)
        self.frames.append(image.copy())

    def close(self):
        self.closed = True
        return self.output_path

    def abort(self):
        self.aborted = True


class FakeExtractor:
    def __init__(self, seconds=3.0, error=None):
        self.seconds = seconds
        self.error = error
        self.calls = 0

    def extract(self, video_path, progress_cb=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        samples = np.zeros(int(16000 * self.seconds), dtype=np.float32)
        return DecodedAudio(samples=samples, sample_rate=16000)


@pytest.fixture
def fake_model_cls():
    return FakeWhisperModel


@pytest.fixture
def segments():
    return make_segments()


@pytest.fixture
def source_cls():
    return FakeSource


@pytest.fixture
def encoder_cls():
    RecordingEncoder.instances = []
    return RecordingEncoder


@pytest.fixture
def extractor_cls():
    return FakeExtractor
