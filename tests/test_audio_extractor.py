"""
Tests for the Audio Extractor module.
"""

import subprocess

import numpy as np
import pytest
import soundfile as sf

from captioner import audio_extractor
from captioner.audio_extractor import AudioExtractor, downmix, resample_linear
from captioner.cooperative import CooperativeYield
from captioner.errors import DecodeError
from captioner.progress import Phase


class FakeFFmpeg:
    """Answers the ffmpeg / ffprobe calls AudioExtractor makes."""

    def __init__(self, streams='{"streams": [{"index": 1, "channels": 2, "sample_rate": "32000"}]}',
                 decode_ok=True, rate=32000, frames=3200):
        self.streams = streams
        self.decode_ok = decode_ok
        self.rate = rate
        self.frames = frames
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if cmd[:2] == ["ffmpeg", "-version"]:
            return subprocess.CompletedProcess(cmd, 0, stdout="ffmpeg version 6.1\n", stderr="")
        if cmd[0] == "ffprobe":
            return subprocess.CompletedProcess(cmd, 0, stdout=self.streams, stderr="")
        if not self.decode_ok:
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="Invalid data found")

        stereo = np.empty((self.frames, 2), dtype=np.float32)
        stereo[:, 0] = 0.5
        stereo[:, 1] = -0.1
        sf.write(cmd[-1], stereo, self.rate, subtype="FLOAT")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"not really a video")
    return path


def make_extractor(monkeypatch, fake):
    monkeypatch.setattr(audio_extractor.subprocess, "run", fake)
    return AudioExtractor(sample_rate=16000, chunk_size=1000, yielder=CooperativeYield(every=5))


class TestDownmix:
    def test_averages_channels(self):
        data = np.array([[1.0, 3.0], [2.0, 4.0]], dtype=np.float32)
        assert np.allclose(downmix(data), [2.0, 3.0])

    def test_mono_passthrough(self):
        data = np.array([0.1, 0.2, 0.3], dtype=np.float32)
        assert np.array_equal(downmix(data), data)

    def test_chunked_matches_whole(self):
        rng = np.random.default_rng(1)
        data = rng.standard_normal((5, 3)).astype(np.float32)
        yielder = CooperativeYield(every=1)
        mono = downmix(data, chunk_size=2, yielder=yielder)

        assert np.allclose(mono, data.mean(axis=1), atol=1e-6)
        assert yielder.ticks == 3


class TestResample:
    def test_same_rate_unchanged(self):
        samples = np.arange(10, dtype=np.float32)
        assert np.array_equal(resample_linear(samples, 16000, 16000), samples)

    def test_downsample_by_two(self):
        samples = np.arange(8, dtype=np.float32)
        assert np.allclose(resample_linear(samples, 32000, 16000), [0, 2, 4, 6])

    def test_upsample_interpolates(self):
        samples = np.array([0.0, 1.0, 2.0, 3.0], dtype=np.float32)
        result = resample_linear(samples, 8000, 16000)
        assert np.allclose(result, [0.0, 0.5, 1.0, 1.5, 2.0, 2.5, 3.0, 3.0])

    def test_length_48k_to_16k(self):
        samples = np.zeros(48000, dtype=np.float32)
        assert len(resample_linear(samples, 48000, 16000)) == 16000

    def test_chunking_does_not_change_result(self):
        samples = np.sin(np.linspace(0, 20, 4410)).astype(np.float32)
        whole = resample_linear(samples, 44100, 16000, chunk_size=100000)
        chunked = resample_linear(samples, 44100, 16000, chunk_size=7)
        assert np.array_equal(whole, chunked)

    def test_empty_input(self):
        assert len(resample_linear(np.zeros(0, dtype=np.float32), 44100, 16000)) == 0


class TestExtract:
    def test_decodes_mixes_and_resamples(self, monkeypatch, video_file):
        extractor = make_extractor(monkeypatch, FakeFFmpeg())
        events = []
        decoded = extractor.extract(video_file, events.append)

        assert decoded.sample_rate == 16000
        assert len(decoded.samples) == 1600
        assert decoded.samples.dtype == np.float32
        assert np.allclose(decoded.samples, 0.2, atol=1e-6)
        assert decoded.duration == pytest.approx(0.1)

        assert all(e.phase == Phase.EXTRACTING for e in events)
        assert events[-1].percent == 100.0

    def test_missing_file(self, monkeypatch, tmp_path):
        extractor = make_extractor(monkeypatch, FakeFFmpeg())
        with pytest.raises(FileNotFoundError):
            extractor.extract(tmp_path / "missing.mp4")

    def test_no_audio_stream(self, monkeypatch, video_file):
        extractor = make_extractor(monkeypatch, FakeFFmpeg(streams='{"streams": []}'))
        with pytest.raises(DecodeError):
            extractor.extract(video_file)

    def test_decode_failure(self, monkeypatch, video_file):
        extractor = make_extractor(monkeypatch, FakeFFmpeg(decode_ok=False))
        with pytest.raises(DecodeError):
            extractor.extract(video_file)

    def test_native_rate_not_resampled(self, monkeypatch, video_file):
        extractor = make_extractor(monkeypatch, FakeFFmpeg(rate=16000, frames=800))
        decoded = extractor.extract(video_file)
        assert len(decoded.samples) == 800

    def test_ffmpeg_missing(self, monkeypatch):
        def not_found(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(audio_extractor.subprocess, "run", not_found)
        with pytest.raises(RuntimeError):
            AudioExtractor()
