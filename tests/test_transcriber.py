"""
Tests for the Transcription Engine (with a stand-in speech model).
"""

import threading
import time
from types import SimpleNamespace

import numpy as np
import pytest

from captioner.errors import BusyError, ModelLoadError, TranscriptionError
from captioner.progress import Phase
from captioner.transcriber import ModelHandle, TranscriptionEngine


@pytest.fixture
def asr_config():
    return SimpleNamespace(
        model="tiny.en",
        compute_type="int8",
        device="cpu",
        beam_size=1,
        threads=1,
        language=None,
        word_timestamps=True,
    )


@pytest.fixture
def audio():
    return np.zeros(16000 * 3, dtype=np.float32)


class CountingFactory:
    def __init__(self, model, failures=0):
        self.model = model
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OSError("model files missing")
        return self.model


class TestWordTimestamps:
    """Normal word-level transcription."""

    def test_returns_word_tokens(self, asr_config, audio, fake_model_cls, segments):
        engine = TranscriptionEngine(asr_config, CountingFactory(fake_model_cls(segments)))
        result = engine.transcribe(audio, 16000)

        assert not result.coarse
        assert [t.text.strip() for t in result.tokens] == [
            "Hello", "world.", "Nice", "to", "meet", "you",
        ]
        assert result.tokens[1].start == 0.35
        assert result.tokens[1].end == 0.7
        assert result.full_text == "Hello world. Nice to meet you"
        assert result.language == "en"

    def test_requests_word_timestamps(self, asr_config, audio, fake_model_cls, segments):
        model = fake_model_cls(segments)
        TranscriptionEngine(asr_config, CountingFactory(model)).transcribe(audio)
        assert model.calls[0]["word_timestamps"] is True
        assert model.calls[0]["beam_size"] == 1

    def test_rejects_wrong_sample_rate(self, asr_config, audio, fake_model_cls, segments):
        engine = TranscriptionEngine(asr_config, CountingFactory(fake_model_cls(segments)))
        with pytest.raises(ValueError):
            engine.transcribe(audio, 44100)
        assert not engine.busy

    def test_progress_events(self, asr_config, audio, fake_model_cls, segments):
        events = []
        engine = TranscriptionEngine(asr_config, CountingFactory(fake_model_cls(segments)))
        engine.transcribe(audio, 16000, events.append)

        phases = [e.phase for e in events]
        assert Phase.LOADING_MODEL in phases
        assert Phase.TRANSCRIBING in phases
        transcribing = [e.percent for e in events if e.phase == Phase.TRANSCRIBING]
        assert transcribing == sorted(transcribing)
        assert transcribing[-1] == 100.0


class TestFallback:
    """Segment-level timestamps when word timing is unavailable."""

    def test_falls_back_once(self, asr_config, audio, fake_model_cls, segments):
        model = fake_model_cls(segments, fail_word_level=True)
        engine = TranscriptionEngine(asr_config, CountingFactory(model))
        result = engine.transcribe(audio)

        assert result.coarse
        assert [t.text for t in result.tokens] == ["Hello world.", "Nice to meet you"]
        assert [call["word_timestamps"] for call in model.calls] == [True, False]

    def test_missing_word_timings_are_coarse(self, asr_config, audio, fake_model_cls, segments):
        for segment in segments:
            segment.words = []
        result = TranscriptionEngine(
            asr_config, CountingFactory(fake_model_cls(segments))
        ).transcribe(audio)
        assert result.coarse
        assert len(result.tokens) == 2

    def test_word_timestamps_disabled(self, asr_config, audio, fake_model_cls, segments):
        asr_config.word_timestamps = False
        model = fake_model_cls(segments)
        result = TranscriptionEngine(asr_config, CountingFactory(model)).transcribe(audio)
        assert result.coarse
        assert len(model.calls) == 1

    def test_both_passes_fail(self, asr_config, audio, fake_model_cls, segments):
        engine = TranscriptionEngine(
            asr_config, CountingFactory(fake_model_cls(segments, fail_always=True))
        )
        with pytest.raises(TranscriptionError):
            engine.transcribe(audio)
        assert not engine.busy


class TestModelLifecycle:
    """Lazy, shared, retryable model loading."""

    def test_loaded_once(self, asr_config, audio, fake_model_cls, segments):
        factory = CountingFactory(fake_model_cls(segments))
        engine = TranscriptionEngine(asr_config, factory)
        assert not engine.model_loaded

        engine.transcribe(audio)
        engine.transcribe(audio)
        assert factory.calls == 1
        assert engine.model_loaded

    def test_concurrent_loads_share_one_model(self):
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def slow_factory():
            calls.append(1)
            entered.set()
            release.wait(timeout=5)
            return object()

        handle = ModelHandle(slow_factory)
        results = []
        first = threading.Thread(target=lambda: results.append(handle.get()))
        first.start()
        assert entered.wait(timeout=5)

        second = threading.Thread(target=lambda: results.append(handle.get()))
        second.start()
        time.sleep(0.05)
        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert len(calls) == 1
        assert len(results) == 2
        assert results[0] is results[1]

    def test_load_failure_then_retry(self, asr_config, audio, fake_model_cls, segments):
        factory = CountingFactory(fake_model_cls(segments), failures=1)
        engine = TranscriptionEngine(asr_config, factory)

        with pytest.raises(ModelLoadError):
            engine.transcribe(audio)
        assert not engine.model_loaded

        result = engine.transcribe(audio)
        assert factory.calls == 2
        assert result.tokens

    def test_preload_reports_failure(self, asr_config, fake_model_cls, segments):
        engine = TranscriptionEngine(
            asr_config, CountingFactory(fake_model_cls(segments), failures=1)
        )
        assert engine.preload() is False
        assert engine.preload() is True


class TestBusyGuard:
    """At most one transcription at a time."""

    def test_second_request_rejected(self, asr_config, audio, fake_model_cls, segments):
        gate = threading.Event()
        model = fake_model_cls(segments, gate=gate)
        engine = TranscriptionEngine(asr_config, CountingFactory(model))

        results = []
        worker = threading.Thread(target=lambda: results.append(engine.transcribe(audio)))
        worker.start()
        assert model.entered.wait(timeout=5)

        try:
            assert engine.busy
            with pytest.raises(BusyError):
                engine.transcribe(audio)
        finally:
            gate.set()
            worker.join(timeout=5)

        assert len(results) == 1
        assert len(results[0].tokens) == 6
        assert not engine.busy
