"""
Tests for the caption session and the CLI entry point, end to end with
stand-ins for FFmpeg, the speech model and the video decoder.
"""

import json
import sys
import threading

import pytest

import main as main_module
from captioner.errors import BusyError, DecodeError
from captioner.exporter import ExportRenderer
from captioner.orchestrator import CaptionSession
from config import AppConfig

VP9_ONLY = frozenset({"libvpx-vp9", "libopus"})


@pytest.fixture
def config():
    return AppConfig()


@pytest.fixture
def make_session(config, fake_model_cls, segments, source_cls, extractor_cls, encoder_cls):
    sessions = []

    def factory(model=None, extractor=None):
        model = model or fake_model_cls(segments)
        session = CaptionSession(
            config,
            model_factory=lambda: model,
            source_factory=lambda path: source_cls(duration=3.0),
            extractor=extractor or extractor_cls(),
            exporter=ExportRenderer(
                config.export, encoder_factory=encoder_cls, available_encoders=VP9_ONLY
            ),
        )
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


class TestTranscribe:
    def test_auto_captions_installed(self, make_session):
        session = make_session()
        session.open("talk.mp4")
        captions = session.transcribe()

        assert [c.text for c in captions] == ["Hello world.", "Nice to meet", "you"]
        assert tuple(captions) == session.captions

    def test_fixed_word_count(self, make_session):
        session = make_session()
        session.open("talk.mp4")
        captions = session.transcribe(words_per_caption=2)
        assert [c.text for c in captions] == ["Hello world.", "Nice to", "meet you"]

    def test_coarse_fallback(self, make_session, fake_model_cls, segments):
        session = make_session(model=fake_model_cls(segments, fail_word_level=True))
        session.open("talk.mp4")
        captions = session.transcribe()
        assert [c.text for c in captions] == ["Hello world.", "Nice to meet you"]

    def test_progress_reaches_done(self, make_session):
        session = make_session()
        session.open("talk.mp4")
        progress = []
        session.transcribe(progress_cb=lambda msg, pct: progress.append(pct))

        assert progress == sorted(progress)
        assert progress[-1] == 100

    def test_failure_keeps_previous_captions(self, make_session, extractor_cls):
        extractor = extractor_cls()
        session = make_session(extractor=extractor)
        session.open("talk.mp4")
        before = session.transcribe()

        extractor.error = DecodeError("No audio track")
        with pytest.raises(DecodeError):
            session.transcribe()
        assert session.captions == tuple(before)
        assert not session.busy

    def test_requires_video(self, make_session):
        with pytest.raises(RuntimeError):
            make_session().transcribe()

    def test_concurrent_transcription_rejected(self, make_session, fake_model_cls, segments):
        gate = threading.Event()
        model = fake_model_cls(segments, gate=gate)
        session = make_session(model=model)
        session.open("talk.mp4")

        future = session.transcribe_async()
        assert model.entered.wait(timeout=5)
        try:
            with pytest.raises(BusyError):
                session.transcribe()
        finally:
            gate.set()
        assert len(future.result(timeout=5)) == 3

    def test_open_resets_captions(self, make_session):
        session = make_session()
        session.open("talk.mp4")
        session.transcribe()
        session.open("other.mp4")
        assert session.captions == ()


class TestSessionOutput:
    @pytest.fixture
    def session(self, make_session):
        session = make_session()
        session.open("talk.mp4")
        session.transcribe()
        return session

    def test_export_subtitles(self, session, tmp_path):
        path = session.export_subtitles(tmp_path / "talk.srt")
        content = path.read_text(encoding="utf-8")
        assert content.startswith("1\n00:00:00,000 --> 00:00:00,700\nHello world.\n")

    def test_preview_frame(self, session):
        image = session.preview_frame(0.5)
        assert image.size == (64, 36)

    def test_export_video(self, session, encoder_cls, tmp_path):
        job = session.export_video(tmp_path / "talk_captioned.webm")
        assert job.frames == 90
        assert job.output_path == tmp_path / "talk_captioned.webm"
        assert len(encoder_cls.instances[0].frames) == 90

    def test_load_style_from_export(self, session, tmp_path):
        path = tmp_path / "style.json"
        path.write_text(json.dumps({"captions": [], "style": {"fontSize": 44}}), encoding="utf-8")
        style = session.load_style(path)
        assert style.font_size == 44
        assert session.style.font_size == 44

    def test_authoring_through_synchronizer(self, session):
        first = session.captions[0]
        session.synchronizer.retype(first.id, "Hi world.")
        assert session.captions[0].text == "Hi world."

    def test_close_releases_source(self, make_session):
        session = make_session()
        session.open("talk.mp4")
        source = session.source
        session.close()
        assert source.closed


class TestMain:
    def test_writes_subtitles(self, monkeypatch, tmp_path, fake_model_cls, segments,
                              source_cls, extractor_cls):
        video = tmp_path / "talk.mp4"
        video.write_bytes(b"fake video")

        def session_factory(config):
            return CaptionSession(
                config,
                model_factory=lambda: fake_model_cls(segments),
                source_factory=lambda path: source_cls(duration=3.0),
                extractor=extractor_cls(),
            )

        monkeypatch.setattr(main_module, "CaptionSession", session_factory)
        monkeypatch.setattr(sys, "argv", ["main.py", str(video), "-q", "-f", "vtt"])
        main_module.main()

        output = tmp_path / "talk.vtt"
        assert output.read_text(encoding="utf-8").startswith("WEBVTT")

    def test_missing_video_exits(self, monkeypatch, tmp_path):
        monkeypatch.setattr(sys, "argv", ["main.py", str(tmp_path / "missing.mp4")])
        with pytest.raises(SystemExit) as exc:
            main_module.main()
        assert exc.value.code == 1

    def test_stage_error_exits(self, monkeypatch, tmp_path, fake_model_cls, segments,
                               source_cls, extractor_cls):
        video = tmp_path / "talk.mp4"
        video.write_bytes(b"fake video")

        def session_factory(config):
            return CaptionSession(
                config,
                model_factory=lambda: fake_model_cls(segments),
                source_factory=lambda path: source_cls(duration=3.0),
                extractor=extractor_cls(error=DecodeError("No audio track")),
            )

        monkeypatch.setattr(main_module, "CaptionSession", session_factory)
        monkeypatch.setattr(sys, "argv", ["main.py", str(video), "-q"])
        with pytest.raises(SystemExit) as exc:
            main_module.main()
        assert exc.value.code == 1
