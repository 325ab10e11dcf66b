"""
Caption Session - coordinates the whole caption workflow for one video.

Stages:
  1. Audio Extraction (FFmpeg, mono down-mix, 16 kHz resample)
  2. Transcription (Faster-Whisper word timestamps)
  3. Segmentation (fixed or auto caption spans)
  4. Playback / authoring (synchronizer + live overlay)
  5. Export (subtitle files, or a burned-in video)

A new caption list is installed only after every stage up to segmentation
succeeded; a failed transcription leaves the previous captions untouched.
"""

import json
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, List, Optional

from PIL import Image

from .audio_extractor import AudioExtractor
from .cooperative import CooperativeYield
from .errors import BusyError
from .exporter import ExportJob, ExportRenderer
from .overlay import LiveOverlay
from .progress import Phase, ProgressComposer, ProgressSink, emit
from .segmenter import CaptionSegmenter
from .style import CaptionStyle
from .subtitle_writer import SubtitleWriter
from .synchronizer import PlaybackSynchronizer
from .track import Caption, CaptionTrack
from .transcriber import TranscriptionEngine
from .video_source import VideoSource

logger = logging.getLogger(__name__)


class CaptionSession:
    """
    One editing session: a loaded video, its captions and its style.

    Usage:
        config = load_config()
        with CaptionSession(config) as session:
            session.open("video.mp4")
            session.transcribe(words_per_caption=0)
            session.export_subtitles("video.srt")
            session.export_video("video_captioned.webm")
    """

    def __init__(
        self,
        config,
        model_factory: Optional[Callable[[], Any]] = None,
        source_factory: Optional[Callable[[Path], Any]] = None,
        extractor: Optional[AudioExtractor] = None,
        exporter: Optional[ExportRenderer] = None,
    ):
        self.config = config
        self.yielder = CooperativeYield(
            every=config.audio.yield_every,
            max_cpu_percent=config.throttle.max_cpu_percent,
            check_interval=config.throttle.check_interval,
        )
        self._extractor = extractor
        self.engine = TranscriptionEngine(config.asr, model_factory)
        self.segmenter = CaptionSegmenter(config.segmenter)
        self.synchronizer = PlaybackSynchronizer(
            config.playback,
            style=CaptionStyle.from_dict(config.style),
        )
        self.exporter = exporter or ExportRenderer(config.export)
        self._source_factory = source_factory or VideoSource.from_path

        self.source = None
        self.video_path: Optional[Path] = None
        self._transcribe_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="captioner")

    # ── Accessors ──

    @property
    def extractor(self) -> AudioExtractor:
        if self._extractor is None:
            self._extractor = AudioExtractor(
                sample_rate=self.config.audio.sample_rate,
                chunk_size=self.config.audio.chunk_size,
                yielder=self.yielder,
            )
        return self._extractor

    @property
    def track(self) -> CaptionTrack:
        return self.synchronizer.track

    @property
    def captions(self):
        return self.track.snapshot()

    @property
    def style(self) -> CaptionStyle:
        return self.synchronizer.style

    @property
    def busy(self) -> bool:
        return self._transcribe_lock.locked() or self.exporter.busy

    # ── Video ──

    def open(self, video_path: Path):
        """Load a video; any previous video and its captions are discarded."""
        video_path = Path(video_path)
        source = self._source_factory(video_path)
        if self.source is not None:
            self.source.close()
        self.source = source
        self.video_path = video_path
        self.synchronizer.load(source.duration)
        self.synchronizer.replace_captions([])
        logger.info(f"Session video: {video_path.name} ({source.duration:.1f}s)")

    def preload_model(self) -> Future:
        """Start loading the speech model in the background."""
        return self._executor.submit(self.engine.preload)

    # ── Transcription ──

    def transcribe(
        self,
        words_per_caption: int = 0,
        progress_cb: ProgressSink = None,
    ) -> List[Caption]:
        """
        Run extraction, transcription and segmentation, then install the captions.

        Args:
            words_per_caption: Words per caption; 0 selects auto mode.
            progress_cb: Optional (message, overall percent) callback.

        Returns:
            The installed captions.

        Raises:
            BusyError: If a transcription is already running.
            DecodeError / ModelLoadError / TranscriptionError: Stage failures;
                the current caption list is left unchanged.
        """
        if self.video_path is None:
            raise RuntimeError("No video loaded")
        if not self._transcribe_lock.acquire(blocking=False):
            raise BusyError("A transcription is already in progress")

        try:
            start_time = time.monotonic()
            composer = ProgressComposer(progress_cb)

            logger.info(f"{'='*60}")
            logger.info(f"Video Captioner")
            logger.info(f"Input:  {self.video_path}")
            logger.info(f"ASR:    Faster-Whisper {self.engine.model_size} ({self.engine.compute_type})")
            logger.info(f"Mode:   {'auto' if words_per_caption == 0 else f'{words_per_caption} words'}")
            logger.info(f"{'='*60}")

            # ── Stage 1: Audio Extraction ──
            audio = self.extractor.extract(self.video_path, composer)

            # ── Stage 2: Transcription ──
            result = self.engine.transcribe(audio.samples, audio.sample_rate, composer)

            # ── Stage 3: Segmentation ──
            emit(composer, Phase.SEGMENTING, 0, "Creating captions...")
            if result.coarse:
                captions = self.segmenter.from_segments(result.tokens)
            else:
                captions = self.segmenter.segment(result.tokens, words_per_caption)

            self.synchronizer.replace_captions(captions)
            emit(composer, Phase.SEGMENTING, 100, f"Created {len(captions)} captions")

            elapsed = time.monotonic() - start_time
            emit(composer, Phase.DONE, 100, f"Done! ({elapsed:.1f}s)")
            logger.info(f"Transcription pipeline complete in {elapsed:.1f}s: {len(captions)} captions")

            preview = SubtitleWriter(self.style).write_preview(captions, max_entries=5)
            if preview:
                logger.info(f"Preview:\n{preview}")
            return captions
        finally:
            self._transcribe_lock.release()

    def transcribe_async(
        self,
        words_per_caption: int = 0,
        progress_cb: ProgressSink = None,
    ) -> Future:
        """Run transcribe() on the session's worker thread."""
        return self._executor.submit(self.transcribe, words_per_caption, progress_cb)

    # ── Style ──

    def load_style(self, style_path: Path) -> CaptionStyle:
        """Replace the caption style with one read from a JSON file."""
        with open(style_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        # Accept both a bare style and a full {"captions", "style"} export
        style = CaptionStyle.from_dict(data.get("style", data))
        self.synchronizer.set_style(style)
        logger.info(f"Caption style loaded from {style_path}")
        return style

    # ── Output ──

    def preview_frame(self, t: float) -> Image.Image:
        """The composed frame (video + caption) the preview shows at time t."""
        if self.source is None:
            raise RuntimeError("No video loaded")
        return LiveOverlay(
            self.synchronizer, self.source,
            reference_height=self.config.export.reference_height,
        ).render_at(t)

    def export_subtitles(self, output_path: Path, fmt: Optional[str] = None) -> Path:
        return SubtitleWriter(self.style).write(self.captions, output_path, fmt)

    def export_video(
        self,
        output_path: Path,
        quality: Optional[str] = None,
        container: Optional[str] = None,
        progress_cb: ProgressSink = None,
    ) -> ExportJob:
        """Burn the current captions into a new video file."""
        if self.source is None:
            raise RuntimeError("No video loaded")
        return self.exporter.export(
            self.source,
            self.captions,
            self.style,
            output_path,
            quality=quality,
            container=container,
            bias=self.synchronizer.bias,
            progress_cb=progress_cb,
        )

    def stop_export(self):
        self.exporter.stop()

    # ── Lifecycle ──

    def close(self):
        self.exporter.stop()
        self.synchronizer.close()
        self._executor.shutdown(wait=True)
        if self.source is not None:
            self.source.close()
            self.source = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
