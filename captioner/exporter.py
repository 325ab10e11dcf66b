"""
Export Renderer - burns captions into a new video file.

Runs a second, independent pass over the video: starting at time 0 it
steps through the clip one output frame at a time, composes each frame with
the same routine the live preview uses, and streams it to the encoder
together with the original audio. Captions are looked up with the same
pre-roll rule as playback and drawn at a scale of output height / 720.

Only one export runs at a time per renderer. stop() ends the pass early and
finalizes the file written so far; a failure on any frame aborts the whole
job and removes the partial file.
"""

import math
import time
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple

from .encoder import EncoderChoice, FrameEncoder, select_encoder
from .errors import BusyError, ExportError
from .overlay import compose_frame
from .progress import ProgressSink
from .style import CaptionStyle, round_half_up
from .track import Caption

logger = logging.getLogger(__name__)

QUALITY_HEIGHTS = {"720p": 720, "1080p": 1080, "4k": 2160}
QUALITY_BITRATES = {"720p": 5_000_000, "1080p": 8_000_000, "4k": 20_000_000}
DEFAULT_BITRATE = 6_000_000
QUALITIES = tuple(QUALITY_HEIGHTS) + ("original",)

EncoderFactory = Callable[..., FrameEncoder]


def _even(value: float) -> int:
    return max(2, 2 * round_half_up(value / 2.0))


def output_size(source_size: Tuple[int, int], quality: str) -> Tuple[int, int]:
    """
    Export frame size for a quality preset.

    Presets fix the height and keep the source aspect ratio; "original"
    keeps the source size. Both dimensions are made even for yuv420p.
    """
    width, height = source_size
    if width <= 0 or height <= 0:
        raise ExportError(f"Invalid video size {width}x{height}")
    if quality == "original":
        return (max(2, width - width % 2), max(2, height - height % 2))
    if quality not in QUALITY_HEIGHTS:
        raise ValueError(f"Unknown export quality: {quality}")
    target = QUALITY_HEIGHTS[quality]
    return (_even(target * width / height), target)


def bitrate_for(quality: str) -> int:
    return QUALITY_BITRATES.get(quality, DEFAULT_BITRATE)


@dataclass
class ExportJob:
    """One export invocation; transient and never persisted."""
    quality: str
    container: str
    bitrate: int
    output_path: Path
    actual_container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    size: Tuple[int, int] = (0, 0)
    fps: float = 0.0
    progress: float = 0.0
    frames: int = 0
    stopped: bool = False

    @property
    def fell_back(self) -> bool:
        return self.actual_container is not None and self.actual_container != self.container

    def __repr__(self):
        return (f"ExportJob({self.quality}, {self.actual_container or self.container}, "
                f"{self.progress:.0f}%, {self.output_path.name})")


class ExportRenderer:
    """Renders a captioned copy of a video source."""

    def __init__(
        self,
        config=None,
        encoder_factory: Optional[EncoderFactory] = None,
        available_encoders=None,
        time_fn: Callable[[], float] = time.perf_counter,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.quality = getattr(config, "quality", "original")
        self.container = getattr(config, "format", "webm")
        self.fps = getattr(config, "fps", 30)
        self.gif_fps = getattr(config, "gif_fps", 10)
        self.realtime = getattr(config, "realtime", False)
        self.reference_height = getattr(config, "reference_height", 720)

        self._encoder_factory = encoder_factory or FrameEncoder
        self._available = available_encoders
        self._time_fn = time_fn
        self._sleep_fn = sleep_fn
        self._busy = threading.Lock()
        self._stop = threading.Event()
        self.current_job: Optional[ExportJob] = None

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def stop(self):
        """End the running export early; the file written so far is kept."""
        if self.busy:
            logger.info("Export stop requested")
        self._stop.set()

    def export(
        self,
        source,
        captions: Sequence[Caption],
        style: CaptionStyle,
        output_path: Path,
        quality: Optional[str] = None,
        container: Optional[str] = None,
        bias: float = 0.15,
        progress_cb: ProgressSink = None,
    ) -> ExportJob:
        """
        Render the whole video with captions burned in.

        Args:
            source: VideoSource (or anything with get_frame/size/duration/
                has_audio/path).
            captions: Captions sorted by start time.
            style: Caption style.
            output_path: Requested output file.
            quality: 720p, 1080p, 4k or original.
            container: webm, mp4, mov, avi, mkv or gif.
            bias: Caption pre-roll in seconds.
            progress_cb: Optional (message, percent) callback.

        Returns:
            The finished ExportJob (output_path reflects the real container).

        Raises:
            BusyError: If an export is already running.
            EncoderUnsupportedError: If no container can be encoded at all.
            ExportError: If any frame fails; the partial file is removed.
        """
        if not self._busy.acquire(blocking=False):
            raise BusyError("An export is already in progress")
        try:
            self._stop.clear()
            return self._export(
                source, tuple(captions), style, Path(output_path),
                quality or self.quality, container or self.container,
                bias, progress_cb,
            )
        finally:
            self.current_job = None
            self._busy.release()

    def _export(
        self,
        source,
        captions: Tuple[Caption, ...],
        style: CaptionStyle,
        output_path: Path,
        quality: str,
        container: str,
        bias: float,
        progress_cb: ProgressSink,
    ) -> ExportJob:
        container = container.lower().lstrip(".")
        if quality not in QUALITIES:
            raise ValueError(f"Unknown export quality: {quality}")

        duration = float(source.duration)
        if duration <= 0:
            raise ExportError("Video has no duration to export")

        choice = select_encoder(container, self._available)
        path = self._output_path(output_path, container, choice)
        size = output_size(source.size, quality)
        fps = self.gif_fps if choice.container == "gif" else self.fps

        job = ExportJob(
            quality=quality,
            container=container,
            bitrate=bitrate_for(quality),
            output_path=path,
            actual_container=choice.container,
            video_codec=choice.video_codec,
            audio_codec=choice.audio_codec,
            size=size,
            fps=fps,
        )
        self.current_job = job

        audio_source = getattr(source, "path", None) if source.has_audio else None
        if audio_source is None:
            logger.info("Source has no audio track; exporting silent video")

        encoder = self._encoder_factory(
            path, size, fps, choice, job.bitrate, audio_source=audio_source
        )
        total_frames = max(1, int(math.ceil(duration * fps - 1e-9)))
        logger.info(
            f"Exporting {total_frames} frames at {size[0]}x{size[1]} {fps}fps "
            f"({choice.video_codec}/{choice.audio_codec or 'no audio'}) -> {path.name}"
        )
        self._report(progress_cb, "Recording...", 0)

        encoder.start()
        started = self._time_fn()
        t = 0.0
        finished = False
        try:
            for index in range(total_frames):
                if self._stop.is_set():
                    job.stopped = True
                    logger.info(f"Export stopped at {t:.2f}s")
                    break

                t = index / float(fps)
                frame = source.get_frame(t)
                image = compose_frame(
                    frame, t, captions, style,
                    bias=bias, size=size,
                    reference_height=self.reference_height,
                )
                encoder.write(image)
                job.frames += 1

                job.progress = min(100.0, 100.0 * t / duration)
                self._report(progress_cb, f"Recording... {t:.1f}s / {duration:.1f}s",
                             int(job.progress))

                if self.realtime:
                    lag = started + (index + 1) / float(fps) - self._time_fn()
                    if lag > 0:
                        self._sleep_fn(lag)
            finished = True
        except Exception as e:
            logger.error(f"Export failed at {t:.2f}s: {e}")
            if isinstance(e, ExportError):
                raise
            raise ExportError(f"Export failed at {t:.2f}s: {e}") from e
        finally:
            # Also reached on KeyboardInterrupt; never leave FFmpeg waiting on stdin
            if not finished:
                encoder.abort()

        encoder.close()
        if not job.stopped:
            job.progress = 100.0
        self._report(progress_cb, f"Saved {path.name}", 100)
        return job

    def _output_path(self, requested: Path, container: str, choice: EncoderChoice) -> Path:
        """Output file named for the container actually produced."""
        path = requested.with_suffix(f".{choice.extension}")
        if choice.container != container:
            logger.warning(
                f"{container} is not supported by this FFmpeg build; "
                f"writing {choice.container} to {path.name} instead"
            )
        return path

    @staticmethod
    def _report(cb: ProgressSink, msg: str, pct: int):
        logger.debug(msg)
        if cb:
            cb(msg, pct)
