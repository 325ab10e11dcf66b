"""
Frame Encoder - FFmpeg-backed video writer for the export pass.

Composed RGB frames are piped to an FFmpeg process as raw video; the source
video is passed as a second input so its audio track (if any) is muxed in.
Which codecs exist depends on the local FFmpeg build, so the container the
user asked for is resolved against `ffmpeg -encoders` and falls back to the
best supported alternative.
"""

import subprocess
import tempfile
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet, Optional, Tuple

from PIL import Image

from .errors import EncoderUnsupportedError, ExportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerSpec:
    extension: str
    video_codecs: Tuple[str, ...]
    audio_codecs: Tuple[str, ...]
    yuv420: bool = True


CONTAINERS = {
    "webm": ContainerSpec("webm", ("libvpx-vp9", "libvpx"), ("libopus", "libvorbis")),
    "mp4": ContainerSpec("mp4", ("libx264", "mpeg4"), ("aac",)),
    "mov": ContainerSpec("mov", ("libx264", "mpeg4"), ("aac",)),
    "mkv": ContainerSpec("mkv", ("libx264", "mpeg4"), ("aac",)),
    "avi": ContainerSpec("avi", ("mpeg4",), ("libmp3lame", "ac3")),
    "gif": ContainerSpec("gif", ("gif",), (), yuv420=False),
}

# Tried in order when the requested container cannot be encoded
FALLBACK_ORDER = ("webm", "mp4", "mkv", "avi")


@dataclass(frozen=True)
class EncoderChoice:
    """Resolved container and codecs for one export."""
    container: str
    extension: str
    video_codec: str
    audio_codec: Optional[str]
    pix_fmt: Optional[str]


@lru_cache(maxsize=1)
def available_encoders() -> FrozenSet[str]:
    """Names of the encoders compiled into the local FFmpeg."""
    try:
        result = subprocess.run(
            ["ffmpeg", "-hide_banner", "-encoders"],
            capture_output=True, text=True, timeout=30
        )
    except FileNotFoundError:
        logger.error("FFmpeg not found; no video encoders available")
        return frozenset()

    names = set()
    in_table = False
    for line in result.stdout.splitlines():
        if line.strip().startswith("------"):
            in_table = True
            continue
        parts = line.split()
        if in_table and len(parts) >= 2 and len(parts[0]) == 6:
            names.add(parts[1])
    logger.debug(f"FFmpeg provides {len(names)} encoders")
    return frozenset(names)


def resolve_container(container: str, available: FrozenSet[str]) -> EncoderChoice:
    """
    Pick codecs for exactly this container.

    Raises:
        EncoderUnsupportedError: Unknown container or no usable video codec.
    """
    profile = CONTAINERS.get(container)
    if profile is None:
        raise EncoderUnsupportedError(f"Unknown container format: {container}")

    video = next((c for c in profile.video_codecs if c in available), None)
    if video is None:
        raise EncoderUnsupportedError(
            f"No {container} video encoder available (tried {', '.join(profile.video_codecs)})"
        )
    audio = next((c for c in profile.audio_codecs if c in available), None)
    return EncoderChoice(
        container=container,
        extension=profile.extension,
        video_codec=video,
        audio_codec=audio,
        pix_fmt="yuv420p" if profile.yuv420 else None,
    )


def select_encoder(container: str, available: Optional[FrozenSet[str]] = None) -> EncoderChoice:
    """
    Resolve a container, falling back to the best supported alternative.

    Raises:
        EncoderUnsupportedError: If no container at all can be encoded.
    """
    container = container.lower().lstrip(".")
    if available is None:
        available = available_encoders()

    try:
        return resolve_container(container, available)
    except EncoderUnsupportedError as e:
        logger.warning(f"{e}; looking for a fallback format")

    for alternative in FALLBACK_ORDER:
        if alternative == container:
            continue
        try:
            choice = resolve_container(alternative, available)
        except EncoderUnsupportedError:
            continue
        logger.warning(f"Exporting as {alternative} instead of {container}")
        return choice

    raise EncoderUnsupportedError("No supported video encoder available in FFmpeg")


class FrameEncoder:
    """
    Streams frames into an FFmpeg encode.

    Usage:
        encoder = FrameEncoder(path, (1280, 720), 30, choice, 5_000_000, source_path)
        encoder.start()
        encoder.write(image)
        encoder.close()     # finalize; abort() discards the file instead
    """

    def __init__(
        self,
        output_path: Path,
        size: Tuple[int, int],
        fps: float,
        choice: EncoderChoice,
        bitrate: Optional[int] = None,
        audio_source: Optional[Path] = None,
    ):
        self.output_path = Path(output_path)
        self.size = (int(size[0]), int(size[1]))
        self.fps = fps
        self.choice = choice
        self.bitrate = bitrate
        self.audio_source = Path(audio_source) if audio_source else None
        self.frames_written = 0
        self._process: Optional[subprocess.Popen] = None
        self._stderr = None

    @property
    def with_audio(self) -> bool:
        return self.audio_source is not None and self.choice.audio_codec is not None

    def build_command(self) -> list:
        width, height = self.size
        cmd = [
            "ffmpeg", "-y",
            "-loglevel", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-s", f"{width}x{height}",
            "-r", f"{self.fps}",
            "-i", "-",
        ]
        if self.with_audio:
            cmd += ["-i", str(self.audio_source), "-map", "0:v", "-map", "1:a?"]
        cmd += ["-c:v", self.choice.video_codec]
        if self.bitrate and self.choice.container != "gif":
            cmd += ["-b:v", str(self.bitrate)]
        if self.choice.pix_fmt:
            cmd += ["-pix_fmt", self.choice.pix_fmt]
        if self.with_audio:
            cmd += ["-c:a", self.choice.audio_codec, "-shortest"]
        else:
            cmd += ["-an"]
        cmd.append(str(self.output_path))
        return cmd

    def start(self):
        if self._process is not None:
            raise ExportError("Encoder already started")
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command()
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        self._stderr = tempfile.TemporaryFile()
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr,
            )
        except FileNotFoundError:
            self._stderr.close()
            self._stderr = None
            raise ExportError(
                "FFmpeg not found. Please install FFmpeg and add it to PATH."
            )

    def write(self, image: Image.Image):
        """Append one frame; it must match the encoder size."""
        if self._process is None:
            raise ExportError("Encoder not started")
        if image.size != self.size:
            raise ExportError(f"Frame size {image.size} does not match {self.size}")
        try:
            self._process.stdin.write(image.convert("RGB").tobytes())
        except (BrokenPipeError, OSError) as e:
            raise ExportError(f"FFmpeg stopped accepting frames: {self._error_text() or e}")
        self.frames_written += 1

    def close(self) -> Path:
        """Flush and finalize the file."""
        if self._process is None:
            raise ExportError("Encoder not started")
        process = self._process
        try:
            process.stdin.close()
        except OSError:
            logger.debug("FFmpeg stdin already closed")
        returncode = process.wait()
        message = self._error_text()
        self._release()
        if returncode != 0:
            raise ExportError(f"FFmpeg failed (exit {returncode}): {message}")
        logger.info(f"Encoded {self.frames_written} frames -> {self.output_path}")
        return self.output_path

    def abort(self):
        """Kill the encode and delete the partial file."""
        process = self._process
        if process is not None:
            try:
                process.stdin.close()
            except OSError:
                logger.debug("FFmpeg stdin already closed")
            process.kill()
            process.wait()
            self._release()
        if self.output_path.exists():
            self.output_path.unlink()
            logger.info(f"Removed partial export {self.output_path.name}")

    def _error_text(self) -> str:
        if self._stderr is None:
            return ""
        self._stderr.seek(0)
        return self._stderr.read().decode("utf-8", errors="replace").strip()

    def _release(self):
        self._process = None
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None
