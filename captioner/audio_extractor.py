"""
Audio Extractor - FFmpeg-based audio decoding for the speech model.

Decodes the whole audio track of a video (not streamed), down-mixes every
channel to mono by per-sample averaging, and linearly resamples to the rate
the speech model requires (16 kHz). The mixing and resampling loops work in
fixed-size chunks and yield between chunks so a decode never starves the
interface thread.
"""

import json
import subprocess
import tempfile
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import soundfile as sf

from .cooperative import CooperativeYield
from .errors import DecodeError
from .progress import Phase, ProgressCallback, emit

logger = logging.getLogger(__name__)


@dataclass
class DecodedAudio:
    """Mono float32 PCM at a known sample rate."""
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate

    def __repr__(self):
        return (f"DecodedAudio({len(self.samples)} samples @ {self.sample_rate}Hz, "
                f"{self.duration:.2f}s)")


def downmix(
    data: np.ndarray,
    chunk_size: int = 100000,
    yielder: Optional[CooperativeYield] = None,
) -> np.ndarray:
    """
    Average all channels into one.

    Args:
        data: Array of shape (frames,) or (frames, channels).
        chunk_size: Frames mixed per chunk.
        yielder: Yield point ticked once per chunk.

    Returns:
        1-D float32 array of length `frames`.
    """
    if data.ndim == 1:
        return data.astype(np.float32, copy=False)

    frames = data.shape[0]
    mono = np.zeros(frames, dtype=np.float32)
    for start in range(0, frames, chunk_size):
        end = min(start + chunk_size, frames)
        mono[start:end] = data[start:end].mean(axis=1, dtype=np.float64)
        if yielder is not None:
            yielder.tick()
    return mono


def resample_linear(
    samples: np.ndarray,
    from_rate: int,
    to_rate: int,
    chunk_size: int = 100000,
    yielder: Optional[CooperativeYield] = None,
) -> np.ndarray:
    """
    Resample by linear interpolation.

    For each output index i the source position is i * (from_rate / to_rate);
    the two bracketing input samples are blended by the fractional offset.
    The last input sample is reused past the end of the buffer.
    """
    if from_rate == to_rate or len(samples) == 0:
        return samples.astype(np.float32, copy=False)

    ratio = from_rate / to_rate
    new_length = int(np.floor(len(samples) / ratio + 0.5))
    last = len(samples) - 1
    result = np.empty(new_length, dtype=np.float32)

    for start in range(0, new_length, chunk_size):
        end = min(start + chunk_size, new_length)
        src = np.arange(start, end, dtype=np.float64) * ratio
        lo = np.minimum(np.floor(src).astype(np.int64), last)
        hi = np.minimum(lo + 1, last)
        frac = src - lo
        result[start:end] = samples[lo] * (1.0 - frac) + samples[hi] * frac
        if yielder is not None:
            yielder.tick()

    return result


class AudioExtractor:
    """Decodes a video's audio track to mono PCM at the model's sample rate."""

    def __init__(
        self,
        sample_rate: int = 16000,
        chunk_size: int = 100000,
        yielder: Optional[CooperativeYield] = None,
    ):
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.yielder = yielder or CooperativeYield(every=5)
        self._verify_ffmpeg()

    def _verify_ffmpeg(self):
        """Check that FFmpeg is available on the system PATH."""
        try:
            result = subprocess.run(
                ["ffmpeg", "-version"],
                capture_output=True, text=True, timeout=10
            )
            if result.returncode != 0:
                raise RuntimeError("FFmpeg returned non-zero exit code")
            version_line = result.stdout.split("\n")[0]
            logger.debug(f"FFmpeg found: {version_line}")
        except FileNotFoundError:
            raise RuntimeError(
                "FFmpeg not found. Please install FFmpeg and add it to PATH.\n"
                "Download: https://ffmpeg.org/download.html"
            )

    def probe_audio(self, video_path: Path) -> dict:
        """
        Describe the first audio stream of a media file.

        Returns:
            Dict with "channels" and "sample_rate" keys.

        Raises:
            DecodeError: If the file has no audio stream or cannot be probed.
        """
        cmd = [
            "ffprobe",
            "-v", "error",
            "-select_streams", "a",
            "-show_entries", "stream=index,channels,sample_rate",
            "-of", "json",
            str(video_path)
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        if result.returncode != 0:
            raise DecodeError(f"Cannot read media file: {result.stderr.strip()}")

        streams = json.loads(result.stdout or "{}").get("streams", [])
        if not streams:
            raise DecodeError(f"No audio track in {Path(video_path).name}")

        stream = streams[0]
        return {
            "channels": int(stream.get("channels", 1)),
            "sample_rate": int(stream.get("sample_rate", 0)),
        }

    def extract(
        self,
        video_path: Path,
        progress_cb: ProgressCallback = None,
    ) -> DecodedAudio:
        """
        Decode, down-mix and resample a video's audio track.

        Args:
            video_path: Path to the input video file.
            progress_cb: Optional phase-local progress callback.

        Returns:
            DecodedAudio at `self.sample_rate`.

        Raises:
            FileNotFoundError: If the video file doesn't exist.
            DecodeError: If there is no audio or FFmpeg cannot decode it.
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise FileNotFoundError(f"Video file not found: {video_path}")

        emit(progress_cb, Phase.EXTRACTING, 0, "Extracting audio...")
        info = self.probe_audio(video_path)

        with tempfile.TemporaryDirectory(prefix="captioner_") as tmp:
            wav_path = Path(tmp) / "audio.wav"
            self._decode_to_wav(video_path, wav_path)

            emit(progress_cb, Phase.EXTRACTING, 40, "Decoding audio...")
            data, source_rate = sf.read(str(wav_path), dtype="float32", always_2d=True)

        if data.shape[0] == 0:
            raise DecodeError(f"Audio track of {video_path.name} is empty")

        logger.info(
            f"Decoded {data.shape[0] / source_rate:.1f}s of audio "
            f"({info['channels']}ch @ {source_rate}Hz)"
        )

        self.yielder.yield_now()
        mono = downmix(data, self.chunk_size, self.yielder)
        emit(progress_cb, Phase.EXTRACTING, 70, "Mixing channels...")

        if source_rate != self.sample_rate:
            logger.debug(f"Resampling {source_rate}Hz -> {self.sample_rate}Hz")
            mono = resample_linear(
                mono, source_rate, self.sample_rate, self.chunk_size, self.yielder
            )

        emit(progress_cb, Phase.EXTRACTING, 100, "Audio ready")
        return DecodedAudio(samples=mono, sample_rate=self.sample_rate)

    def _decode_to_wav(self, video_path: Path, output: Path):
        """Decode the full audio track to float32 WAV at native rate/channels."""
        cmd = [
            "ffmpeg",
            "-i", str(video_path),
            "-vn",                          # No video
            "-acodec", "pcm_f32le",         # 32-bit float PCM
            "-loglevel", "error",           # Suppress verbose output
            "-y",                           # Overwrite
            str(output)
        ]

        logger.info(f"Extracting audio: {video_path.name} -> {output.name}")
        logger.debug(f"FFmpeg command: {' '.join(cmd)}")

        result = subprocess.run(cmd, capture_output=True, text=True)

        if result.returncode != 0 or not output.exists():
            raise DecodeError(
                f"FFmpeg could not decode audio: {result.stderr.strip()}"
            )
