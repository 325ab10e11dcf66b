"""
Video Source - thread-safe frame access over a MoviePy clip.

Both the live overlay and the export pass read frames by timestamp; the
underlying decoder is not safe for concurrent use, so every read goes
through one lock.
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class VideoSource:
    """Frame access by time, plus the clip's fps, size, duration and audio presence."""

    def __init__(self, clip, path: Optional[Path] = None):
        self._clip = clip
        self._lock = threading.Lock()
        self.path = Path(path) if path else None

    @classmethod
    def from_path(cls, path) -> "VideoSource":
        from moviepy import VideoFileClip

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Video file not found: {path}")
        clip = VideoFileClip(str(path))
        source = cls(clip, path)
        logger.info(
            f"Opened {path.name}: {source.size[0]}x{source.size[1]} "
            f"@ {source.fps:.2f}fps, {source.duration:.2f}s, "
            f"audio={'yes' if source.has_audio else 'no'}"
        )
        return source

    @property
    def clip(self):
        return self._clip

    @property
    def duration(self) -> float:
        return float(getattr(self._clip, "duration", 0.0) or 0.0)

    @property
    def fps(self) -> float:
        return float(getattr(self._clip, "fps", 0.0) or 0.0)

    @property
    def size(self) -> Tuple[int, int]:
        width, height = getattr(self._clip, "size", (0, 0))
        return (int(width), int(height))

    @property
    def has_audio(self) -> bool:
        return getattr(self._clip, "audio", None) is not None

    def get_frame(self, t: float) -> np.ndarray:
        """RGB uint8 frame (height x width x 3) at time t, clamped to the clip."""
        last = max(0.0, self.duration - 1e-3)
        t = max(0.0, min(float(t), last))
        with self._lock:
            frame = self._clip.get_frame(t)
        return np.asarray(frame, dtype=np.uint8)[..., :3]

    def close(self):
        with self._lock:
            close = getattr(self._clip, "close", None)
            if close is not None:
                close()
