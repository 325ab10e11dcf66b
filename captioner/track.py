"""
Caption Track - the ordered list of caption spans.

Captions are kept sorted ascending by start time. Spans may leave gaps
(silence) but never end before they start. Every mutation builds a new
sorted tuple and swaps it in under a lock, so readers (the active-caption
lookup on the polling thread, the export pass) only ever see a fully
sorted list.
"""

import uuid
import logging
import threading
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CAPTION_TEXT = "Your caption here"


def new_caption_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Caption:
    """A single caption span."""
    id: str
    text: str
    start_time: float
    end_time: float

    def __post_init__(self):
        if self.start_time < 0:
            raise ValueError(f"Caption start must be >= 0, got {self.start_time}")
        if self.end_time < self.start_time:
            raise ValueError(
                f"Caption ends before it starts ({self.start_time} > {self.end_time})"
            )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    def is_active(self, t: float, bias: float = 0.0) -> bool:
        """Visible at time t: non-empty text and t in [start - bias, end]."""
        return self.has_text and (self.start_time - bias) <= t <= self.end_time

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Caption":
        return cls(
            id=str(data.get("id") or new_caption_id()),
            text=str(data.get("text", "")),
            start_time=float(data.get("start_time", data.get("startTime", 0.0))),
            end_time=float(data.get("end_time", data.get("endTime", 0.0))),
        )

    def __repr__(self):
        return (f"Caption({self.start_time:.2f}-{self.end_time:.2f}s, "
                f"'{self.text[:40]}')")


def _sorted(captions: Iterable[Caption]) -> Tuple[Caption, ...]:
    return tuple(sorted(captions, key=lambda c: c.start_time))


def find_active(captions: Sequence[Caption], t: float, bias: float = 0.0) -> Optional[Caption]:
    """First caption (in start order) visible at time t in a sorted sequence."""
    for caption in captions:
        if caption.start_time - bias > t:
            break
        if caption.is_active(t, bias):
            return caption
    return None


class CaptionTrack:
    """Thread-safe, always-sorted caption collection."""

    def __init__(self, captions: Iterable[Caption] = (), default_duration: float = 3.0):
        self.default_duration = default_duration
        self._lock = threading.RLock()
        self._captions: Tuple[Caption, ...] = _sorted(captions)

    # ── Reads ──

    def snapshot(self) -> Tuple[Caption, ...]:
        """Immutable view of the current list."""
        return self._captions

    def __len__(self) -> int:
        return len(self._captions)

    def __iter__(self) -> Iterator[Caption]:
        return iter(self._captions)

    def get(self, caption_id: str) -> Optional[Caption]:
        for caption in self._captions:
            if caption.id == caption_id:
                return caption
        return None

    def active_at(self, t: float, bias: float = 0.0) -> Optional[Caption]:
        """First caption (in start order) visible at time t."""
        return find_active(self._captions, t, bias)

    # ── Mutations ──

    def add(self, caption: Caption) -> Caption:
        with self._lock:
            self._install(self._captions + (caption,))
        return caption

    def add_at(self, playhead: float, text: str = DEFAULT_CAPTION_TEXT) -> Caption:
        """New caption starting at the playhead with the default duration."""
        start = max(0.0, float(playhead))
        caption = Caption(new_caption_id(), text, start, start + self.default_duration)
        logger.debug(f"Added {caption}")
        return self.add(caption)

    def update(
        self,
        caption_id: str,
        text: Optional[str] = None,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
    ) -> Caption:
        """
        Replace fields of one caption and re-sort.

        Raises:
            KeyError: If no caption has this id.
            ValueError: If the new span would end before it starts.
        """
        with self._lock:
            current = self._require(caption_id)
            changes = {}
            if text is not None:
                changes["text"] = text
            if start_time is not None:
                changes["start_time"] = float(start_time)
            if end_time is not None:
                changes["end_time"] = float(end_time)
            updated = replace(current, **changes)
            self._install(updated if c.id == caption_id else c for c in self._captions)
        return updated

    def delete(self, caption_id: str) -> Caption:
        with self._lock:
            removed = self._require(caption_id)
            self._install(c for c in self._captions if c.id != caption_id)
        logger.debug(f"Deleted {removed}")
        return removed

    def duplicate(self, caption_id: str) -> Caption:
        """Copy a caption to start where it ends, keeping its duration."""
        with self._lock:
            source = self._require(caption_id)
            copy = Caption(
                new_caption_id(),
                source.text,
                source.end_time,
                source.end_time + source.duration,
            )
            self._install(self._captions + (copy,))
        return copy

    def replace_all(self, captions: Iterable[Caption]):
        """Install a whole new list (e.g. after transcription)."""
        with self._lock:
            self._install(captions)
        logger.info(f"Caption track now holds {len(self._captions)} captions")

    def clear(self):
        with self._lock:
            self._captions = ()

    # ── Internal ──

    def _require(self, caption_id: str) -> Caption:
        caption = self.get(caption_id)
        if caption is None:
            raise KeyError(f"No caption with id {caption_id}")
        return caption

    def _install(self, captions: Iterable[Caption]):
        self._captions = _sorted(captions)
