"""
Playback Synchronizer - keeps the caption overlay in step with playback.

State machine over Idle -> Loaded -> Playing <-> Paused, with a transient
Seeking state while the playhead is snapped. A background poller reads the
media clock at a short fixed interval (rather than waiting for coarse
time-update events) and publishes the current time and the caption active
at that time to subscribers.

The synchronizer also owns the session's caption track and caption style,
so every authoring operation (add, retype, duplicate, delete, move,
resize) goes through one place.
"""

import enum
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from .clock import MediaClock, TimeFn
from .style import CaptionStyle, move_anchor, resize_font
from .track import DEFAULT_CAPTION_TEXT, Caption, CaptionTrack

logger = logging.getLogger(__name__)


class SyncState(enum.Enum):
    IDLE = "idle"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"
    SEEKING = "seeking"


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of where playback is."""
    current_time: float = 0.0
    duration: float = 0.0
    is_playing: bool = False
    selected_caption_id: Optional[str] = None


Listener = Callable[[PlaybackState, Optional[Caption]], None]


class PlaybackSynchronizer:
    """Maps the media clock to the active caption and hosts caption authoring."""

    def __init__(
        self,
        config=None,
        track: Optional[CaptionTrack] = None,
        style: Optional[CaptionStyle] = None,
        time_fn: TimeFn = time.perf_counter,
    ):
        self.bias = getattr(config, "bias", 0.15)
        self.poll_interval = getattr(config, "poll_interval", 0.016)
        self.anchor_margin = getattr(config, "anchor_margin", 5.0)
        self.font_range = (
            getattr(config, "min_font_size", 12),
            getattr(config, "max_font_size", 150),
        )
        default_duration = getattr(config, "default_caption_duration", 3.0)

        self.track = track or CaptionTrack(default_duration=default_duration)
        self._style = style or CaptionStyle()
        self._time_fn = time_fn

        self._lock = threading.RLock()
        self._state = SyncState.IDLE
        self._clock: Optional[MediaClock] = None
        self._current_time = 0.0
        self._selected_id: Optional[str] = None
        self._listeners: List[Listener] = []

        self._poll_stop = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

    # ── State ──

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def current_time(self) -> float:
        return self._current_time

    @property
    def duration(self) -> float:
        return self._clock.duration if self._clock else 0.0

    @property
    def selected_caption_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def playback_state(self) -> PlaybackState:
        return PlaybackState(
            current_time=self._current_time,
            duration=self.duration,
            is_playing=self._state == SyncState.PLAYING,
            selected_caption_id=self._selected_id,
        )

    def active_caption(self, t: Optional[float] = None) -> Optional[Caption]:
        """Caption visible at t (default: the current time)."""
        when = self._current_time if t is None else t
        return self.track.active_at(when, self.bias)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register for (PlaybackState, active caption) updates. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ── Transport ──

    def load(self, duration: float):
        """Attach a new media clock (a freshly opened video)."""
        self._stop_poller()
        with self._lock:
            self._clock = MediaClock(duration, self._time_fn)
            self._current_time = 0.0
            self._selected_id = None
            self._state = SyncState.LOADED
        logger.info(f"Playback loaded ({duration:.2f}s)")
        self._publish()

    def unload(self):
        self._stop_poller()
        with self._lock:
            self._clock = None
            self._current_time = 0.0
            self._selected_id = None
            self._state = SyncState.IDLE

    def play(self):
        clock = self._require_clock()
        with self._lock:
            clock.play()
            self._current_time = clock.current_time()
            self._state = SyncState.PLAYING
        self._start_poller()
        self._publish()

    def pause(self):
        clock = self._require_clock()
        self._stop_poller()
        with self._lock:
            clock.pause()
            self._current_time = clock.current_time()
            self._state = SyncState.PAUSED
        self._publish()

    def toggle(self):
        if self._state == SyncState.PLAYING:
            self.pause()
        else:
            self.play()

    def seek(self, t: float) -> float:
        """Snap the playhead to t (clamped to the video); no interpolation."""
        clock = self._require_clock()
        with self._lock:
            resume = self._state
            self._state = SyncState.SEEKING
            self._current_time = clock.seek(t)
        # Listeners see SEEKING at the new position, then the resumed state
        try:
            self._publish()
        finally:
            with self._lock:
                if self._state == SyncState.SEEKING:
                    self._state = resume
        logger.debug(f"Seek -> {self._current_time:.3f}s")
        self._publish()
        return self._current_time

    def tick(self) -> float:
        """Read the clock once and publish. Called by the poller."""
        clock = self._require_clock()
        with self._lock:
            self._current_time = clock.current_time()
            ended = self._state == SyncState.PLAYING and clock.ended
            if ended:
                clock.pause()
                self._state = SyncState.PAUSED
        if ended:
            logger.info("Playback reached the end")
            self._poll_stop.set()
        self._publish()
        return self._current_time

    # ── Selection ──

    def select(self, caption_id: str) -> Caption:
        """Select a caption and jump to its start (marker click)."""
        caption = self._require_caption(caption_id)
        with self._lock:
            self._selected_id = caption_id
        self.seek(caption.start_time)
        return caption

    def deselect(self):
        with self._lock:
            self._selected_id = None
        self._publish()

    def play_from_caption(self, caption_id: str) -> Caption:
        caption = self.select(caption_id)
        self.play()
        return caption

    # ── Caption authoring ──

    def add_caption(self, text: str = DEFAULT_CAPTION_TEXT) -> Caption:
        """New caption at the playhead; it becomes the selection."""
        caption = self.track.add_at(self._current_time, text)
        with self._lock:
            self._selected_id = caption.id
        self._publish()
        return caption

    def retype(self, caption_id: str, text: str) -> Caption:
        caption = self.track.update(caption_id, text=text)
        self._publish()
        return caption

    def retime(self, caption_id: str, start_time: float, end_time: float) -> Caption:
        caption = self.track.update(caption_id, start_time=start_time, end_time=end_time)
        self._publish()
        return caption

    def duplicate(self, caption_id: str) -> Caption:
        """Copy a caption to start where it ends; the copy becomes the selection."""
        caption = self.track.duplicate(caption_id)
        with self._lock:
            self._selected_id = caption.id
        self._publish()
        return caption

    def delete(self, caption_id: str) -> Caption:
        caption = self.track.delete(caption_id)
        with self._lock:
            if self._selected_id == caption_id:
                self._selected_id = None
        self._publish()
        return caption

    def replace_captions(self, captions: List[Caption]):
        """Install a whole new caption list (e.g. after transcription)."""
        self.track.replace_all(captions)
        with self._lock:
            self._selected_id = None
        self._publish()

    # ── Style authoring ──

    @property
    def style(self) -> CaptionStyle:
        return self._style

    def set_style(self, style: CaptionStyle):
        with self._lock:
            self._style = style
        self._publish()

    def replace_style(self, **changes) -> CaptionStyle:
        """Replace whole style fields, e.g. replace_style(font_size=48)."""
        self.set_style(self._style.with_changes(**changes))
        return self._style

    def move_anchor(self, x_percent: float, y_percent: float) -> CaptionStyle:
        """Drag the caption to a custom position (percent of the frame)."""
        self.set_style(move_anchor(self._style, x_percent, y_percent, self.anchor_margin))
        return self._style

    def resize_font(self, start_size: float, dx: float, dy: float) -> CaptionStyle:
        """Corner-drag resize relative to the font size when the drag began."""
        self.set_style(resize_font(self._style, start_size, dx, dy, self.font_range))
        return self._style

    # ── Lifecycle ──

    def close(self):
        self._stop_poller()
        with self._lock:
            self._listeners.clear()

    # ── Internal ──

    def _require_clock(self) -> MediaClock:
        clock = self._clock
        if clock is None:
            raise RuntimeError("No video loaded")
        return clock

    def _require_caption(self, caption_id: str) -> Caption:
        caption = self.track.get(caption_id)
        if caption is None:
            raise KeyError(f"No caption with id {caption_id}")
        return caption

    def _publish(self):
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        state = self.playback_state
        caption = self.active_caption(state.current_time)
        for listener in listeners:
            try:
                listener(state, caption)
            except Exception:
                logger.exception("Playback listener failed")

    def _start_poller(self):
        if self._poll_thread and self._poll_thread.is_alive():
            return
        self._poll_stop.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop, name="playback-poller", daemon=True
        )
        self._poll_thread.start()

    def _stop_poller(self):
        self._poll_stop.set()
        thread = self._poll_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2)
        self._poll_thread = None

    def _poll_loop(self):
        logger.debug("Playback poller started")
        while not self._poll_stop.wait(self.poll_interval):
            if self._clock is None:
                break
            self.tick()
        logger.debug("Playback poller stopped")
