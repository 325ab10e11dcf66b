"""
Progress reporting - one channel of (phase, percent) events.

Each stage reports progress local to its own phase (0-100). The
ProgressComposer folds those into a single monotonic overall percentage
using fixed bands, so extraction, model loading, inference and
segmentation read as one job.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    EXTRACTING = "extracting audio"
    LOADING_MODEL = "loading model"
    TRANSCRIBING = "transcribing"
    SEGMENTING = "segmenting"
    DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    """A phase-local progress report."""
    phase: Phase
    percent: float
    message: str = ""


# Overall-job bands per phase. Transcription owns 10-90%, the tail is
# reserved for segmentation and installing the caption list.
PHASE_BANDS: Dict[Phase, Tuple[float, float]] = {
    Phase.EXTRACTING: (0.0, 5.0),
    Phase.LOADING_MODEL: (5.0, 10.0),
    Phase.TRANSCRIBING: (10.0, 90.0),
    Phase.SEGMENTING: (90.0, 100.0),
    Phase.DONE: (100.0, 100.0),
}

# Stage-side callback: receives phase-local events.
ProgressCallback = Optional[Callable[[ProgressEvent], None]]

# Caller-side sink: receives (label, overall percent).
ProgressSink = Optional[Callable[[str, int], None]]


def emit(cb: ProgressCallback, phase: Phase, percent: float, message: str = ""):
    """Send a phase-local event to an optional callback."""
    if cb:
        cb(ProgressEvent(phase, max(0.0, min(100.0, float(percent))), message))


class ProgressComposer:
    """
    Folds phase-local events into one overall percentage.

    The composed value never moves backwards, even if a stage re-reports an
    earlier phase (e.g. the transcription fallback restarting inference).
    """

    def __init__(self, sink: ProgressSink = None):
        self._sink = sink
        self._overall = 0.0

    @property
    def overall(self) -> float:
        return self._overall

    def __call__(self, event: ProgressEvent):
        low, high = PHASE_BANDS[event.phase]
        value = low + (high - low) * event.percent / 100.0
        self._overall = max(self._overall, value)
        label = event.message or event.phase.value.capitalize()
        logger.debug(f"[{self._overall:5.1f}%] {event.phase.value}: {label}")
        if self._sink:
            self._sink(label, int(round(self._overall)))
