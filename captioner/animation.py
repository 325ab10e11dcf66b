"""
Caption entrance animations.

Each animation is a short curve over the time since the caption became
visible, producing an opacity, a uniform scale and an offset (in reference
pixels) that the renderer applies about the caption anchor. Kinds without
a curve here render in their final, static state.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AnimationFrame:
    opacity: float = 1.0
    scale: float = 1.0
    dx: float = 0.0
    dy: float = 0.0


STATIC = AnimationFrame()

# Seconds each entrance takes
DURATIONS = {
    "fade": 0.15,
    "slide": 0.15,
    "bounce": 0.2,
    "pop": 0.2,
    "zoom": 0.2,
}


def _ease_out(p: float) -> float:
    return 1.0 - (1.0 - p) ** 3


def animation_frame(kind: str, elapsed: Optional[float]) -> AnimationFrame:
    """
    Animation state `elapsed` seconds after the caption appeared.

    Args:
        kind: CaptionStyle.animation value.
        elapsed: Seconds since the caption became visible; None means
            "settled" and always yields the static frame.
    """
    duration = DURATIONS.get(kind)
    if duration is None or elapsed is None or elapsed >= duration:
        return STATIC

    p = max(0.0, elapsed) / duration
    eased = _ease_out(p)

    if kind == "fade":
        return AnimationFrame(opacity=eased)
    if kind == "slide":
        return AnimationFrame(opacity=eased, dy=20.0 * (1.0 - eased))
    if kind == "bounce":
        return AnimationFrame(scale=1.0 + 0.05 * math.sin(math.pi * p))
    if kind == "pop":
        # 0.5 -> 1.1 over the first half, settle to 1.0 over the second
        if p < 0.5:
            scale = 0.5 + 0.6 * (p / 0.5)
        else:
            scale = 1.1 - 0.1 * ((p - 0.5) / 0.5)
        return AnimationFrame(opacity=p, scale=scale)
    if kind == "zoom":
        return AnimationFrame(opacity=eased, scale=2.0 - eased)
    return STATIC
