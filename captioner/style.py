"""
Caption Style - the visual description shared by preview and export.

CaptionStyle is immutable: authoring operations (drag, resize, preset
changes) return a new style with whole fields replaced, so the renderer
never observes a half-updated style.
"""

import math
import logging
from dataclasses import dataclass, asdict, fields, replace
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

POSITIONS = ("bottom", "top", "center", "custom")
TEXT_TRANSFORMS = ("none", "uppercase", "lowercase", "capitalize")
ANIMATIONS = (
    "none", "fade", "slide", "typewriter", "bounce", "highlight", "pop",
    "karaoke", "glow", "shake", "wave", "zoom", "flip", "swing", "elastic", "neon",
)


@dataclass(frozen=True)
class CaptionStyle:
    """Font, colours, placement and effects for burned-in captions."""
    font_family: str = "Montserrat"
    font_size: int = 32                 # px at the 720px reference height
    font_weight: int = 900
    text_color: str = "#ffffff"
    highlight_color: str = "#ffff00"
    background_color: str = "#000000"
    background_opacity: float = 0.0     # 0-1
    position: str = "center"
    custom_x: float = 50.0              # percent of surface width
    custom_y: float = 50.0              # percent of surface height
    padding: float = 8.0
    border_radius: float = 0.0
    text_shadow: bool = True
    text_transform: str = "uppercase"
    animation: str = "pop"
    stroke_color: str = "#000000"
    stroke_width: float = 0.0
    letter_spacing: float = 0.0
    rotation: float = 0.0               # degrees
    opacity: float = 100.0              # 0-100
    tilt_x: float = 0.0                 # degrees
    tilt_y: float = 0.0                 # degrees
    curve: float = 0.0
    reflection: bool = False
    reflection_opacity: float = 0.3     # 0-1

    def __post_init__(self):
        if self.position not in POSITIONS:
            raise ValueError(f"Unknown caption position: {self.position}")
        if self.text_transform not in TEXT_TRANSFORMS:
            raise ValueError(f"Unknown text transform: {self.text_transform}")
        if self.animation not in ANIMATIONS:
            raise ValueError(f"Unknown animation: {self.animation}")
        if self.font_size <= 0:
            raise ValueError(f"Font size must be positive, got {self.font_size}")

    def with_changes(self, **changes) -> "CaptionStyle":
        """Copy with whole fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CaptionStyle":
        """
        Build a style from a dict, accepting snake_case or camelCase keys.
        Unknown keys are ignored.
        """
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name in names:
                values[name] = value
            else:
                logger.debug(f"Ignoring unknown style key: {key}")
        return cls(**values)

    @property
    def bold(self) -> bool:
        return self.font_weight >= 700


def _snake_case(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def apply_text_transform(text: str, transform: str) -> str:
    """Apply a CSS-like text-transform to caption text."""
    if transform == "uppercase":
        return text.upper()
    if transform == "lowercase":
        return text.lower()
    if transform == "capitalize":
        return " ".join(w[:1].upper() + w[1:] for w in text.split(" "))
    return text


def move_anchor(
    style: CaptionStyle,
    x_percent: float,
    y_percent: float,
    margin: float = 5.0,
) -> CaptionStyle:
    """Place the caption at a custom point, kept `margin` percent from the edges."""
    x = max(margin, min(100.0 - margin, x_percent))
    y = max(margin, min(100.0 - margin, y_percent))
    return style.with_changes(position="custom", custom_x=x, custom_y=y)


def resize_font(
    style: CaptionStyle,
    start_size: float,
    dx: float,
    dy: float,
    size_range: Tuple[int, int] = (12, 150),
) -> CaptionStyle:
    """Font size after a corner drag of (dx, dy) pixels from `start_size`."""
    low, high = size_range
    size = max(low, min(high, start_size + (dx + dy) / 4.0))
    return style.with_changes(font_size=round_half_up(size))


def parse_color(value: str, alpha: float = 1.0) -> Tuple[int, int, int, int]:
    """Convert '#rrggbb' (or '#rgb') plus an alpha in 0-1 to an RGBA tuple."""
    hex_value = value.lstrip("#")
    if len(hex_value) == 3:
        hex_value = "".join(c * 2 for c in hex_value)
    if len(hex_value) != 6:
        raise ValueError(f"Invalid colour: {value}")
    r = int(hex_value[0:2], 16)
    g = int(hex_value[2:4], 16)
    b = int(hex_value[4:6], 16)
    a = max(0, min(255, round_half_up(alpha * 255)))
    return (r, g, b, a)
