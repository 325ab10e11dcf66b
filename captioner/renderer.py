"""
Caption Renderer - the single drawing routine for burned-in captions.

draw_caption() is used unchanged by the live overlay and by the video
export, so preview and export cannot diverge. It is deterministic: the same
(text, style, scale, elapsed) always produces the same pixels.

Rendering happens in two stages:
  1. the caption is drawn upright into a transparent sprite centred on its
     anchor: background panel, then stroke, shadow and fill passes, then
     the optional reflection
  2. the sprite is placed on the surface with one affine transform:
     translate to the anchor, rotate, tilt, then the animation's scale and
     offset

Every size-dependent value is a reference value (authored against a
720px-high frame) multiplied by `scale`. Layout metrics are measured at the
reference font size and then scaled, so the caption box at scale=2 is
exactly twice the box at scale=1.
"""

import math
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .animation import AnimationFrame, animation_frame
from .style import CaptionStyle, apply_text_transform, parse_color, round_half_up

logger = logging.getLogger(__name__)

SHADOW_RGBA = (0, 0, 0, 204)            # rgba(0, 0, 0, 0.8)
SHADOW_OFFSET = 2.0
CURVE_RADIUS = 5000.0                   # radius = CURVE_RADIUS / |curve|
STRAIGHT_REFLECTION_GAP = 1.2           # x font size
CURVED_REFLECTION_GAP = 1.5
MIN_TILT_COS = 0.01

FALLBACK_FONTS = ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf")
FALLBACK_BOLD_FONTS = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf")

Box = Tuple[int, int, int, int]


@lru_cache(maxsize=64)
def load_font(family: str, bold: bool, size: int):
    """
    Find a TrueType font for a family, falling back to DejaVu Sans and
    finally to Pillow's bundled default font.
    """
    size = max(1, int(size))
    candidates = []
    if bold:
        candidates += [f"{family}-Bold.ttf", f"{family}-Black.ttf"]
    candidates += [f"{family}.ttf", f"{family}-Regular.ttf"]
    if bold:
        candidates += list(FALLBACK_BOLD_FONTS)
    candidates += list(FALLBACK_FONTS)

    for name in candidates:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue

    logger.debug(f"No TrueType font for '{family}', using Pillow default")
    return ImageFont.load_default(size=size)


def _middle(font) -> float:
    """Distance from the draw origin to the vertical middle of a line."""
    if hasattr(font, "getmetrics"):
        ascent, descent = font.getmetrics()
        return (ascent + descent) / 2.0
    _, top, _, bottom = font.getbbox("Hg")
    return (top + bottom) / 2.0


@dataclass
class GlyphPlacement:
    """One character's centre (relative to the anchor) and rotation."""
    char: str
    x: float
    y: float
    angle: float = 0.0      # degrees, counter-clockwise


@dataclass
class CaptionLayout:
    """Scaled metrics of one caption, relative to its anchor."""
    text: str
    scale: float
    font_px: int
    text_width: float
    text_height: float
    half_width: int             # background panel half extents
    half_height: int
    stroke_px: int
    shadow_px: int
    radius_px: int
    reflection_offset: float
    curved: bool
    per_char: bool
    glyphs: List[GlyphPlacement] = field(default_factory=list)

    @property
    def box(self) -> Box:
        """Panel box relative to the anchor (left, top, right, bottom)."""
        return (-self.half_width, -self.half_height, self.half_width, self.half_height)

    @property
    def size(self) -> Tuple[int, int]:
        return (2 * self.half_width, 2 * self.half_height)

    def extents(self) -> Tuple[float, float]:
        """Half extents of the glyph centres."""
        if not self.glyphs:
            return (self.text_width / 2.0, 0.0)
        xs = max(abs(g.x) for g in self.glyphs)
        ys = max(abs(g.y) for g in self.glyphs)
        return (xs, ys)


def layout_caption(text: str, style: CaptionStyle, scale: float = 1.0) -> CaptionLayout:
    """
    Measure a caption at the reference size and scale every metric.

    Args:
        text: Caption text (the style's text transform is applied here).
        style: Caption style.
        scale: Surface height / reference height.
    """
    display = apply_text_transform(text, style.text_transform)
    ref_font = load_font(style.font_family, style.bold, style.font_size)
    curved = style.curve != 0
    spacing = style.letter_spacing
    per_char = curved or spacing != 0

    advances = [ref_font.getlength(ch) for ch in display]
    if per_char:
        ref_width = sum(advances) + spacing * max(0, len(display) - 1)
    else:
        ref_width = ref_font.getlength(display)

    glyphs = []
    cursor = -ref_width / 2.0
    radius = CURVE_RADIUS / abs(style.curve) if curved else 0.0
    for ch, advance in zip(display, advances):
        centre = cursor + advance / 2.0
        if curved:
            phi = centre / radius
            x = radius * math.sin(phi)
            sag = radius * (1.0 - math.cos(phi))
            if style.curve > 0:
                glyphs.append(GlyphPlacement(ch, x * scale, -sag * scale, math.degrees(phi)))
            else:
                glyphs.append(GlyphPlacement(ch, x * scale, sag * scale, -math.degrees(phi)))
        else:
            glyphs.append(GlyphPlacement(ch, centre * scale, 0.0))
        cursor += advance + spacing

    # Panel: text + 1.5 x padding each side horizontally, 1 x padding vertically
    pad = style.padding
    ref_half_w = math.ceil((ref_width + 3.0 * pad) / 2.0)
    ref_half_h = math.ceil((style.font_size + 2.0 * pad) / 2.0)

    stroke_px = 0
    if style.stroke_width > 0:
        stroke_px = max(1, round_half_up(style.stroke_width * scale / 2.0))

    gap = CURVED_REFLECTION_GAP if curved else STRAIGHT_REFLECTION_GAP
    return CaptionLayout(
        text=display,
        scale=scale,
        font_px=max(1, round_half_up(style.font_size * scale)),
        text_width=ref_width * scale,
        text_height=style.font_size * scale,
        half_width=round_half_up(ref_half_w * scale),
        half_height=round_half_up(ref_half_h * scale),
        stroke_px=stroke_px,
        shadow_px=round_half_up(SHADOW_OFFSET * scale) if style.text_shadow else 0,
        radius_px=round_half_up(style.border_radius * scale),
        reflection_offset=style.font_size * scale * gap,
        curved=curved,
        per_char=per_char,
        glyphs=glyphs,
    )


def anchor_point(size: Tuple[int, int], style: CaptionStyle) -> Tuple[float, float]:
    """Caption centre on a surface of the given size."""
    width, height = size
    if style.position == "custom":
        return (style.custom_x / 100.0 * width, style.custom_y / 100.0 * height)
    if style.position == "top":
        return (width / 2.0, height * 0.1)
    if style.position == "center":
        return (width / 2.0, height / 2.0)
    return (width / 2.0, height * 0.9)


def caption_matrix(
    size: Tuple[int, int],
    style: CaptionStyle,
    scale: float = 1.0,
    frame: AnimationFrame = AnimationFrame(),
) -> np.ndarray:
    """3x3 matrix mapping anchor-relative caption coordinates onto the surface."""
    ax, ay = anchor_point(size, style)
    translate = np.array([[1.0, 0.0, ax], [0.0, 1.0, ay], [0.0, 0.0, 1.0]])

    theta = math.radians(style.rotation)
    cos_t, sin_t = math.cos(theta), math.sin(theta)
    rotate = np.array([[cos_t, -sin_t, 0.0], [sin_t, cos_t, 0.0], [0.0, 0.0, 1.0]])

    # Perspective tilt approximated by foreshortening each axis
    sx = max(MIN_TILT_COS, abs(math.cos(math.radians(style.tilt_y))))
    sy = max(MIN_TILT_COS, abs(math.cos(math.radians(style.tilt_x))))
    tilt = np.diag([sx, sy, 1.0])

    animate = np.array([
        [frame.scale, 0.0, frame.dx * scale],
        [0.0, frame.scale, frame.dy * scale],
        [0.0, 0.0, 1.0],
    ])
    return translate @ rotate @ tilt @ animate


# ── Sprite drawing ──

def _draw_run(
    layer: Image.Image,
    layout: CaptionLayout,
    font,
    origin: Tuple[float, float],
    fill,
    offset: Tuple[float, float] = (0.0, 0.0),
    stroke_width: int = 0,
    stroke_fill=None,
):
    """Draw the caption glyphs once onto a transparent layer."""
    ox, oy = origin[0] + offset[0], origin[1] + offset[1]
    middle = _middle(font)

    if layout.curved:
        tile_size = 2 * (layout.font_px + stroke_width) + 2
        for g in layout.glyphs:
            if not g.char.strip():
                continue
            tile = Image.new("RGBA", (tile_size, tile_size), (0, 0, 0, 0))
            width = font.getlength(g.char)
            ImageDraw.Draw(tile).text(
                (tile_size / 2.0 - width / 2.0, tile_size / 2.0 - middle),
                g.char, font=font, fill=fill,
                stroke_width=stroke_width, stroke_fill=stroke_fill,
            )
            if g.angle:
                tile = tile.rotate(g.angle, resample=Image.Resampling.BICUBIC, expand=True)
            _composite_at(
                layer, tile,
                round_half_up(ox + g.x - tile.width / 2.0),
                round_half_up(oy + g.y - tile.height / 2.0),
            )
        return

    draw = ImageDraw.Draw(layer)
    if layout.per_char:
        for g in layout.glyphs:
            width = font.getlength(g.char)
            draw.text(
                (ox + g.x - width / 2.0, oy + g.y - middle),
                g.char, font=font, fill=fill,
                stroke_width=stroke_width, stroke_fill=stroke_fill,
            )
    else:
        width = font.getlength(layout.text)
        draw.text(
            (ox - width / 2.0, oy - middle),
            layout.text, font=font, fill=fill,
            stroke_width=stroke_width, stroke_fill=stroke_fill,
        )


def _reflection(
    layout: CaptionLayout,
    font,
    style: CaptionStyle,
    origin: Tuple[int, int],
    size: Tuple[int, int],
) -> Image.Image:
    """Mirrored copy of the text below the caption, fading to transparent."""
    fill = parse_color(style.text_color)
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    _draw_run(layer, layout, font, origin, fill)
    flipped = np.asarray(layer.transpose(Image.Transpose.FLIP_TOP_BOTTOM)).astype(np.float32)

    # Opaque where the mirror meets the text, transparent one text height below
    half = layout.font_px if layout.curved else layout.font_px / 2.0
    rows = np.arange(size[1], dtype=np.float32) - (origin[1] - half)
    fade = np.clip(1.0 - rows / (2.0 * half), 0.0, 1.0)
    flipped[..., 3] *= fade[:, None] * style.reflection_opacity

    mirrored = Image.fromarray(np.round(flipped).astype(np.uint8), "RGBA")
    shifted = Image.new("RGBA", size, (0, 0, 0, 0))
    _composite_at(shifted, mirrored, 0, round_half_up(layout.reflection_offset))
    return shifted


def render_sprite(layout: CaptionLayout, style: CaptionStyle) -> Tuple[Image.Image, Tuple[int, int]]:
    """
    Draw the caption upright, centred on its anchor.

    Returns:
        (RGBA sprite, anchor position inside the sprite)
    """
    font = load_font(style.font_family, style.bold, layout.font_px)
    ext_x, ext_y = layout.extents()
    margin = layout.font_px + layout.stroke_px + layout.shadow_px + 2
    hx = max(layout.half_width, int(math.ceil(ext_x))) + margin
    hy = max(layout.half_height, int(math.ceil(ext_y))) + margin
    if style.reflection:
        hy = max(hy, int(math.ceil(ext_y + layout.reflection_offset)) + margin)

    size = (2 * hx, 2 * hy)
    origin = (hx, hy)
    sprite = Image.new("RGBA", size, (0, 0, 0, 0))

    # 1. background panel
    if style.background_opacity > 0:
        hw, hh = layout.half_width, layout.half_height
        box = [hx - hw, hy - hh, hx + hw - 1, hy + hh - 1]
        fill = parse_color(style.background_color, style.background_opacity)
        draw = ImageDraw.Draw(sprite)
        if layout.radius_px > 0:
            draw.rounded_rectangle(box, radius=min(layout.radius_px, hw, hh), fill=fill)
        else:
            draw.rectangle(box, fill=fill)

    # 2. stroke
    if layout.stroke_px > 0:
        stroke_rgba = parse_color(style.stroke_color)
        layer = Image.new("RGBA", size, (0, 0, 0, 0))
        _draw_run(layer, layout, font, origin, stroke_rgba,
                  stroke_width=layout.stroke_px, stroke_fill=stroke_rgba)
        sprite.alpha_composite(layer)

    # 3. shadow
    if layout.shadow_px > 0:
        layer = Image.new("RGBA", size, (0, 0, 0, 0))
        _draw_run(layer, layout, font, origin, SHADOW_RGBA,
                  offset=(layout.shadow_px, layout.shadow_px))
        sprite.alpha_composite(layer)

    # 4. fill
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    _draw_run(layer, layout, font, origin, parse_color(style.text_color))
    sprite.alpha_composite(layer)

    if style.reflection:
        sprite.alpha_composite(_reflection(layout, font, style, origin, size))

    return sprite, origin


def _fade(image: Image.Image, alpha: float) -> Image.Image:
    if alpha >= 1.0:
        return image
    arr = np.array(image)
    arr[..., 3] = np.round(arr[..., 3].astype(np.float32) * alpha).astype(np.uint8)
    return Image.fromarray(arr, "RGBA")


def _composite_at(surface: Image.Image, image: Image.Image, x: int, y: int) -> Optional[Box]:
    """Alpha-blend `image` onto `surface` at (x, y), clipped to the surface."""
    left, top = max(0, -x), max(0, -y)
    right = min(image.width, surface.width - x)
    bottom = min(image.height, surface.height - y)
    if right <= left or bottom <= top:
        return None
    if (left, top, right, bottom) != (0, 0, image.width, image.height):
        image = image.crop((left, top, right, bottom))
    dest = (x + left, y + top)

    if surface.mode == "RGBA":
        surface.alpha_composite(image, dest=dest)
    else:
        surface.paste(image, dest, image)
    return (dest[0], dest[1], dest[0] + image.width, dest[1] + image.height)


def _place(surface: Image.Image, sprite: Image.Image, origin: Tuple[int, int],
           matrix: np.ndarray) -> Optional[Box]:
    ox, oy = origin

    # Pure translation: paste pixel-exact
    if np.allclose(matrix[:2, :2], np.eye(2)):
        x = round_half_up(matrix[0, 2]) - ox
        y = round_half_up(matrix[1, 2]) - oy
        return _composite_at(surface, sprite, x, y)

    w, h = sprite.size
    corners = np.array([
        [-ox, w - ox, -ox, w - ox],
        [-oy, -oy, h - oy, h - oy],
        [1.0, 1.0, 1.0, 1.0],
    ])
    mapped = matrix @ corners
    x0 = max(0, int(math.floor(mapped[0].min())))
    y0 = max(0, int(math.floor(mapped[1].min())))
    x1 = min(surface.width, int(math.ceil(mapped[0].max())))
    y1 = min(surface.height, int(math.ceil(mapped[1].max())))
    if x1 <= x0 or y1 <= y0:
        return None

    # Region pixel -> surface -> caption-relative -> sprite
    region_to_surface = np.array([[1.0, 0.0, x0], [0.0, 1.0, y0], [0.0, 0.0, 1.0]])
    caption_to_sprite = np.array([[1.0, 0.0, ox], [0.0, 1.0, oy], [0.0, 0.0, 1.0]])
    to_sprite = caption_to_sprite @ np.linalg.inv(matrix) @ region_to_surface
    coeffs = tuple(float(v) for v in to_sprite[0]) + tuple(float(v) for v in to_sprite[1])

    region = sprite.transform(
        (x1 - x0, y1 - y0),
        Image.Transform.AFFINE,
        coeffs,
        resample=Image.Resampling.BICUBIC,
    )
    return _composite_at(surface, region, x0, y0)


# ── Public entry points ──

def draw_caption(
    surface: Image.Image,
    text: str,
    style: CaptionStyle,
    scale: float = 1.0,
    elapsed: Optional[float] = None,
) -> Optional[Box]:
    """
    Draw one caption onto a surface in place.

    Every size comes from layout_caption, so layout metrics and the panel
    box scale exactly with `scale`. Glyph ink is rasterized at the scaled
    font size, so text drawn without a panel can land a pixel or two off
    an exact multiple.

    Args:
        surface: Pillow image (RGB or RGBA) to draw on.
        text: Caption text; empty or whitespace-only text draws nothing.
        style: Caption style.
        scale: Multiplier for every size-dependent style value.
        elapsed: Seconds since the caption appeared (drives the entrance
            animation); None draws the settled state.

    Returns:
        The surface region that was touched, or None if nothing was drawn.
    """
    if not text or not text.strip():
        return None

    frame = animation_frame(style.animation, elapsed)
    alpha = max(0.0, min(1.0, style.opacity / 100.0)) * frame.opacity
    if alpha <= 0.0:
        return None

    layout = layout_caption(text, style, scale)
    sprite, origin = render_sprite(layout, style)
    sprite = _fade(sprite, alpha)
    matrix = caption_matrix(surface.size, style, scale, frame)
    return _place(surface, sprite, origin, matrix)


def render_caption_image(
    size: Tuple[int, int],
    text: str,
    style: CaptionStyle,
    scale: float = 1.0,
    elapsed: Optional[float] = None,
) -> Image.Image:
    """Caption alone on a transparent RGBA surface of the given size."""
    surface = Image.new("RGBA", size, (0, 0, 0, 0))
    draw_caption(surface, text, style, scale, elapsed)
    return surface
