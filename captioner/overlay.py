"""
Overlay - composes one output frame: video frame plus the active caption.

compose_frame() is the only place a frame is assembled. The live preview
(LiveOverlay) and the video export both call it, with the same active-caption
rule and the same caption renderer, so what is previewed is what is exported.
"""

import logging
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from .renderer import draw_caption
from .style import CaptionStyle
from .track import Caption, find_active

logger = logging.getLogger(__name__)

REFERENCE_HEIGHT = 720

Frame = Union[np.ndarray, Image.Image]


def caption_scale(height: int, reference_height: int = REFERENCE_HEIGHT) -> float:
    """Style values are authored against a 720px-high frame."""
    return height / float(reference_height)


def compose_frame(
    frame: Frame,
    t: float,
    captions: Sequence[Caption],
    style: CaptionStyle,
    bias: float = 0.15,
    size: Optional[Tuple[int, int]] = None,
    reference_height: int = REFERENCE_HEIGHT,
    animate: bool = True,
) -> Image.Image:
    """
    Build the output image for time t.

    Args:
        frame: Video frame (H x W x 3 array) or a Pillow image.
        t: Media time in seconds.
        captions: Captions sorted by start time.
        style: Caption style.
        bias: Pre-roll applied to caption start times.
        size: Output (width, height); the frame is resized to it if needed.
        reference_height: Height the style values are authored against.
        animate: Apply entrance animations (False draws settled captions).

    Returns:
        A new image; the input frame is not modified.
    """
    if isinstance(frame, Image.Image):
        image = frame.copy()
    else:
        image = Image.fromarray(np.asarray(frame, dtype=np.uint8)[..., :3], "RGB")

    if size is not None and image.size != tuple(size):
        image = image.resize(tuple(size), Image.Resampling.LANCZOS)

    caption = find_active(captions, t, bias)
    if caption is not None:
        elapsed = t - (caption.start_time - bias) if animate else None
        draw_caption(
            image, caption.text, style,
            scale=caption_scale(image.height, reference_height),
            elapsed=elapsed,
        )
    return image


FrameSink = Callable[[Image.Image, object], None]


class LiveOverlay:
    """
    Re-renders the preview whenever the synchronizer publishes.

    With a video source the sink receives composed video frames; without
    one it receives a transparent caption layer of `size`, to be shown on
    top of an external player.
    """

    def __init__(
        self,
        synchronizer,
        source=None,
        on_frame: Optional[FrameSink] = None,
        size: Optional[Tuple[int, int]] = None,
        reference_height: int = REFERENCE_HEIGHT,
    ):
        if source is None and size is None:
            raise ValueError("LiveOverlay needs a video source or an overlay size")
        self.synchronizer = synchronizer
        self.source = source
        self.on_frame = on_frame
        self.size = tuple(size) if size else source.size
        self.reference_height = reference_height
        self.last_frame: Optional[Image.Image] = None
        self.last_caption_id: Optional[str] = None
        self._unsubscribe = None

    def attach(self):
        if self._unsubscribe is None:
            self._unsubscribe = self.synchronizer.subscribe(self._on_update)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def render_at(self, t: float) -> Image.Image:
        """Preview image at time t using the synchronizer's captions and style."""
        if self.source is not None:
            frame = self.source.get_frame(t)
        else:
            frame = Image.new("RGBA", self.size, (0, 0, 0, 0))
        return compose_frame(
            frame, t,
            self.synchronizer.track.snapshot(),
            self.synchronizer.style,
            bias=self.synchronizer.bias,
            size=self.size,
            reference_height=self.reference_height,
        )

    def _on_update(self, state, caption: Optional[Caption]):
        image = self.render_at(state.current_time)
        new_id = caption.id if caption else None
        if new_id != self.last_caption_id:
            logger.debug(f"Overlay caption -> {caption!r}")
        self.last_caption_id = new_id
        self.last_frame = image
        if self.on_frame is not None:
            self.on_frame(image, state)
