"""
Caption Segmenter - groups word tokens into readable caption spans.

Two policies:
  - fixed (words_per_caption = n > 0): close a caption after n words, on
    terminal punctuation, or at the last token
  - auto (words_per_caption = 0): the same rules with a target of 3 words,
    plus a natural pause before a word closes the previous caption, and a
    long or ALL-CAPS word closes the caption right after itself

Segmentation is a pure function of its input: ids are derived from the
caption content, so identical tokens always yield identical captions.
"""

import re
import uuid
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Sequence

from .track import Caption
from .transcriber import WordToken

logger = logging.getLogger(__name__)

TERMINAL_PUNCTUATION = re.compile(r"[.!?,;:]$")
ALL_CAPS = re.compile(r"^[A-Z]{2,}$")

# Assumed duration of a word whose end time the model did not report
MISSING_END_DURATION = 0.3

_ID_NAMESPACE = uuid.UUID("6f1c2a52-8d0e-4b7a-9a43-2f5d0c3e1b77")


def to_centiseconds(seconds: float) -> int:
    """Round seconds to whole centiseconds, halves away from zero."""
    return int(
        (Decimal(str(seconds)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )


class CaptionSegmenter:
    """Turns WordTokens into sorted Caption spans."""

    def __init__(self, config=None):
        self.auto_target_words = getattr(config, "auto_target_words", 3)
        self.min_span = getattr(config, "min_span", 0.2)
        self.pause_gap = getattr(config, "pause_gap", 0.3)
        self.long_word_chars = getattr(config, "long_word_chars", 8)

    def segment(
        self,
        tokens: Sequence[WordToken],
        words_per_caption: int = 0,
    ) -> List[Caption]:
        """
        Group word tokens into captions.

        Args:
            tokens: Word tokens in time order.
            words_per_caption: Words per caption; 0 selects auto mode.

        Returns:
            Captions sorted ascending by start time.

        Raises:
            ValueError: If words_per_caption is negative.
        """
        if words_per_caption < 0:
            raise ValueError(f"words_per_caption must be >= 0, got {words_per_caption}")

        auto = words_per_caption == 0
        target = self.auto_target_words if auto else words_per_caption
        words = self._clean(tokens)

        captions: List[Caption] = []
        group: List[WordToken] = []
        last_word_end = 0.0

        for i, word in enumerate(words):
            # A pause before this word closes the previous caption
            if auto and group \
                    and word.start - last_word_end > self.pause_gap:
                captions.append(self._close(group, len(captions)))
                group = []

            group.append(word)
            last_word_end = word.end

            is_last = i == len(words) - 1
            should_close = (
                len(group) >= target
                or TERMINAL_PUNCTUATION.search(word.text) is not None
                or is_last
            )
            if auto and not should_close:
                should_close = self._is_emphasis(word.text)

            if should_close:
                captions.append(self._close(group, len(captions)))
                group = []

        captions.sort(key=lambda c: c.start_time)
        logger.info(
            f"Segmented {len(words)} words into {len(captions)} captions "
            f"({'auto' if auto else f'{words_per_caption} words'})"
        )
        return captions

    def from_segments(self, segments: Sequence[WordToken]) -> List[Caption]:
        """One caption per coarse segment (used when word timings are missing)."""
        captions = [
            self._close([segment], i)
            for i, segment in enumerate(self._clean(segments))
        ]
        captions.sort(key=lambda c: c.start_time)
        logger.info(f"Built {len(captions)} captions from coarse segments")
        return captions

    def _clean(self, tokens: Sequence[WordToken]) -> List[WordToken]:
        """Drop empty or untimed tokens and fill in missing end times."""
        cleaned = []
        for token in tokens:
            text = (token.text or "").strip()
            if not text or token.start is None:
                continue
            start = float(token.start)
            end = float(token.end) if token.end is not None else start + MISSING_END_DURATION
            cleaned.append(WordToken(text, start, max(start, end)))
        return cleaned

    def _is_emphasis(self, text: str) -> bool:
        return len(text) > self.long_word_chars or ALL_CAPS.match(text) is not None

    def _close(self, group: List[WordToken], index: int) -> Caption:
        text = " ".join(w.text for w in group)
        start_cs = to_centiseconds(max(0.0, group[0].start))
        end_cs = to_centiseconds(group[-1].end)
        end_cs = max(end_cs, start_cs + to_centiseconds(self.min_span))

        caption_id = uuid.uuid5(
            _ID_NAMESPACE, f"{index}:{start_cs}:{end_cs}:{text}"
        ).hex
        return Caption(caption_id, text, start_cs / 100.0, end_cs / 100.0)


def segment_tokens(
    tokens: Sequence[WordToken],
    words_per_caption: int = 0,
    config=None,
) -> List[Caption]:
    """Convenience wrapper around CaptionSegmenter.segment()."""
    return CaptionSegmenter(config).segment(tokens, words_per_caption)
