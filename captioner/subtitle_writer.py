"""
Subtitle Writer - serializes a caption list to subtitle and data formats.

Supported formats:
  - srt:  SubRip, HH:MM:SS,mmm timestamps
  - vtt:  WebVTT, HH:MM:SS.mmm timestamps with numbered cues
  - ass:  Advanced SubStation Alpha, H:MM:SS.cc timestamps and a Default
          style derived from the caption style
  - json: {"captions": [...], "style": {...}}
  - csv:  Index,Start Time,End Time,Text
  - txt:  caption text separated by blank lines

Everything is derived from the caption list (plus the style for ASS/JSON);
timestamps are rounded half-up to each format's unit.
"""

import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Optional, Sequence

from .style import CaptionStyle
from .track import Caption

logger = logging.getLogger(__name__)

FORMATS = ("srt", "vtt", "ass", "json", "csv", "txt")

ASS_ALIGNMENT = {"bottom": 2, "center": 5, "custom": 5, "top": 8}


def _units(seconds: float, per_second: int) -> int:
    """Non-negative seconds as whole units, halves rounded up."""
    value = Decimal(str(max(0.0, seconds))) * per_second
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _ass_colour(hex_colour: str, alpha: float = 1.0) -> str:
    """'#rrggbb' -> ASS '&HAABBGGRR' (ASS alpha 00 is opaque)."""
    value = hex_colour.lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    r, g, b = value[0:2], value[2:4], value[4:6]
    a = 255 - _units(max(0.0, min(1.0, alpha)), 255)
    return f"&H{a:02X}{b}{g}{r}".upper()


class SubtitleWriter:
    """
    Writes captions to disk in any supported format.

    SRT format:
        1
        00:00:01,200 --> 00:00:04,800
        Hello everyone, welcome to the show.
    """

    def __init__(self, style: Optional[CaptionStyle] = None):
        self.style = style or CaptionStyle()

    # ── Timestamps ──

    @staticmethod
    def format_srt_time(seconds: float) -> str:
        """Seconds -> HH:MM:SS,mmm"""
        total_ms = _units(seconds, 1000)
        hours, rest = divmod(total_ms, 3_600_000)
        minutes, rest = divmod(rest, 60_000)
        secs, millis = divmod(rest, 1000)
        return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"

    @staticmethod
    def format_vtt_time(seconds: float) -> str:
        """Seconds -> HH:MM:SS.mmm"""
        return SubtitleWriter.format_srt_time(seconds).replace(",", ".")

    @staticmethod
    def format_ass_time(seconds: float) -> str:
        """Seconds -> H:MM:SS.cc"""
        total_cs = _units(seconds, 100)
        hours, rest = divmod(total_cs, 360_000)
        minutes, rest = divmod(rest, 6000)
        secs, centis = divmod(rest, 100)
        return f"{hours}:{minutes:02d}:{secs:02d}.{centis:02d}"

    # ── Serializers ──

    def to_srt(self, captions: Sequence[Caption]) -> str:
        blocks = []
        for i, caption in enumerate(captions):
            blocks.append(
                f"{i + 1}\n"
                f"{self.format_srt_time(caption.start_time)} --> "
                f"{self.format_srt_time(caption.end_time)}\n"
                f"{caption.text}\n"
            )
        return "\n".join(blocks) + ("\n" if blocks else "")

    def to_vtt(self, captions: Sequence[Caption]) -> str:
        out = "WEBVTT\n\n"
        for i, caption in enumerate(captions):
            out += (
                f"{i + 1}\n"
                f"{self.format_vtt_time(caption.start_time)} --> "
                f"{self.format_vtt_time(caption.end_time)}\n"
                f"{caption.text}\n\n"
            )
        return out

    def to_ass(self, captions: Sequence[Caption]) -> str:
        s = self.style
        style_line = ",".join(str(v) for v in (
            "Default",
            s.font_family,
            s.font_size,
            _ass_colour(s.text_color),
            _ass_colour(s.highlight_color),
            _ass_colour(s.stroke_color),
            _ass_colour(s.background_color, s.background_opacity),
            -1 if s.bold else 0,
            0, 0, 0,                    # italic, underline, strikeout
            100, 100,                   # scale x/y
            int(s.letter_spacing),
            int(s.rotation),
            3 if s.background_opacity > 0 else 1,
            int(s.stroke_width),
            2 if s.text_shadow else 0,
            ASS_ALIGNMENT.get(s.position, 2),
            10, 10, 10,                 # margins
            1,
        ))

        lines = [
            "[Script Info]",
            "Title: Captions",
            "ScriptType: v4.00+",
            "Collisions: Normal",
            "PlayResY: 720",
            "PlayDepth: 0",
            "",
            "[V4+ Styles]",
            "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
            "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, "
            "ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, "
            "Alignment, MarginL, MarginR, MarginV, Encoding",
            f"Style: {style_line}",
            "",
            "[Events]",
            "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
        ]
        for caption in captions:
            text = caption.text.replace("\n", "\\N")
            lines.append(
                f"Dialogue: 0,{self.format_ass_time(caption.start_time)},"
                f"{self.format_ass_time(caption.end_time)},Default,,0,0,0,,{text}"
            )
        return "\n".join(lines) + "\n"

    def to_json(self, captions: Sequence[Caption]) -> str:
        payload = {
            "captions": [c.to_dict() for c in captions],
            "style": self.style.to_dict(),
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def to_csv(self, captions: Sequence[Caption]) -> str:
        rows = ["Index,Start Time,End Time,Text"]
        for i, caption in enumerate(captions):
            start = _units(caption.start_time, 100) / 100
            end = _units(caption.end_time, 100) / 100
            text = caption.text.replace('"', '""')
            rows.append(f'{i + 1},{start:.2f},{end:.2f},"{text}"')
        return "\n".join(rows) + "\n"

    def to_txt(self, captions: Sequence[Caption]) -> str:
        return "\n\n".join(c.text for c in captions)

    def render(self, captions: Sequence[Caption], fmt: str) -> str:
        """Serialize captions to a string in the given format."""
        fmt = fmt.lower().lstrip(".")
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported subtitle format: {fmt} (use one of {', '.join(FORMATS)})")
        return getattr(self, f"to_{fmt}")(captions)

    def write(self, captions: Sequence[Caption], output_path: Path, fmt: Optional[str] = None) -> Path:
        """
        Write captions to a file.

        Args:
            captions: Captions sorted by start time.
            output_path: Destination file.
            fmt: Format name; defaults to the file extension.

        Returns:
            The written path.
        """
        output_path = Path(output_path)
        fmt = (fmt or output_path.suffix or "srt").lower().lstrip(".")
        content = self.render(captions, fmt)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)

        logger.info(f"{fmt.upper()} written: {len(captions)} captions → {output_path}")
        return output_path

    def write_preview(self, captions: Sequence[Caption], max_entries: int = 10) -> str:
        """
        Generate a text preview of the captions.

        Args:
            captions: Caption list.
            max_entries: Maximum entries to include in preview.

        Returns:
            Formatted string preview.
        """
        lines = []
        shown = min(len(captions), max_entries)

        for caption in captions[:shown]:
            ts_start = self.format_srt_time(caption.start_time)
            ts_end = self.format_srt_time(caption.end_time)
            text_preview = caption.text[:80]
            if len(caption.text) > 80:
                text_preview += "..."
            lines.append(f"  [{ts_start} → {ts_end}] {text_preview}")

        if len(captions) > shown:
            lines.append(f"  ... and {len(captions) - shown} more captions")

        return "\n".join(lines)
