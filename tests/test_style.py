"""
Tests for caption styles and entrance animations.
"""

import pytest

from captioner.animation import STATIC, animation_frame
from captioner.style import (
    CaptionStyle,
    apply_text_transform,
    move_anchor,
    parse_color,
    resize_font,
)


class TestCaptionStyle:
    """Style values and (de)serialization."""

    def test_defaults(self):
        style = CaptionStyle()
        assert style.font_family == "Montserrat"
        assert style.font_size == 32
        assert style.position == "center"
        assert style.text_transform == "uppercase"
        assert style.animation == "pop"
        assert style.bold

    def test_unknown_position_rejected(self):
        with pytest.raises(ValueError):
            CaptionStyle(position="left")

    def test_unknown_animation_rejected(self):
        with pytest.raises(ValueError):
            CaptionStyle(animation="spin")

    def test_non_positive_font_rejected(self):
        with pytest.raises(ValueError):
            CaptionStyle(font_size=0)

    def test_from_dict_camel_case(self):
        style = CaptionStyle.from_dict({
            "fontFamily": "Inter",
            "fontSize": 40,
            "backgroundOpacity": 0.5,
            "customX": 20,
            "position": "custom",
            "somethingElse": True,
        })
        assert style.font_family == "Inter"
        assert style.font_size == 40
        assert style.background_opacity == 0.5
        assert style.custom_x == 20

    def test_from_empty_dict(self):
        assert CaptionStyle.from_dict(None) == CaptionStyle()

    def test_dict_round_trip(self):
        style = CaptionStyle(font_size=48, reflection=True, curve=25.0)
        assert CaptionStyle.from_dict(style.to_dict()) == style

    def test_with_changes_returns_new_style(self):
        style = CaptionStyle()
        changed = style.with_changes(text_color="#ff0000")
        assert changed.text_color == "#ff0000"
        assert style.text_color == "#ffffff"

    def test_light_weight_not_bold(self):
        assert not CaptionStyle(font_weight=400).bold


class TestTextTransform:
    def test_uppercase(self):
        assert apply_text_transform("hello world", "uppercase") == "HELLO WORLD"

    def test_lowercase(self):
        assert apply_text_transform("Hello World", "lowercase") == "hello world"

    def test_capitalize(self):
        assert apply_text_transform("hello big world", "capitalize") == "Hello Big World"

    def test_none(self):
        assert apply_text_transform("MiXeD", "none") == "MiXeD"


class TestGestures:
    """Drag-to-move and corner resize."""

    def test_move_anchor_sets_custom_position(self):
        style = move_anchor(CaptionStyle(position="bottom"), 25.0, 75.0)
        assert style.position == "custom"
        assert (style.custom_x, style.custom_y) == (25.0, 75.0)

    def test_move_anchor_respects_margin(self):
        style = move_anchor(CaptionStyle(), 0.0, 100.0, margin=10.0)
        assert (style.custom_x, style.custom_y) == (10.0, 90.0)

    def test_resize_grows_with_drag(self):
        assert resize_font(CaptionStyle(), 32, 20, 20).font_size == 42

    def test_resize_custom_range(self):
        assert resize_font(CaptionStyle(), 32, -400, 0, size_range=(20, 60)).font_size == 20


class TestParseColor:
    def test_six_digit(self):
        assert parse_color("#ff8000") == (255, 128, 0, 255)

    def test_three_digit(self):
        assert parse_color("#fff", 0.5) == (255, 255, 255, 128)

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_color("#12")


class TestAnimation:
    """Entrance animation curves."""

    def test_settled_when_elapsed_is_none(self):
        assert animation_frame("pop", None) == STATIC

    def test_settled_after_duration(self):
        assert animation_frame("fade", 1.0) == STATIC

    def test_static_kinds(self):
        assert animation_frame("karaoke", 0.0) == STATIC
        assert animation_frame("none", 0.0) == STATIC

    def test_pop_starts_invisible_and_small(self):
        frame = animation_frame("pop", 0.0)
        assert frame.opacity == 0.0
        assert frame.scale == pytest.approx(0.5)

    def test_pop_overshoots_midway(self):
        frame = animation_frame("pop", 0.1)
        assert frame.scale == pytest.approx(1.1)
        assert frame.opacity == pytest.approx(0.5)

    def test_zoom_starts_large(self):
        frame = animation_frame("zoom", 0.0)
        assert frame.scale == pytest.approx(2.0)
        assert frame.opacity == 0.0

    def test_slide_rises_into_place(self):
        early = animation_frame("slide", 0.0)
        later = animation_frame("slide", 0.1)
        assert early.dy == pytest.approx(20.0)
        assert 0.0 < later.dy < early.dy

    def test_fade_is_monotonic(self):
        values = [animation_frame("fade", t / 100).opacity for t in range(0, 16)]
        assert values == sorted(values)

    def test_negative_elapsed_clamped(self):
        assert animation_frame("fade", -0.5).opacity == 0.0
