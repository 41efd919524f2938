"""Tests for Sparkline widget."""

import pytest

from cyber_watchdog.tui.sparkline import GradientColor, Sparkline


class TestSparklineScaling:
    """Tests for value scaling to levels."""

    def test_scale_zero_to_zero_level(self) -> None:
        sparkline = Sparkline(height=1, max_value=100)
        assert sparkline._scale_value(0, 100) == 0

    def test_scale_max_to_max_level(self) -> None:
        """Max value scales to height * 8."""
        sparkline = Sparkline(height=1, max_value=100)
        assert sparkline._scale_value(100, 100) == 8

    def test_scale_height_2_max_level(self) -> None:
        sparkline = Sparkline(height=2, max_value=100)
        assert sparkline._scale_value(100, 100) == 16

    def test_scale_mid_value(self) -> None:
        sparkline = Sparkline(height=2, max_value=100)
        assert sparkline._scale_value(50, 100) == 8

    def test_scale_clamps(self) -> None:
        sparkline = Sparkline(height=1, max_value=100)
        assert sparkline._scale_value(-5, 100) == 0
        assert sparkline._scale_value(150, 100) == 8


class TestSparklineColumnRendering:
    """Columns are returned bottom row first."""

    def test_render_column_empty(self) -> None:
        assert Sparkline(height=2)._render_column(0) == [" ", " "]

    def test_render_column_full_bottom_only(self) -> None:
        assert Sparkline(height=2)._render_column(8) == ["█", " "]

    def test_render_column_partial_bottom(self) -> None:
        assert Sparkline(height=2)._render_column(4) == ["▄", " "]

    def test_render_column_overflow_to_top(self) -> None:
        assert Sparkline(height=2)._render_column(11) == ["█", "▃"]

    def test_render_column_full_both_rows(self) -> None:
        assert Sparkline(height=2)._render_column(16) == ["█", "█"]


class TestSparklineHeight:
    def test_height_clamps_to_minimum_1(self) -> None:
        assert Sparkline(height=0)._height == 1

    def test_height_clamps_to_maximum_4(self) -> None:
        assert Sparkline(height=9)._height == 4


class TestSparklineData:
    def test_visible_keeps_most_recent(self) -> None:
        sparkline = Sparkline()
        sparkline.data = [1.0, 2.0, 3.0, 4.0]
        assert sparkline.visible(2) == [3.0, 4.0]
        assert sparkline.visible(10) == [1.0, 2.0, 3.0, 4.0]

    def test_render_empty_data(self) -> None:
        sparkline = Sparkline()
        assert sparkline.render().plain.strip() == ""

    def test_render_auto_scale(self) -> None:
        """max_value=None scales to the largest visible value."""
        sparkline = Sparkline(max_value=None)
        sparkline.data = [5.0, 10.0]
        assert sparkline.render().plain == "▄█"

    def test_render_multirow_joins_with_newlines(self) -> None:
        sparkline = Sparkline(height=2, max_value=100)
        sparkline.data = [100.0]
        assert sparkline.render().plain == "█\n█"

    def test_color_func_applied(self) -> None:
        seen = []

        def color(value: float) -> str:
            seen.append(value)
            return "#ff0000"

        sparkline = Sparkline(max_value=100, color_func=color)
        sparkline.data = [25.0, 75.0]
        sparkline.render()
        assert seen == [25.0, 75.0]


class TestGradientColor:
    def test_gradient_at_first_stop(self) -> None:
        gradient = GradientColor([(0, "#000000"), (100, "#ffffff")])
        assert gradient(0) == "#000000"

    def test_gradient_at_last_stop(self) -> None:
        gradient = GradientColor([(0, "#000000"), (100, "#ffffff")])
        assert gradient(100) == "#ffffff"

    def test_gradient_outside_range_clamps(self) -> None:
        gradient = GradientColor([(0, "#000000"), (100, "#ffffff")])
        assert gradient(-10) == "#000000"
        assert gradient(150) == "#ffffff"

    def test_gradient_midpoint(self) -> None:
        gradient = GradientColor([(0, "#000000"), (100, "#ffffff")])
        assert gradient(50) == "#7f7f7f"

    def test_gradient_multiple_stops(self) -> None:
        gradient = GradientColor([(0, "#00ff00"), (50, "#ffff00"), (100, "#ff0000")])
        assert gradient(50) == "#ffff00"
        assert gradient(75) == "#ff7f00"

    def test_gradient_requires_two_stops(self) -> None:
        with pytest.raises(ValueError, match="at least 2"):
            GradientColor([(0, "#000000")])

    def test_gradient_sorts_stops(self) -> None:
        gradient = GradientColor([(100, "#ffffff"), (0, "#000000")])
        assert gradient(0) == "#000000"

    def test_gradient_shorthand_hex(self) -> None:
        gradient = GradientColor([(0, "#000"), (100, "#fff")])
        assert gradient(100) == "#ffffff"
