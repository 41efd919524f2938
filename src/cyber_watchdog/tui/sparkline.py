"""Sparkline widget for metric history.

Draws one column per history value with Unicode block characters. Multiple
rows multiply the vertical resolution (8 levels per row).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from rich.text import Text
from textual.reactive import reactive
from textual.widgets import Static

if TYPE_CHECKING:
    from textual.app import RenderResult


def _parse_hex_color(hex_color: str) -> tuple[int, int, int]:
    """Parse "#RRGGBB" or "#RGB" to an RGB tuple."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) == 3:
        hex_color = "".join(c * 2 for c in hex_color)
    return (
        int(hex_color[0:2], 16),
        int(hex_color[2:4], 16),
        int(hex_color[4:6], 16),
    )


class GradientColor:
    """Maps a value to a color interpolated between threshold stops.

    Example:
        ```python
        gradient = GradientColor([(0, "#50fa7b"), (50, "#f1fa8c"), (100, "#ff5555")])
        gradient(25)  # halfway between green and yellow
        ```
    """

    def __init__(self, stops: list[tuple[float, str]]) -> None:
        if len(stops) < 2:
            raise ValueError("Gradient requires at least 2 color stops")
        self._stops = [(t, _parse_hex_color(c)) for t, c in sorted(stops, key=lambda s: s[0])]

    def __call__(self, value: float) -> str:
        first_t, first_rgb = self._stops[0]
        if value <= first_t:
            return _hex(first_rgb)
        for (t1, c1), (t2, c2) in zip(self._stops, self._stops[1:]):
            if value <= t2:
                frac = (value - t1) / (t2 - t1) if t2 != t1 else 0.0
                return _hex(tuple(int(a + (b - a) * frac) for a, b in zip(c1, c2)))
        return _hex(self._stops[-1][1])


def _hex(rgb: tuple[int, ...]) -> str:
    return "#" + "".join(f"{v:02x}" for v in rgb)


class Sparkline(Static):
    """Right-aligned history graph; the newest value is the rightmost column.

    ``max_value=None`` auto-scales to the largest visible value, which suits
    unbounded series like network rates and load.
    """

    CHARS = " ▁▂▃▄▅▆▇█"
    LEVELS_PER_ROW = 8

    DEFAULT_CSS = """
    Sparkline {
        width: 1fr;
        height: auto;
    }
    """

    data: reactive[list[float]] = reactive(list, always_update=True)

    def __init__(
        self,
        height: int = 1,
        max_value: float | None = 100,
        color_func: Callable[[float], str] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._height = max(1, min(4, height))
        self._max_value = max_value
        self._color_func = color_func

    def visible(self, width: int) -> list[float]:
        """Values that fit in ``width`` columns (most recent)."""
        if width <= 0:
            return list(self.data)
        return list(self.data[-width:])

    def render(self) -> RenderResult:
        width = self.size.width
        values = self.visible(width)
        if not values:
            return Text(" " * max(1, width))

        scale_max = self._max_value
        if scale_max is None:
            scale_max = max(values)
        if scale_max <= 0:
            scale_max = 1.0

        rows = [Text() for _ in range(self._height)]
        pad = max(0, width - len(values))
        for row in rows:
            row.append(" " * pad)
        for value in values:
            style = self._color_func(value) if self._color_func else ""
            column = self._render_column(self._scale_value(value, scale_max))
            for row_idx, char in enumerate(column):
                rows[row_idx].append(char, style=style)

        # Rows are built bottom-up; display top-down.
        return Text("\n").join(reversed(rows))

    def _scale_value(self, value: float, scale_max: float) -> int:
        """Scale a value to 0..height*LEVELS_PER_ROW."""
        total = self._height * self.LEVELS_PER_ROW
        normalized = max(0.0, min(1.0, value / scale_max))
        return int(normalized * total)

    def _render_column(self, level: int) -> list[str]:
        """Characters for one column, bottom row first."""
        column = []
        for row in range(self._height):
            remaining = level - row * self.LEVELS_PER_ROW
            column.append(self.CHARS[max(0, min(self.LEVELS_PER_ROW, remaining))])
        return column

    def watch_data(self, new_data: list[float]) -> None:
        self.refresh()
