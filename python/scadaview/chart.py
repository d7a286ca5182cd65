"""Rendering-side tables and helpers: palette, scales, formatting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from .identity import MetricIdentifier, metric_key
from .window import NS_PER_S, ns_to_datetime

# Tailwind 500 shades, as hex for consumers that cannot resolve CSS variables
CHART_COLORS: tuple[str, ...] = (
    "#14b8a6",  # teal
    "#a855f7",  # purple
    "#06b6d4",  # cyan
    "#f59e0b",  # amber
    "#f43f5e",  # rose
    "#84cc16",  # lime
    "#6366f1",  # indigo
    "#f97316",  # orange
)

_HOUR_S = 3600
_DAY_S = 86400


def hex_to_rgba(color: str, alpha: int = 255) -> tuple[int, int, int, int]:
    c = color.lstrip("#")
    return int(c[0:2], 16), int(c[2:4], 16), int(c[4:6], 16), alpha


class ColorScale:
    """Ordinal color assignment: metric keys cycle through the palette in order."""

    def __init__(self, metrics: Iterable[MetricIdentifier] = (),
                 palette: Sequence[str] = CHART_COLORS) -> None:
        self._palette = tuple(palette)
        self._assigned: dict[str, str] = {}
        for m in metrics:
            self(metric_key(m))

    def __call__(self, key: str) -> str:
        color = self._assigned.get(key)
        if color is None:
            color = self._palette[len(self._assigned) % len(self._palette)]
            self._assigned[key] = color
        return color


@dataclass(frozen=True)
class ChartScale:
    """Linear mapping between (timestamp, value) and plot pixels.

    Pixel y grows downwards, as on screen.
    """

    t0: int
    t1: int
    v0: float
    v1: float
    width: float
    height: float

    def x(self, timestamp: int) -> float:
        if self.t1 == self.t0:
            return 0.0
        return (timestamp - self.t0) / (self.t1 - self.t0) * self.width

    def y(self, value: float) -> float:
        if self.v1 == self.v0:
            return self.height / 2
        return self.height - (value - self.v0) / (self.v1 - self.v0) * self.height

    def timestamp_at(self, pixel_x: float) -> int:
        if self.width <= 0:
            return self.t0
        return int(round(self.t0 + pixel_x / self.width * (self.t1 - self.t0)))


def format_value(value: float) -> str:
    a = abs(value)
    if a >= 1_000_000:
        return _si(value)
    if a >= 100:
        return f"{value:.1f}"
    if a >= 1:
        return f"{value:.2f}"
    return f"{value:.3f}"


def _si(value: float) -> str:
    for exp, suffix in ((12, "T"), (9, "G"), (6, "M")):
        scaled = value / 10 ** exp
        if abs(scaled) >= 1:
            return f"{scaled:.2g}{suffix}" if abs(scaled) < 10 else f"{scaled:.0f}{suffix}"
    return f"{value:.2g}"


def format_date(ns: int, range_ns: int) -> str:
    """Axis label, coarser as the visible span grows."""
    dt = ns_to_datetime(ns)
    range_s = range_ns / NS_PER_S
    if range_s <= _HOUR_S:
        return dt.strftime("%H:%M:%S")
    if range_s <= _DAY_S:
        return dt.strftime("%H:%M")
    if range_s <= 7 * _DAY_S:
        return dt.strftime("%m/%d %H:%M")
    return dt.strftime("%m/%d")


def format_timestamp(ns: int) -> str:
    return ns_to_datetime(ns).strftime("%Y-%m-%d %H:%M:%S")


def tick_count(width: float) -> int:
    if width < 400:
        return 3
    if width < 600:
        return 5
    if width < 800:
        return 7
    return 10
