"""Chart panel — window toolbar plus one plot of every selected metric."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping

import numpy as np
import dearpygui.dearpygui as dpg

from ..chart import ColorScale, format_date, hex_to_rgba, tick_count
from ..identity import MetricInfo
from ..series import SeriesData
from ..window import (DEFAULT_PRESETS, NS_PER_S, ChartMode, PresetTable, TimeWindow,
                      nearest_realtime_preset)

logger = logging.getLogger(__name__)

_SCATTER_THRESHOLD = 40

WindowCallback = Callable[[ChartMode, str], None]


@dataclass
class _PlottedSeries:
    info: MetricInfo
    color: str
    # Seconds since epoch; float64 keeps sub-ms resolution for current dates
    xs: np.ndarray
    ys: np.ndarray
    line_tag: int | str | None = None
    scatter_tag: int | str | None = None
    theme_tag: int | str | None = None


def to_plot_seconds(timestamps: np.ndarray) -> np.ndarray:
    return timestamps.astype(np.float64) / NS_PER_S


class ChartPanel:
    """Toolbar (mode + preset) above a single plot.

    Boolean metrics are drawn as stair series, everything else as lines.
    The X axis always spans the session window.
    """

    def __init__(self, parent: int | str, on_window: WindowCallback,
                 presets: PresetTable = DEFAULT_PRESETS) -> None:
        self._parent = parent
        self._on_window = on_window
        self._presets = presets
        self._colors = ColorScale()
        self._series: dict[str, _PlottedSeries] = {}
        self._window: TimeWindow | None = None
        self.plot_tag: int | str | None = None
        self.x_axis_tag: int | str | None = None
        self.y_axis_tag: int | str | None = None
        self._mode_combo: int | str | None = None
        self._preset_combo: int | str | None = None
        self._window_text: int | str | None = None
        self._build()

    # ------------------------------------------------------------------
    # Widgets
    # ------------------------------------------------------------------

    def _build(self) -> None:
        with dpg.group(horizontal=True, parent=self._parent):
            self._mode_combo = dpg.add_combo(
                ["Realtime", "Historical"], default_value="Realtime", width=110,
                callback=self._on_mode_changed)
            self._preset_combo = dpg.add_combo(
                self._preset_labels(ChartMode.REALTIME),
                default_value=self._presets.labels["15m"], width=160,
                callback=self._on_preset_changed)
            self._window_text = dpg.add_text("", color=(150, 150, 150))

        self.plot_tag = dpg.add_plot(parent=self._parent, anti_aliased=True,
                                     width=-1, height=-1)
        dpg.add_plot_legend(parent=self.plot_tag)
        self.x_axis_tag = dpg.add_plot_axis(dpg.mvXAxis, label="Time (UTC)",
                                            parent=self.plot_tag)
        self.y_axis_tag = dpg.add_plot_axis(dpg.mvYAxis, label="Value",
                                            parent=self.plot_tag)

    def _preset_labels(self, mode: ChartMode) -> list[str]:
        keys = self._presets.realtime if mode is ChartMode.REALTIME \
            else tuple(self._presets.durations)
        return [self._presets.labels[k] for k in keys]

    def _preset_for_label(self, label: str) -> str:
        for key, text in self._presets.labels.items():
            if text == label:
                return key
        raise KeyError(label)

    def _selection(self) -> tuple[ChartMode, str]:
        mode = ChartMode.REALTIME if dpg.get_value(self._mode_combo) == "Realtime" \
            else ChartMode.HISTORICAL
        return mode, self._preset_for_label(dpg.get_value(self._preset_combo))

    def _on_mode_changed(self, sender, app_data) -> None:
        mode = ChartMode.REALTIME if app_data == "Realtime" else ChartMode.HISTORICAL
        labels = self._preset_labels(mode)
        current = dpg.get_value(self._preset_combo)
        dpg.configure_item(self._preset_combo, items=labels)
        if current not in labels:
            # Longer presets are history-only
            preset = nearest_realtime_preset(self._preset_for_label(current), self._presets)
            dpg.set_value(self._preset_combo, self._presets.labels[preset])
        self._on_window(*self._selection())

    def _on_preset_changed(self, sender, app_data) -> None:
        self._on_window(*self._selection())

    # ------------------------------------------------------------------
    # Series
    # ------------------------------------------------------------------

    @property
    def metrics(self) -> list[MetricInfo]:
        return [ps.info for ps in self._series.values()]

    def color_of(self, key: str) -> str:
        return self._colors(key)

    def set_metrics(self, infos: list[MetricInfo]) -> None:
        wanted = {info.key: info for info in infos}
        for key in list(self._series):
            if key not in wanted:
                self._delete_series(self._series.pop(key))
        for key, info in wanted.items():
            if key not in self._series:
                self._series[key] = self._create_series(info)

    def _create_series(self, info: MetricInfo) -> _PlottedSeries:
        color = self._colors(info.key)
        rgba = hex_to_rgba(color)
        ps = _PlottedSeries(info, color, np.array([]), np.array([]))
        if info.is_boolean:
            ps.line_tag = dpg.add_stair_series([], [], label=info.label,
                                               parent=self.y_axis_tag)
            component = dpg.mvStairSeries
        else:
            ps.line_tag = dpg.add_line_series([], [], label=info.label,
                                              parent=self.y_axis_tag)
            # ## prefix hides scatter from legend
            ps.scatter_tag = dpg.add_scatter_series([], [], label=f"##{info.key}_sc",
                                                    parent=self.y_axis_tag, show=False)
            component = dpg.mvAll
        with dpg.theme() as theme:
            with dpg.theme_component(component):
                dpg.add_theme_color(dpg.mvPlotCol_Line, rgba,
                                    category=dpg.mvThemeCat_Plots)
                dpg.add_theme_color(dpg.mvPlotCol_MarkerFill, rgba,
                                    category=dpg.mvThemeCat_Plots)
                dpg.add_theme_color(dpg.mvPlotCol_MarkerOutline, rgba,
                                    category=dpg.mvThemeCat_Plots)
        ps.theme_tag = theme
        for tag in (ps.line_tag, ps.scatter_tag):
            if tag is not None:
                dpg.bind_item_theme(tag, theme)
        return ps

    @staticmethod
    def _delete_series(ps: _PlottedSeries) -> None:
        for tag in (ps.line_tag, ps.scatter_tag, ps.theme_tag):
            if tag is not None and dpg.does_item_exist(tag):
                dpg.delete_item(tag)

    def push_data(self, series: Mapping[str, SeriesData]) -> None:
        for key, ps in self._series.items():
            data = series.get(key)
            if data is None:
                continue
            ps.xs = to_plot_seconds(data.timestamps)
            ps.ys = np.asarray(data.values, dtype=np.float64)
            dpg.configure_item(ps.line_tag, x=ps.xs, y=ps.ys)
            if ps.scatter_tag is not None:
                dpg.configure_item(ps.scatter_tag, x=ps.xs, y=ps.ys)

    # ------------------------------------------------------------------
    # Per-frame
    # ------------------------------------------------------------------

    def tick(self, window: TimeWindow | None) -> None:
        """Pin the X axis to *window*, refit Y, refresh time ticks."""
        if window is None or self.x_axis_tag is None:
            return
        x_min, x_max = window.start / NS_PER_S, window.end / NS_PER_S
        dpg.set_axis_limits(self.x_axis_tag, x_min, x_max)
        if window != self._window:
            self._set_time_ticks(window)
            self._window = window
        self._update_scatter_visibility(x_min, x_max)
        self.fit_y(x_min, x_max)

    def _set_time_ticks(self, window: TimeWindow) -> None:
        width = dpg.get_item_rect_size(self.plot_tag)[0] if self.plot_tag else 0
        n = tick_count(width)
        ticks = tuple(
            (format_date(int(t), window.span), t / NS_PER_S)
            for t in np.linspace(window.start, window.end, n)
        )
        dpg.set_axis_ticks(self.x_axis_tag, ticks)
        mode = "live" if window.is_realtime else "range"
        dpg.set_value(self._window_text,
                      f"{mode}: {format_date(window.start, window.span)} - "
                      f"{format_date(window.end, window.span)}")

    def _update_scatter_visibility(self, x_min: float, x_max: float) -> None:
        """Show markers only when fewer than threshold samples are visible."""
        for ps in self._series.values():
            if ps.scatter_tag is None:
                continue
            lo = int(np.searchsorted(ps.xs, x_min))
            hi = int(np.searchsorted(ps.xs, x_max))
            dpg.configure_item(ps.scatter_tag, show=0 < (hi - lo) < _SCATTER_THRESHOLD)

    def fit_y(self, x_min: float, x_max: float) -> None:
        y_min = y_max = None
        for ps in self._series.values():
            lo = int(np.searchsorted(ps.xs, x_min))
            hi = int(np.searchsorted(ps.xs, x_max, side="right"))
            if lo >= hi:
                continue
            visible = ps.ys[lo:hi]
            vmin, vmax = float(np.nanmin(visible)), float(np.nanmax(visible))
            y_min = vmin if y_min is None else min(y_min, vmin)
            y_max = vmax if y_max is None else max(y_max, vmax)
        if y_min is None:
            return
        pad = max((y_max - y_min) * 0.05, 0.5 if y_max == y_min else 1e-6)
        dpg.set_axis_limits(self.y_axis_tag, y_min - pad, y_max + pad)

    def axis_limits(self) -> tuple[tuple[float, float], tuple[float, float]]:
        return (tuple(dpg.get_axis_limits(self.x_axis_tag)),
                tuple(dpg.get_axis_limits(self.y_axis_tag)))
