"""Synchronized hover tooltip: nearest sample of every plotted metric."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Mapping

import dearpygui.dearpygui as dpg

from ..chart import ChartScale, format_timestamp, format_value, hex_to_rgba
from ..correlator import TooltipData, build_tooltip
from ..series import SeriesData
from ..window import NS_PER_S

if TYPE_CHECKING:
    from .plots import ChartPanel

logger = logging.getLogger(__name__)

_MARKER_COLOR = (255, 255, 255, 255)


def plot_scale(x_limits: tuple[float, float], y_limits: tuple[float, float],
               width: float, height: float) -> ChartScale:
    """Chart scale for a plot whose X axis is in epoch seconds."""
    return ChartScale(
        t0=int(round(x_limits[0] * NS_PER_S)), t1=int(round(x_limits[1] * NS_PER_S)),
        v0=y_limits[0], v1=y_limits[1], width=width, height=height)


def tooltip_lines(data: TooltipData) -> list[tuple[str, str]]:
    """(text, hex color) rows: header first, then one row per metric."""
    rows = [(format_timestamp(data.timestamp), "#ffffff")]
    for v in data.values:
        rows.append((f"{v.metric.label}: {format_value(v.value)}  "
                     f"@ {format_timestamp(v.timestamp)}", v.color))
    return rows


class HoverTooltip:
    """Follows the mouse over the chart and shows correlated values."""

    def __init__(self, panel: ChartPanel) -> None:
        self._panel = panel
        self._window = dpg.add_window(
            popup=False, no_title_bar=True, autosize=True,
            show=False, no_focus_on_appearing=True, no_move=True,
            no_resize=True, no_scrollbar=True, no_saved_settings=True,
        )
        self._rows: list[int | str] = []
        self._markers = dpg.add_scatter_series([], [], label="##hover",
                                               parent=panel.y_axis_tag)
        with dpg.theme() as theme:
            with dpg.theme_component(dpg.mvScatterSeries):
                dpg.add_theme_color(dpg.mvPlotCol_MarkerFill, _MARKER_COLOR,
                                    category=dpg.mvThemeCat_Plots)
                dpg.add_theme_style(dpg.mvPlotStyleVar_MarkerSize, 5.0,
                                    category=dpg.mvThemeCat_Plots)
        dpg.bind_item_theme(self._markers, theme)

    def tick(self, series: Mapping[str, SeriesData]) -> None:
        data = self._query(series)
        if data is None:
            self.hide()
            return
        self._show(data)

    def _query(self, series: Mapping[str, SeriesData]) -> TooltipData | None:
        plot = self._panel.plot_tag
        if plot is None or not dpg.is_item_hovered(plot):
            return None
        width, height = dpg.get_item_rect_size(plot)
        if width <= 0 or height <= 0:
            return None
        x_limits, y_limits = self._panel.axis_limits()
        scale = plot_scale(x_limits, y_limits, width, height)
        mouse_x, mouse_y = dpg.get_plot_mouse_pos()
        pixel_x = scale.x(int(round(mouse_x * NS_PER_S)))
        pixel_y = scale.y(mouse_y)
        return build_tooltip(series, self._panel.metrics, scale,
                             pixel_x, pixel_y, self._panel.color_of)

    def _show(self, data: TooltipData) -> None:
        for tag in self._rows:
            if dpg.does_item_exist(tag):
                dpg.delete_item(tag)
        self._rows = [
            dpg.add_text(text, color=hex_to_rgba(color), parent=self._window)
            for text, color in tooltip_lines(data)
        ]
        dpg.configure_item(self._markers,
                           x=[v.timestamp / NS_PER_S for v in data.values],
                           y=[v.value for v in data.values], show=True)
        mx, my = dpg.get_mouse_pos(local=False)
        # Flip to the left of the cursor near the right edge of the plot
        offset = -260 if data.x > data.container_width * 0.7 else 15
        dpg.configure_item(self._window, show=True, pos=[mx + offset, my + 10])

    def hide(self) -> None:
        dpg.configure_item(self._window, show=False)
        dpg.configure_item(self._markers, show=False)
