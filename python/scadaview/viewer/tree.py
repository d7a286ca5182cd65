"""Metric tree — group / node / device nodes with a checkbox per metric."""

from __future__ import annotations

from collections import defaultdict
from typing import Callable

import dearpygui.dearpygui as dpg

from ..identity import MetricInfo

ToggleCallback = Callable[[MetricInfo, bool], None]


def _device_label(device_id: str) -> str:
    return device_id or "(node metrics)"


class MetricTree:
    """Builds a DearPyGui tree from the metric catalog.

    Ticking a metric's checkbox calls *on_toggle(info, checked)*.
    """

    def __init__(self, parent: int | str, on_toggle: ToggleCallback) -> None:
        self._parent = parent
        self._on_toggle = on_toggle
        self._group: int | str | None = None
        self._tree_group: int | str | None = None
        self._infos: list[MetricInfo] = []
        self._selected: set[str] = set()
        self._filter_text: str = ""

    def build(self, infos: list[MetricInfo]) -> None:
        """(Re)build the tree from a flat metric list."""
        self._infos = infos
        self._filter_text = ""

        if self._group is not None and dpg.does_item_exist(self._group):
            dpg.delete_item(self._group)

        self._group = dpg.add_group(parent=self._parent)
        dpg.add_input_text(
            hint="Search metrics...",
            parent=self._group,
            callback=self._on_filter_changed,
        )
        dpg.add_separator(parent=self._group)

        self._tree_group = None
        self._rebuild_tree()

    def _rebuild_tree(self) -> None:
        if self._tree_group is not None and dpg.does_item_exist(self._tree_group):
            dpg.delete_item(self._tree_group)
        self._tree_group = dpg.add_group(parent=self._group)

        filt = self._filter_text.lower()
        grouped: dict[str, dict[str, dict[str, list[MetricInfo]]]] = \
            defaultdict(lambda: defaultdict(lambda: defaultdict(list)))
        for info in self._infos:
            if filt and filt not in info.key.lower() and filt not in info.label.lower():
                continue
            grouped[info.group_id][info.node_id][info.device_id].append(info)

        # Expand nodes when filtering to show results
        default_open = bool(filt)
        for group_id, nodes in grouped.items():
            with dpg.tree_node(label=group_id, parent=self._tree_group,
                               default_open=default_open):
                for node_id, devices in nodes.items():
                    with dpg.tree_node(label=node_id, default_open=default_open):
                        for device_id, metrics in devices.items():
                            with dpg.tree_node(label=_device_label(device_id),
                                               default_open=default_open):
                                for info in metrics:
                                    self._build_metric(info)

    def _build_metric(self, info: MetricInfo) -> None:
        suffix = " (bool)" if info.is_boolean else ""
        dpg.add_checkbox(label=f"{info.label}{suffix}",
                         default_value=info.key in self._selected,
                         callback=self._on_checkbox, user_data=info)

    def _on_checkbox(self, sender, app_data, user_data: MetricInfo) -> None:
        if app_data:
            self._selected.add(user_data.key)
        else:
            self._selected.discard(user_data.key)
        self._on_toggle(user_data, bool(app_data))

    def _on_filter_changed(self, sender, app_data) -> None:
        self._filter_text = app_data
        self._rebuild_tree()

    def select(self, keys: list[str]) -> None:
        """Pre-select metrics (from the command line)."""
        self._selected.update(keys)
        if self._group is not None:
            self._rebuild_tree()

