"""DearPyGui application shell — metric tree, chart panel, async main loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import dearpygui.dearpygui as dpg

from ..catalog import fetch_groups, metric_infos
from ..client import GraphQLClient
from ..config import Settings
from ..errors import ConfigurationError, ScadaViewError
from ..history import HistoryFetcher
from ..identity import MetricInfo, parse_metric_key
from ..session import DashboardSession, SessionState
from ..transport import GraphQLWSTransport, SSETransport, Transport
from ..window import ChartMode, now_ns
from .plots import ChartPanel
from .tooltip import HoverTooltip
from .tree import MetricTree

logger = logging.getLogger(__name__)


class ViewerApp:
    """Top-level viewer application.

    DearPyGui callbacks are queued and run from the main loop so that every
    session call happens on the asyncio event loop.
    """

    def __init__(self, settings: Settings, *, sse_url: str | None = None) -> None:
        self._settings = settings
        self._sse_url = sse_url
        self._client: GraphQLClient | None = None
        self._session: DashboardSession | None = None
        self._tree: MetricTree | None = None
        self._panel: ChartPanel | None = None
        self._tooltip: HoverTooltip | None = None
        self._infos: dict[str, MetricInfo] = {}
        self._selected: list[MetricInfo] = []
        self._dirty = False
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self) -> None:
        logging.basicConfig(level=logging.INFO,
                            format="%(name)s: %(message)s")

        dpg.create_context()
        dpg.configure_app(manual_callback_management=True)
        dpg.create_viewport(title="scadaview", width=1280, height=720)
        self._build_layout()
        dpg.setup_dearpygui()
        dpg.show_viewport()

    def _build_layout(self) -> None:
        with dpg.viewport_menu_bar():
            with dpg.menu(label="File"):
                dpg.add_menu_item(label="Reload Catalog",
                                  callback=lambda: self.spawn(self.load_catalog()))
                dpg.add_menu_item(label="Reconnect Live",
                                  callback=self._on_reconnect)
                dpg.add_separator()
                dpg.add_menu_item(label="Quit",
                                  callback=lambda: dpg.stop_dearpygui())
            dpg.add_text("Status: starting.", tag="status_bar")

        with dpg.window(label="Metrics", tag="tree_window", no_close=True,
                        width=300, height=660, pos=[0, 30]):
            dpg.add_text("Loading catalog...", tag="tree_placeholder")

        with dpg.window(label="Chart", tag="plot_window", no_close=True,
                        width=960, height=660, pos=[310, 30]):
            pass

        self._tree = MetricTree("tree_window", on_toggle=self._on_toggle)
        self._panel = ChartPanel("plot_window", on_window=self._on_window)
        self._tooltip = HoverTooltip(self._panel)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _make_transport(self) -> Transport:
        if self._sse_url:
            return SSETransport(self._sse_url)
        return GraphQLWSTransport(self._settings.ws_url, self._settings.require_api_key())

    def _info_for(self, key: str) -> MetricInfo:
        info = self._infos.get(key)
        if info is None:
            m = parse_metric_key(key)
            info = MetricInfo(m.group_id, m.node_id, m.device_id, m.metric_id)
        return info

    async def start(self, preselect: Sequence[str] = (), preset: str = "15m") -> None:
        self._client = GraphQLClient(self._settings.require_api_key(),
                                     self._settings.api_url,
                                     timeout=self._settings.request_timeout)
        self._session = DashboardSession(HistoryFetcher(self._client),
                                         self._make_transport,
                                         tick_interval=self._settings.tick_interval)
        self._session.subscribe(self._on_series_changed)
        await self.load_catalog()
        if preselect:
            self._tree.select(list(preselect))
            infos = [self._info_for(k) for k in preselect]
            self._selected = infos
            self._panel.set_metrics(infos)
            await self._session.set_metrics(infos)
        await self._select(ChartMode.REALTIME, preset)

    async def load_catalog(self) -> None:
        try:
            groups = await fetch_groups(self._client)
        except ScadaViewError as e:
            self._set_status(f"Catalog error: {e}")
            return
        infos = metric_infos(groups)
        self._infos = {info.key: info for info in infos}
        if dpg.does_item_exist("tree_placeholder"):
            dpg.hide_item("tree_placeholder")
        self._tree.build(infos)
        self._set_status(f"{len(infos)} metrics")

    async def _select(self, mode: ChartMode, preset: str) -> None:
        session = self._session
        try:
            if mode is ChartMode.HISTORICAL:
                # A historical preset is a fixed range ending now
                end = now_ns()
                start = end - session.presets.duration(preset)
                await session.select_window(mode, explicit_range=(start, end))
            else:
                await session.select_window(mode, preset=preset)
        except ConfigurationError as e:
            self._set_status(str(e))
            return
        self._report()

    async def _update_metrics(self) -> None:
        self._panel.set_metrics(self._selected)
        await self._session.set_metrics(self._selected)
        self._dirty = True
        self._report()

    def _report(self) -> None:
        session = self._session
        if session.state is SessionState.ERROR:
            self._set_status(f"Error: {session.error}")
        elif session.window is not None:
            live = "live" if session.streaming else "static"
            self._set_status(f"{len(self._selected)} metrics  |  "
                             f"{session.window.preset or 'custom'}  |  {live}")

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_toggle(self, info: MetricInfo, checked: bool) -> None:
        if checked and info not in self._selected:
            self._selected.append(info)
        elif not checked:
            self._selected = [m for m in self._selected if m.key != info.key]
        self.spawn(self._update_metrics())

    def _on_window(self, mode: ChartMode, preset: str) -> None:
        self.spawn(self._select(mode, preset))

    def _on_reconnect(self) -> None:
        if self._session is not None:
            self._session.reconnect()
            self._report()

    def _on_series_changed(self, keys: frozenset[str]) -> None:
        self._dirty = True

    def _set_status(self, text: str) -> None:
        if dpg.does_item_exist("status_bar"):
            dpg.set_value("status_bar", f"Status: {text}")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        try:
            while dpg.is_dearpygui_running():
                dpg.run_callbacks(dpg.get_callback_queue())

                series = self._session.series() if self._session is not None else {}
                if self._dirty:
                    self._panel.push_data(series)
                    self._dirty = False
                    if self._session.state is SessionState.ERROR:
                        self._report()
                if self._session is not None:
                    self._panel.tick(self._session.window)
                self._tooltip.tick(series)

                dpg.render_dearpygui_frame()
                # Let fetches, bridge events and the tick timer run
                await asyncio.sleep(0)
        finally:
            await self._cleanup()

    async def _cleanup(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._session is not None:
            self._session.close()
            self._session = None
        if self._client is not None:
            await self._client.close()
            self._client = None
        dpg.destroy_context()
