"""Dashboard session — window → fetch → seed → bridge → engine.

One session owns one engine, at most one open bridge, and the realtime tick
task.  Everything runs on a single event loop; the only suspension points are
the historical fetch and the bridge's event delivery.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Callable, Iterable

from .bridge import BridgeHandle, LiveStreamBridge, MetricUpdate
from .engine import ChangeListener, MetricState, SeriesMergeEngine
from .errors import FetchError, ScadaViewError, StreamError
from .history import HistoryFetcher
from .identity import MetricIdentifier, metric_key
from .series import SeriesData
from .transport import Transport
from .window import (DEFAULT_PRESETS, ChartMode, PresetTable, TimeWindow,
                     now_ns, resolve)

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], Transport]


class SessionState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


class DashboardSession:
    """Drives one chart view.

    *transport_factory* builds a fresh live transport each time a bridge is
    opened; without one the session is historical-only.  *clock* returns the
    current instant in ns and is swapped out by tests.
    """

    def __init__(self, fetcher: HistoryFetcher,
                 transport_factory: TransportFactory | None = None, *,
                 engine: SeriesMergeEngine | None = None,
                 tick_interval: float = 1.0,
                 clock: Callable[[], int] = now_ns,
                 presets: PresetTable = DEFAULT_PRESETS,
                 fetch_options: dict[str, Any] | None = None) -> None:
        self._fetcher = fetcher
        self._transport_factory = transport_factory
        self.engine = engine if engine is not None else SeriesMergeEngine()
        self._tick_interval = tick_interval
        self._clock = clock
        self.presets = presets
        self._fetch_options = dict(fetch_options or {})

        self._metrics: dict[str, MetricIdentifier] = {}
        self._window: TimeWindow | None = None
        self._generation = 0
        self._bridge: LiveStreamBridge | None = None
        self._handle: BridgeHandle | None = None
        self._tick_task: asyncio.Task | None = None
        # Cleared when a stream fails or ends; only reconnect() or a new
        # realtime selection opens another bridge
        self._live_wanted = False
        self.state = SessionState.IDLE
        self.error: ScadaViewError | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def window(self) -> TimeWindow | None:
        return self._window

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def streaming(self) -> bool:
        return self._handle is not None and not self._handle.closed

    def metrics(self) -> list[MetricIdentifier]:
        return list(self._metrics.values())

    def series(self) -> dict[str, SeriesData]:
        """Current series of every selected metric, in selection order."""
        return self.engine.all_series(self._metrics)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        return self.engine.subscribe(listener)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_window(self, mode: ChartMode | str, *,
                            preset: str | None = None,
                            explicit_range: tuple[int, int] | None = None) -> TimeWindow:
        """Switch to a new window and reload every selected metric.

        The window is validated before anything else happens, so a rejected
        selection (``ConfigurationError``) leaves the session untouched.
        Fetch failures land in :attr:`error` rather than being raised.
        """
        window = resolve(mode, preset=preset, explicit_range=explicit_range,
                         now=self._clock(), table=self.presets)
        self._ensure_open()
        self._generation += 1
        generation = self._generation
        self._window = window
        logger.info("window %s %s", window.mode.value, window.preset or "custom")

        self.error = None
        self._live_wanted = window.is_realtime
        if not window.is_realtime:
            self._stop_live()
        # Buffers seed once per activation, so a new window starts from scratch
        self.engine.set_active(())
        await self._load(generation, list(self._metrics.values()))
        return window

    async def set_metrics(self, metrics: Iterable[MetricIdentifier]) -> None:
        """Replace the selected metrics; only newly added ones are fetched."""
        self._ensure_open()
        wanted = {metric_key(m): m for m in metrics}
        removed = [k for k in self._metrics if k not in wanted]
        added = [m for k, m in wanted.items() if k not in self._metrics]
        self._metrics = wanted
        for key in removed:
            self.engine.deactivate(key)
        if self._bridge is not None:
            self._bridge.set_metrics(self._metrics)
        if self._window is None:
            return
        if not added:
            self.engine.flush()
            return
        await self._load(self._generation, added)

    async def _load(self, generation: int, metrics: list[MetricIdentifier]) -> None:
        window = self._window
        if window is None:
            return
        self.state = SessionState.LOADING
        if isinstance(self.error, FetchError):
            self.error = None
        try:
            snapshot = await self._fetcher.fetch(metrics, window, **self._fetch_options)
        except FetchError as e:
            if self._is_stale(generation):
                return
            logger.error("history fetch failed: %s", e)
            self.error = e
            self.state = SessionState.ERROR
            return
        if self._is_stale(generation):
            logger.debug("discarding stale fetch (generation %d, now %d)",
                         generation, self._generation)
            return

        for key, samples in snapshot.items():
            if key not in self._metrics:
                continue  # deselected while the fetch was in flight
            if self.engine.state(key) not in (None, MetricState.UNINITIALIZED):
                continue  # re-added while an earlier fetch seeded it
            self.engine.activate(key)
            self.engine.seed(key, samples)
        # A realtime window may have slid while the fetch was in flight
        self.engine.prune_all(self._window.start)
        if window.is_realtime:
            self._start_live()
        self.state = SessionState.ERROR if self.error is not None else SessionState.READY

    def _is_stale(self, generation: int) -> bool:
        return self.closed or generation != self._generation

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def tick(self) -> TimeWindow | None:
        """Slide a realtime window to now and prune what fell out of it."""
        if self._window is None or not self._window.is_realtime or self.closed:
            return self._window
        self._window = self._window.advance(self._clock())
        self.engine.prune_all(self._window.start)
        return self._window

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            self.tick()

    def _start_live(self) -> None:
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        if self._live_wanted and not self.streaming:
            self._open_bridge()

    def _open_bridge(self) -> None:
        if self._transport_factory is None:
            return
        self._bridge = LiveStreamBridge(self._transport_factory(), self._metrics)
        self._handle = self._bridge.open(self._on_update, self._on_stream_error,
                                         self._on_stream_complete)

    def reconnect(self) -> None:
        """Open a fresh bridge after an error or completion (realtime only)."""
        self._ensure_open()
        if self._window is None or not self._window.is_realtime:
            return
        self._close_bridge()
        if isinstance(self.error, StreamError):
            self.error = None
            self.state = SessionState.READY
        self._live_wanted = True
        self._open_bridge()

    def _on_update(self, update: MetricUpdate) -> None:
        self.engine.append(update.key, update.sample)

    def _on_stream_error(self, error: StreamError) -> None:
        self._live_wanted = False
        self.error = error
        self.state = SessionState.ERROR

    def _on_stream_complete(self) -> None:
        self._live_wanted = False
        logger.info("live updates ended; call reconnect() to resume")

    def _close_bridge(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._bridge = None

    def _stop_live(self) -> None:
        self._close_bridge()
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self.closed:
            raise ScadaViewError("session is closed")

    def close(self) -> None:
        """Synchronously stop all mutation: bridge, tick, then buffers."""
        if self.closed:
            return
        self._stop_live()
        self._generation += 1
        self.state = SessionState.CLOSED
        self.engine.close()
        logger.debug("session closed")
