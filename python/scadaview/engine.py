"""Series merge engine — one ordered buffer per active metric.

Buffers are seeded once from a historical snapshot and then appended to by
live events.  Live events are expected to arrive nearly in order, so the
insertion point is found by scanning backwards from the tail; under heavy
disorder each insert degrades towards O(n).

All mutation happens on one event loop; the engine holds no locks.
"""

from __future__ import annotations

import asyncio
import bisect
import enum
import logging
from typing import Callable, Iterable

from .errors import StateError
from .series import Sample, SeriesData

logger = logging.getLogger(__name__)

ChangeListener = Callable[[frozenset[str]], None]


class MetricState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    SEEDED = "seeded"
    LIVE = "live"


class _Buffer:
    """Parallel timestamp/value columns for one metric."""

    __slots__ = ("timestamps", "values", "state", "floor")

    def __init__(self) -> None:
        self.timestamps: list[int] = []
        self.values: list[float] = []
        self.state = MetricState.UNINITIALIZED
        self.floor: int | None = None  # pruned window start

    def insert(self, sample: Sample) -> None:
        ts = self.timestamps
        i = len(ts)
        while i > 0 and ts[i - 1] > sample.timestamp:
            i -= 1
        ts.insert(i, sample.timestamp)
        self.values.insert(i, sample.value)

    def prune(self, window_start: int) -> int:
        cut = bisect.bisect_left(self.timestamps, window_start)
        if cut:
            del self.timestamps[:cut]
            del self.values[:cut]
        if self.floor is None or window_start > self.floor:
            self.floor = window_start
        return cut


class SeriesMergeEngine:
    """Owns every series buffer of one dashboard session.

    *strict* controls how invariant violations (``StateError``) surface:
    raised when True, logged and ignored when False.  Defaults to
    ``__debug__`` so development runs fail loudly.
    """

    def __init__(self, strict: bool | None = None) -> None:
        self._strict = __debug__ if strict is None else strict
        self._buffers: dict[str, _Buffer] = {}
        self._listeners: list[ChangeListener] = []
        self._changed: set[str] = set()
        self._flush_scheduled = False
        self._closed = False

    # ------------------------------------------------------------------
    # Active set
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def keys(self) -> list[str]:
        return list(self._buffers)

    def is_active(self, key: str) -> bool:
        return key in self._buffers

    def state(self, key: str) -> MetricState | None:
        buf = self._buffers.get(key)
        return buf.state if buf is not None else None

    def activate(self, key: str) -> None:
        if self._closed:
            self._violation("activate %s after close", key)
            return
        if key not in self._buffers:
            self._buffers[key] = _Buffer()

    def deactivate(self, key: str) -> None:
        if self._buffers.pop(key, None) is not None:
            self._changed.discard(key)

    def set_active(self, keys: Iterable[str]) -> None:
        """Make *keys* the active set, discarding buffers for removed metrics."""
        wanted = set(keys)
        for key in list(self._buffers):
            if key not in wanted:
                self.deactivate(key)
        for key in wanted:
            self.activate(key)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def seed(self, key: str, samples: Iterable[Sample]) -> None:
        """Replace the buffer with a historical snapshot.

        Valid once per activation, from the UNINITIALIZED state only.
        """
        if self._closed:
            self._violation("seed %s after close", key)
            return
        buf = self._buffers.get(key)
        if buf is None:
            self._violation("seed of inactive metric %s", key)
            return
        if buf.state is not MetricState.UNINITIALIZED:
            self._violation("metric %s already %s", key, buf.state.value)
            return
        ordered = list(samples)
        buf.timestamps = [s.timestamp for s in ordered]
        buf.values = [float(s.value) for s in ordered]
        buf.state = MetricState.SEEDED
        self._mark_changed(key)

    def append(self, key: str, sample: Sample) -> bool:
        """Fold one live sample into its buffer.  Returns True if inserted."""
        if self._closed:
            self._violation("append to %s after close", key)
            return False
        buf = self._buffers.get(key)
        if buf is None:
            return False
        if buf.floor is not None and sample.timestamp < buf.floor:
            logger.debug("dropping %s sample older than window start", key)
            return False
        buf.insert(sample)
        buf.state = MetricState.LIVE
        self._mark_changed(key)
        return True

    def prune(self, key: str, window_start: int) -> int:
        """Drop leading samples older than *window_start*.  Returns count removed."""
        buf = self._buffers.get(key)
        if buf is None:
            return 0
        removed = buf.prune(window_start)
        if removed:
            self._mark_changed(key)
        return removed

    def prune_all(self, window_start: int) -> int:
        return sum(self.prune(key, window_start) for key in list(self._buffers))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self, key: str) -> tuple[Sample, ...]:
        """Current buffer as an immutable tuple (empty for unknown metrics)."""
        buf = self._buffers.get(key)
        if buf is None:
            return ()
        return tuple(Sample(v, t) for t, v in zip(buf.timestamps, buf.values))

    def series(self, key: str) -> SeriesData:
        buf = self._buffers.get(key)
        if buf is None:
            return SeriesData.empty()
        return SeriesData.from_columns(buf.timestamps, buf.values)

    def all_series(self, keys: Iterable[str] | None = None) -> dict[str, SeriesData]:
        if keys is None:
            keys = self._buffers
        return {k: self.series(k) for k in keys if k in self._buffers}

    def __len__(self) -> int:
        return len(self._buffers)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def flush(self) -> frozenset[str]:
        """Deliver one notification for everything changed since the last flush."""
        self._flush_scheduled = False
        if not self._changed:
            return frozenset()
        changed = frozenset(self._changed)
        self._changed.clear()
        for listener in list(self._listeners):
            try:
                listener(changed)
            except Exception:
                logger.exception("series change listener failed")
        return changed

    def _mark_changed(self, key: str) -> None:
        self._changed.add(key)
        if self._flush_scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: caller drives flush()
        self._flush_scheduled = True
        loop.call_soon(self.flush)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._closed = True
        self._buffers.clear()
        self._changed.clear()
        self._listeners.clear()

    def _violation(self, msg: str, *args: object) -> None:
        if self._strict:
            raise StateError(msg % args)
        logger.warning("ignored: " + msg, *args)
