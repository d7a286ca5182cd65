"""Test the dashboard session: window switches, stale fetches, live merging.

Run from the repo root:
    python3 tests/test_session.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

import asyncio

import pytest

from scadaview.engine import MetricState
from scadaview.errors import ConfigurationError, FetchError, ScadaViewError, StreamError
from scadaview.identity import MetricIdentifier, metric_key
from scadaview.series import Sample
from scadaview.session import DashboardSession, SessionState
from scadaview.transport import ReplayTransport
from scadaview.window import NS_PER_MS, NS_PER_S, ChartMode, to_ns

FLOW = MetricIdentifier("plant", "line1", "pump", "flow")
TEMP = MetricIdentifier("plant", "line1", "pump", "temp")
T0 = to_ns("2024-03-01T10:00:00Z")
MINUTE = 60 * NS_PER_S


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class FakeFetcher:
    """Answers from ``data[window.start][key]``; optional per-call gates block."""

    def __init__(self, data=None):
        self.data = data or {}
        self.calls = []
        self.gates = []
        self.error = None

    async def fetch(self, metrics, window, **options):
        keys = [metric_key(m) for m in metrics]
        self.calls.append((keys, window))
        gate = self.gates.pop(0) if self.gates else None
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        by_key = self.data.get(window.start, {})
        return {k: list(by_key.get(k, [])) for k in keys}


def live(metric, value, ts):
    return {**metric.to_payload(), "value": value, "timestamp": ts // NS_PER_MS}


async def until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "timed out"
        await asyncio.sleep(0.005)


def values(session, metric=FLOW):
    return [s.value for s in session.engine.snapshot(metric.key)]


def test_historical_load():
    print("test_historical_load...", end="")

    async def scenario():
        fetcher = FakeFetcher({T0 - MINUTE: {FLOW.key: [Sample(1.0, T0 - 30 * NS_PER_S)]}})
        session = DashboardSession(fetcher, clock=Clock(T0))
        changes = []
        session.subscribe(changes.append)

        await session.set_metrics([FLOW, TEMP])
        assert fetcher.calls == []  # no window yet

        window = await session.select_window(ChartMode.HISTORICAL,
                                             explicit_range=(T0 - MINUTE, T0))
        assert session.window == window
        assert session.state is SessionState.READY
        assert session.generation == 1
        assert not session.streaming
        assert fetcher.calls[0][0] == [FLOW.key, TEMP.key]
        assert values(session) == [1.0]
        assert values(session, TEMP) == []
        assert session.engine.state(FLOW.key) is MetricState.SEEDED
        assert list(session.series()) == [FLOW.key, TEMP.key]

        await asyncio.sleep(0)
        assert changes == [frozenset({FLOW.key, TEMP.key})]
        session.close()

    asyncio.run(scenario())

    print(" OK")


def test_rejected_window_leaves_session_untouched():
    """A realtime 1d request fails before any fetch is issued."""
    print("test_rejected_window_leaves_session_untouched...", end="")

    async def scenario():
        fetcher = FakeFetcher()
        session = DashboardSession(fetcher, clock=Clock(T0))
        await session.set_metrics([FLOW])
        with pytest.raises(ConfigurationError):
            await session.select_window(ChartMode.REALTIME, preset="1d")
        assert fetcher.calls == []
        assert session.window is None
        assert session.generation == 0
        assert session.state is SessionState.IDLE

    asyncio.run(scenario())

    print(" OK")


def test_stale_fetch_is_discarded():
    """A slow fetch for an abandoned window never seeds the engine."""
    print("test_stale_fetch_is_discarded...", end="")

    async def scenario():
        first, second = T0 - 10 * MINUTE, T0 - 5 * MINUTE
        fetcher = FakeFetcher({
            first: {FLOW.key: [Sample(111.0, first)]},
            second: {FLOW.key: [Sample(222.0, second)]},
        })
        gate = asyncio.Event()
        fetcher.gates = [gate, None]
        session = DashboardSession(fetcher, clock=Clock(T0))
        await session.set_metrics([FLOW])

        slow = asyncio.ensure_future(session.select_window(
            ChartMode.HISTORICAL, explicit_range=(first, T0)))
        await asyncio.sleep(0)
        assert session.state is SessionState.LOADING

        await session.select_window(ChartMode.HISTORICAL, explicit_range=(second, T0))
        assert values(session) == [222.0]

        gate.set()
        await slow
        assert values(session) == [222.0]
        assert session.window.start == second
        assert session.state is SessionState.READY

    asyncio.run(scenario())

    print(" OK")


def test_fetch_error_is_recorded():
    print("test_fetch_error_is_recorded...", end="")

    async def scenario():
        fetcher = FakeFetcher({T0 - MINUTE: {FLOW.key: [Sample(5.0, T0 - MINUTE)]}})
        fetcher.error = FetchError("API request failed: 500 Internal Server Error",
                                   status=500)
        session = DashboardSession(fetcher, clock=Clock(T0))
        await session.set_metrics([FLOW])

        await session.select_window(ChartMode.HISTORICAL, explicit_range=(T0 - MINUTE, T0))
        assert session.state is SessionState.ERROR
        assert session.error is fetcher.error
        assert values(session) == []

        # Retrying the selection recovers
        fetcher.error = None
        await session.select_window(ChartMode.HISTORICAL, explicit_range=(T0 - MINUTE, T0))
        assert session.state is SessionState.READY
        assert session.error is None
        assert values(session) == [5.0]

    asyncio.run(scenario())

    print(" OK")


def test_set_metrics_fetches_only_added():
    print("test_set_metrics_fetches_only_added...", end="")

    async def scenario():
        start = T0 - MINUTE
        fetcher = FakeFetcher({start: {FLOW.key: [Sample(1.0, start)],
                                       TEMP.key: [Sample(20.0, start)]}})
        session = DashboardSession(fetcher, clock=Clock(T0))
        await session.set_metrics([FLOW])
        await session.select_window(ChartMode.HISTORICAL, explicit_range=(start, T0))

        await session.set_metrics([FLOW, TEMP])
        assert fetcher.calls[-1][0] == [TEMP.key]
        assert values(session) == [1.0]
        assert values(session, TEMP) == [20.0]

        await session.set_metrics([TEMP])
        assert len(fetcher.calls) == 2
        assert not session.engine.is_active(FLOW.key)
        assert session.metrics() == [TEMP]
        assert list(session.series()) == [TEMP.key]

    asyncio.run(scenario())

    print(" OK")


def test_realtime_merges_live_updates_and_slides():
    """Snapshot, then live events, then the window slides and prunes."""
    print("test_realtime_merges_live_updates_and_slides...", end="")

    async def scenario():
        clock = Clock(T0)
        fetcher = FakeFetcher({T0 - 5 * MINUTE: {FLOW.key: [
            Sample(1.0, T0 - 10 * MINUTE),  # outside the window, pruned on load
            Sample(2.0, T0 - 2 * MINUTE),
            Sample(3.0, T0 - MINUTE),
        ]}})
        transports = []

        def factory():
            transports.append(ReplayTransport([
                live(FLOW, 4, T0 + NS_PER_S),
                live(TEMP, 99, T0 + NS_PER_S),          # not selected
                live(FLOW, "2.5", T0 - 90 * NS_PER_S),  # late, lands in order
            ]))
            return transports[-1]

        session = DashboardSession(fetcher, factory, clock=clock, tick_interval=3600)
        await session.set_metrics([FLOW])
        window = await session.select_window(ChartMode.REALTIME, preset="5m")
        assert window.start == T0 - 5 * MINUTE
        assert session.streaming
        assert values(session) == [2.0, 3.0]

        await until(lambda: not session.streaming)
        assert values(session) == [2.0, 2.5, 3.0, 4.0]
        assert session.engine.state(FLOW.key) is MetricState.LIVE
        assert not session.engine.is_active(TEMP.key)
        assert transports[0].closed

        clock.now = T0 + 3 * MINUTE + 45 * NS_PER_S
        window = session.tick()
        assert window.end == clock.now
        assert window.span == 5 * MINUTE
        assert values(session) == [3.0, 4.0]

        session.close()
        assert session.closed
        assert session.engine.closed
        assert session.tick() == window
        with pytest.raises(ScadaViewError):
            await session.select_window(ChartMode.REALTIME, preset="5m")

    asyncio.run(scenario())

    print(" OK")


def test_stream_error_and_reconnect():
    print("test_stream_error_and_reconnect...", end="")

    async def scenario():
        attempts = []

        def factory():
            if not attempts:
                transport = ReplayTransport([], error=ConnectionError("refused"))
            else:
                transport = ReplayTransport([live(FLOW, 7, T0)])
            attempts.append(transport)
            return transport

        session = DashboardSession(FakeFetcher(), factory, clock=Clock(T0),
                                   tick_interval=3600)
        await session.set_metrics([FLOW])
        await session.select_window(ChartMode.REALTIME, preset="15m")
        await until(lambda: session.state is SessionState.ERROR)
        assert isinstance(session.error, StreamError)
        assert not session.streaming

        session.reconnect()
        assert session.error is None
        assert session.state is SessionState.READY
        await until(lambda: not session.streaming)
        assert values(session) == [7.0]
        assert len(attempts) == 2
        session.close()

    asyncio.run(scenario())

    print(" OK")


def test_failed_stream_stays_closed_on_metric_change():
    """Adding metrics after a stream failure fetches history but never reconnects."""
    print("test_failed_stream_stays_closed_on_metric_change...", end="")

    async def scenario():
        attempts = []

        def factory():
            if not attempts:
                transport = ReplayTransport([live(FLOW, 1, T0)],
                                            error=ConnectionError("refused"))
            else:
                transport = ReplayTransport([live(FLOW, 2, T0), live(TEMP, 3, T0)])
            attempts.append(transport)
            return transport

        start = T0 - 5 * MINUTE
        fetcher = FakeFetcher({start: {TEMP.key: [Sample(20.0, start)]}})
        session = DashboardSession(fetcher, factory, clock=Clock(T0), tick_interval=3600)
        await session.set_metrics([FLOW])
        await session.select_window(ChartMode.REALTIME, preset="5m")
        await until(lambda: session.state is SessionState.ERROR)
        assert values(session) == [1.0]

        await session.set_metrics([FLOW, TEMP])
        await asyncio.sleep(0.05)

        assert len(attempts) == 1
        assert not session.streaming
        assert session.state is SessionState.ERROR
        assert isinstance(session.error, StreamError)
        assert values(session) == [1.0]
        assert values(session, TEMP) == [20.0]
        session.close()

    asyncio.run(scenario())

    print(" OK")


def test_switch_to_historical_stops_live():
    print("test_switch_to_historical_stops_live...", end="")

    async def scenario():
        transports = []

        def factory():
            transports.append(ReplayTransport([live(FLOW, 1, T0)],
                                              interval=0.01, repeat=True))
            return transports[-1]

        session = DashboardSession(FakeFetcher(), factory, clock=Clock(T0),
                                   tick_interval=3600)
        await session.set_metrics([FLOW])
        await session.select_window(ChartMode.REALTIME, preset="5m")
        assert session.streaming

        await session.select_window(ChartMode.HISTORICAL,
                                    explicit_range=(T0 - MINUTE, T0))
        assert not session.streaming
        await until(lambda: transports[0].closed)
        count = len(values(session))
        await asyncio.sleep(0.05)
        assert len(values(session)) == count

        # reconnect() is a no-op outside realtime
        session.reconnect()
        assert len(transports) == 1
        session.close()

    asyncio.run(scenario())

    print(" OK")


if __name__ == "__main__":
    print("scadaview session tests")
    print("=======================\n")

    test_historical_load()
    test_rejected_window_leaves_session_untouched()
    test_stale_fetch_is_discarded()
    test_fetch_error_is_recorded()
    test_set_metrics_fetches_only_added()
    test_realtime_merges_live_updates_and_slides()
    test_stream_error_and_reconnect()
    test_failed_stream_stays_closed_on_metric_change()
    test_switch_to_historical_stops_live()

    print("\nAll tests passed.")
