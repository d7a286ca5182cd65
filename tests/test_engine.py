"""Test the series merge engine: seeding, live insertion, pruning, notification.

Run from the repo root:
    python3 tests/test_engine.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

import asyncio
import random
from datetime import datetime, timezone

import pytest

from scadaview.correlator import correlate
from scadaview.engine import MetricState, SeriesMergeEngine
from scadaview.errors import StateError
from scadaview.series import Sample
from scadaview.window import to_ns

KEY = "plant/line1/pump/flow"
OTHER = "plant/line1/pump/pressure"


def T(h, m, s):
    """10:00:05-style wall clock on a fixed day, as ns."""
    return to_ns(datetime(2024, 3, 1, h, m, s, tzinfo=timezone.utc))


def make_engine(*keys, strict=True):
    engine = SeriesMergeEngine(strict=strict)
    for key in keys or (KEY,):
        engine.activate(key)
    return engine


def values(engine, key=KEY):
    return [s.value for s in engine.snapshot(key)]


def test_seed_then_live_merge():
    """Snapshot + live events merge into one ordered series, then prune."""
    print("test_seed_then_live_merge...", end="")

    engine = make_engine()
    engine.seed(KEY, [Sample(1, T(10, 0, 0)), Sample(2, T(10, 0, 5))])
    assert engine.state(KEY) is MetricState.SEEDED

    assert engine.append(KEY, Sample(3, T(10, 0, 2)))
    assert engine.append(KEY, Sample(4, T(10, 0, 10)))
    assert engine.state(KEY) is MetricState.LIVE
    assert values(engine) == [1, 3, 2, 4]

    removed = engine.prune(KEY, T(10, 0, 4))
    assert removed == 2
    assert engine.snapshot(KEY) == (Sample(2, T(10, 0, 5)), Sample(4, T(10, 0, 10)))

    nearest = correlate({KEY: engine.series(KEY)}, T(10, 0, 6))
    assert nearest == {KEY: Sample(2, T(10, 0, 5))}

    print(" OK")


def test_duplicate_timestamps_keep_arrival_order():
    """Equal timestamps are never deduplicated and stay in arrival order."""
    print("test_duplicate_timestamps_keep_arrival_order...", end="")

    engine = make_engine()
    engine.seed(KEY, [Sample(1, T(10, 0, 0)), Sample(2, T(10, 0, 5))])
    engine.append(KEY, Sample(3, T(10, 0, 5)))
    engine.append(KEY, Sample(4, T(10, 0, 5)))
    engine.append(KEY, Sample(5, T(10, 0, 0)))

    assert values(engine) == [1, 5, 2, 3, 4]

    print(" OK")


def test_out_of_order_appends_stay_sorted():
    """Any arrival order yields a non-decreasing, stable series."""
    print("test_out_of_order_appends_stay_sorted...", end="")

    rng = random.Random(7)
    base = T(10, 0, 0)
    samples = [Sample(float(i), base + rng.randrange(0, 20) * 1_000_000_000)
               for i in range(200)]

    engine = make_engine()
    engine.seed(KEY, [])
    for s in samples:
        engine.append(KEY, s)

    snap = engine.snapshot(KEY)
    assert len(snap) == len(samples)
    assert snap == tuple(sorted(samples, key=lambda s: s.timestamp))

    print(" OK")


def test_seed_is_once_per_activation():
    """A second seed is a StateError; reactivation allows a fresh seed."""
    print("test_seed_is_once_per_activation...", end="")

    engine = make_engine()
    engine.seed(KEY, [Sample(1, T(10, 0, 0))])
    with pytest.raises(StateError):
        engine.seed(KEY, [Sample(9, T(10, 0, 0))])
    assert values(engine) == [1]

    engine.deactivate(KEY)
    engine.activate(KEY)
    assert engine.state(KEY) is MetricState.UNINITIALIZED
    engine.seed(KEY, [Sample(9, T(10, 0, 0))])
    assert values(engine) == [9]

    print(" OK")


def test_seed_inactive_metric_raises():
    print("test_seed_inactive_metric_raises...", end="")

    engine = make_engine()
    with pytest.raises(StateError):
        engine.seed(OTHER, [Sample(1, T(10, 0, 0))])
    assert not engine.is_active(OTHER)

    print(" OK")


def test_non_strict_logs_and_ignores():
    """strict=False turns invariant violations into warnings."""
    print("test_non_strict_logs_and_ignores...", end="")

    engine = make_engine(strict=False)
    engine.seed(KEY, [Sample(1, T(10, 0, 0))])
    engine.seed(KEY, [Sample(2, T(10, 0, 0))])
    assert values(engine) == [1]

    engine.close()
    assert engine.append(KEY, Sample(3, T(10, 0, 1))) is False

    print(" OK")


def test_append_unknown_metric_dropped():
    print("test_append_unknown_metric_dropped...", end="")

    engine = make_engine()
    assert engine.append(OTHER, Sample(1, T(10, 0, 0))) is False
    assert engine.snapshot(OTHER) == ()
    assert engine.keys() == [KEY]

    print(" OK")


def test_append_older_than_floor_dropped():
    """Once pruned, samples before the window start are rejected."""
    print("test_append_older_than_floor_dropped...", end="")

    engine = make_engine()
    engine.seed(KEY, [Sample(1, T(10, 0, 0)), Sample(2, T(10, 0, 5))])
    engine.prune(KEY, T(10, 0, 3))

    assert engine.append(KEY, Sample(3, T(10, 0, 1))) is False
    # Exactly at the floor is still inside the window
    assert engine.append(KEY, Sample(4, T(10, 0, 3))) is True
    assert values(engine) == [4, 2]

    print(" OK")


def test_append_before_seed_goes_live():
    """Live data may beat the snapshot; the metric is then LIVE and unseedable."""
    print("test_append_before_seed_goes_live...", end="")

    engine = make_engine()
    assert engine.append(KEY, Sample(1, T(10, 0, 0)))
    assert engine.state(KEY) is MetricState.LIVE
    with pytest.raises(StateError):
        engine.seed(KEY, [Sample(0, T(9, 0, 0))])

    print(" OK")


def test_prune_is_idempotent():
    print("test_prune_is_idempotent...", end="")

    engine = make_engine(KEY, OTHER)
    engine.seed(KEY, [Sample(1, T(10, 0, 0)), Sample(2, T(10, 0, 5))])
    engine.seed(OTHER, [Sample(7, T(10, 0, 1))])

    assert engine.prune_all(T(10, 0, 2)) == 2
    assert engine.prune_all(T(10, 0, 2)) == 0
    # The floor never moves backwards
    engine.prune(KEY, T(9, 0, 0))
    assert engine.append(KEY, Sample(3, T(10, 0, 1))) is False
    assert values(engine) == [2]
    assert values(engine, OTHER) == []

    print(" OK")


def test_flush_delivers_one_deduplicated_notification():
    """Without a running loop the caller drives flush()."""
    print("test_flush_delivers_one_deduplicated_notification...", end="")

    engine = make_engine(KEY, OTHER)
    calls = []
    engine.subscribe(calls.append)

    engine.seed(KEY, [Sample(1, T(10, 0, 0))])
    engine.append(KEY, Sample(2, T(10, 0, 1)))
    engine.append(OTHER, Sample(3, T(10, 0, 1)))
    assert calls == []

    assert engine.flush() == frozenset({KEY, OTHER})
    assert calls == [frozenset({KEY, OTHER})]
    assert engine.flush() == frozenset()
    assert len(calls) == 1

    print(" OK")


def test_notification_scheduled_per_loop_cycle():
    """On a running loop, a burst of mutations yields a single callback."""
    print("test_notification_scheduled_per_loop_cycle...", end="")

    async def scenario():
        engine = make_engine(KEY, OTHER)
        calls = []
        engine.subscribe(calls.append)
        engine.seed(KEY, [Sample(1, T(10, 0, 0))])
        for i in range(5):
            engine.append(OTHER, Sample(i, T(10, 0, i)))
        assert calls == []
        await asyncio.sleep(0)
        assert calls == [frozenset({KEY, OTHER})]

        engine.append(KEY, Sample(9, T(10, 0, 9)))
        await asyncio.sleep(0)
        assert calls[-1] == frozenset({KEY})
        assert len(calls) == 2

    asyncio.run(scenario())

    print(" OK")


def test_listener_failure_is_isolated():
    print("test_listener_failure_is_isolated...", end="")

    engine = make_engine()
    seen = []

    def broken(keys):
        raise RuntimeError("boom")

    engine.subscribe(broken)
    unsubscribe = engine.subscribe(seen.append)
    engine.seed(KEY, [])
    engine.flush()
    assert seen == [frozenset({KEY})]

    unsubscribe()
    engine.append(KEY, Sample(1, T(10, 0, 0)))
    engine.flush()
    assert len(seen) == 1

    print(" OK")


def test_deactivate_discards_buffer():
    print("test_deactivate_discards_buffer...", end="")

    engine = make_engine(KEY, OTHER)
    engine.seed(KEY, [Sample(1, T(10, 0, 0))])
    engine.set_active([OTHER])
    assert engine.keys() == [OTHER]
    assert engine.snapshot(KEY) == ()
    assert len(engine.series(KEY)) == 0

    print(" OK")


def test_close_stops_mutation():
    print("test_close_stops_mutation...", end="")

    engine = make_engine()
    engine.seed(KEY, [Sample(1, T(10, 0, 0))])
    engine.close()
    assert engine.closed
    assert len(engine) == 0
    with pytest.raises(StateError):
        engine.append(KEY, Sample(2, T(10, 0, 1)))
    with pytest.raises(StateError):
        engine.seed(KEY, [])

    print(" OK")


def test_series_handoff_is_read_only():
    print("test_series_handoff_is_read_only...", end="")

    engine = make_engine()
    engine.seed(KEY, [Sample(1, T(10, 0, 0)), Sample(2.5, T(10, 0, 1))])
    data = engine.series(KEY)
    assert data.timestamps.dtype.name == "int64"
    assert data.values.dtype.name == "float64"
    with pytest.raises(ValueError):
        data.values[0] = 99.0

    # Later mutation does not leak into an earlier snapshot
    snap = engine.snapshot(KEY)
    engine.append(KEY, Sample(3, T(10, 0, 2)))
    assert len(snap) == 2
    assert len(data) == 2

    print(" OK")


if __name__ == "__main__":
    print("scadaview engine tests")
    print("======================\n")

    test_seed_then_live_merge()
    test_duplicate_timestamps_keep_arrival_order()
    test_out_of_order_appends_stay_sorted()
    test_seed_is_once_per_activation()
    test_seed_inactive_metric_raises()
    test_non_strict_logs_and_ignores()
    test_append_unknown_metric_dropped()
    test_append_older_than_floor_dropped()
    test_append_before_seed_goes_live()
    test_prune_is_idempotent()
    test_flush_delivers_one_deduplicated_notification()
    test_notification_scheduled_per_loop_cycle()
    test_listener_failure_is_isolated()
    test_deactivate_discards_buffer()
    test_close_stops_mutation()
    test_series_handoff_is_read_only()

    print("\nAll tests passed.")
