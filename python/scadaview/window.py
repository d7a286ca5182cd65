"""Time window model — historical ranges and sliding realtime presets.

All instants are integer nanoseconds since the Unix epoch (UTC).
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

from .errors import ConfigurationError

NS_PER_MS = 1_000_000
NS_PER_S = 1_000_000_000
_MINUTE = 60 * NS_PER_S
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


class ChartMode(enum.Enum):
    HISTORICAL = "historical"
    REALTIME = "realtime"


@dataclass(frozen=True)
class PresetTable:
    """Static preset configuration handed to the window model and the UI."""

    durations: Mapping[str, int]
    labels: Mapping[str, str]
    realtime: tuple[str, ...]
    realtime_ceiling: int

    def duration(self, preset: str) -> int:
        try:
            return self.durations[preset]
        except KeyError:
            raise ConfigurationError(f"unknown time range preset: {preset!r}") from None


DEFAULT_PRESETS = PresetTable(
    durations=MappingProxyType({
        "5m": 5 * _MINUTE,
        "15m": 15 * _MINUTE,
        "30m": 30 * _MINUTE,
        "1h": _HOUR,
        "6h": 6 * _HOUR,
        "12h": 12 * _HOUR,
        "1d": _DAY,
        "1w": 7 * _DAY,
        "1M": 30 * _DAY,
    }),
    labels=MappingProxyType({
        "5m": "Last 5 minutes",
        "15m": "Last 15 minutes",
        "30m": "Last 30 minutes",
        "1h": "Last 1 hour",
        "6h": "Last 6 hours",
        "12h": "Last 12 hours",
        "1d": "Last 1 day",
        "1w": "Last 1 week",
        "1M": "Last 1 month",
    }),
    # Realtime buffers grow with the window, so only short windows slide
    realtime=("5m", "15m", "30m", "1h"),
    realtime_ceiling=_HOUR,
)


@dataclass(frozen=True)
class TimeWindow:
    mode: ChartMode
    start: int
    end: int
    preset: str | None = None

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ConfigurationError(
                f"window start {ns_to_iso(self.start)} is after end {ns_to_iso(self.end)}")

    @property
    def is_realtime(self) -> bool:
        return self.mode is ChartMode.REALTIME

    @property
    def span(self) -> int:
        return self.end - self.start

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp <= self.end

    def advance(self, now: int) -> TimeWindow:
        """Re-resolve a realtime window relative to *now*.

        Historical windows are fixed and returned unchanged.
        """
        if not self.is_realtime:
            return self
        span = self.span
        return replace(self, start=now - span, end=now)


def now_ns() -> int:
    return time.time_ns()


def is_realtime_allowed(preset: str, table: PresetTable = DEFAULT_PRESETS) -> bool:
    duration = table.durations.get(preset)
    if duration is None:
        return False
    return preset in table.realtime and duration <= table.realtime_ceiling


def nearest_realtime_preset(preset: str,
                            table: PresetTable = DEFAULT_PRESETS) -> str:
    """Longest realtime preset not longer than *preset*."""
    wanted = table.duration(preset)
    allowed = [p for p in table.realtime if is_realtime_allowed(p, table)]
    fitting = [p for p in allowed if table.durations[p] <= wanted]
    if fitting:
        return max(fitting, key=lambda p: table.durations[p])
    return min(allowed, key=lambda p: table.durations[p])


def resolve(mode: ChartMode | str, *,
            preset: str | None = None,
            explicit_range: tuple[int, int] | None = None,
            now: int | None = None,
            table: PresetTable = DEFAULT_PRESETS) -> TimeWindow:
    """Resolve a user-facing window selection into concrete instants.

    Raises ``ConfigurationError`` for a realtime preset above the ceiling,
    an unknown preset, or a selection missing its range/preset.
    """
    mode = ChartMode(mode)
    if mode is ChartMode.HISTORICAL:
        if explicit_range is None:
            raise ConfigurationError("historical mode requires an explicit start/end range")
        start, end = explicit_range
        return TimeWindow(mode, start, end)

    if preset is None:
        raise ConfigurationError("realtime mode requires a preset")
    duration = table.duration(preset)
    if not is_realtime_allowed(preset, table):
        raise ConfigurationError(
            f"preset {preset!r} exceeds the realtime ceiling; "
            f"allowed: {', '.join(table.realtime)}")
    if now is None:
        now = now_ns()
    return TimeWindow(mode, now - duration, now, preset)


# ---------------------------------------------------------------------------
# Timestamp conversion
# ---------------------------------------------------------------------------

def to_ns(value: datetime | str | int | float) -> int:
    """Convert a datetime, ISO-8601 string or epoch-milliseconds to ns.

    Naive datetimes are taken as UTC.  Numeric strings are epoch ms.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        return (delta.days * 86_400 + delta.seconds) * NS_PER_S + delta.microseconds * 1_000
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, int):
        return value * NS_PER_MS
    if isinstance(value, float):
        # Split off the fraction; epoch ms times 1e6 exceeds float precision
        whole = int(value)
        return whole * NS_PER_MS + int(round((value - whole) * NS_PER_MS))
    if not isinstance(value, str):
        raise TypeError(f"not a timestamp: {value!r}")
    text = value.strip()
    for parse in (int, float):
        try:
            return to_ns(parse(text))
        except (ValueError, OverflowError):
            pass
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return to_ns(datetime.fromisoformat(text))


def ns_to_datetime(ns: int) -> datetime:
    seconds, rem = divmod(ns, NS_PER_S)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
        microsecond=rem // 1_000)


def ns_to_iso(ns: int) -> str:
    """ISO-8601 with millisecond precision and a ``Z`` suffix."""
    dt = ns_to_datetime(ns)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
