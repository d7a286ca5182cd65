"""Sample and series containers shared by the fetcher, engine and correlator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NamedTuple, Sequence

import numpy as np


class Sample(NamedTuple):
    """One observation: float value at an integer-nanosecond timestamp."""

    value: float
    timestamp: int


@dataclass(frozen=True)
class SeriesData:
    """Read-only numpy view of one metric's series."""

    timestamps: np.ndarray  # int64, nanoseconds
    values: np.ndarray  # float64

    def __len__(self) -> int:
        return len(self.timestamps)

    @classmethod
    def empty(cls) -> SeriesData:
        return cls.from_columns([], [])

    @classmethod
    def from_columns(cls, timestamps: Sequence[int],
                     values: Sequence[float]) -> SeriesData:
        ts = np.array(timestamps, dtype=np.int64)
        vals = np.array(values, dtype=np.float64)
        ts.flags.writeable = False
        vals.flags.writeable = False
        return cls(ts, vals)

    def sample(self, index: int) -> Sample:
        return Sample(float(self.values[index]), int(self.timestamps[index]))


def parse_value(raw: Any) -> float:
    """Metric values arrive as numbers or text; booleans map to 1.0 / 0.0."""
    if isinstance(raw, bool):
        return 1.0 if raw else 0.0
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered == "true":
            return 1.0
        if lowered == "false":
            return 0.0
    return float(raw)


def is_ordered(samples: Sequence[Sample]) -> bool:
    """True when timestamps are non-decreasing."""
    return all(samples[i - 1].timestamp <= samples[i].timestamp
               for i in range(1, len(samples)))
