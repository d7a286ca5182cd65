"""Cross-series correlation for synchronized tooltips."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

import numpy as np

from .chart import ChartScale
from .identity import MetricInfo, metric_key
from .series import Sample, SeriesData


@dataclass(frozen=True)
class TooltipValue:
    metric: MetricInfo
    value: float
    color: str
    screen_x: float
    screen_y: float
    timestamp: int


@dataclass(frozen=True)
class TooltipData:
    x: float
    y: float
    timestamp: int
    values: tuple[TooltipValue, ...]
    container_width: float


def nearest_index(timestamps: np.ndarray, t: int) -> int | None:
    """Index of the sample closest to *t*; ties go to the earlier sample.

    *timestamps* must be non-decreasing.  Within a run of equal timestamps
    the first sample wins.  Returns None when empty.
    """
    n = len(timestamps)
    if n == 0:
        return None
    idx = int(np.searchsorted(timestamps, t, side="left"))
    if idx == 0:
        return 0
    if idx >= n:
        best = n - 1
    else:
        before = t - int(timestamps[idx - 1])
        after = int(timestamps[idx]) - t
        best = idx if after < before else idx - 1
    return int(np.searchsorted(timestamps, timestamps[best], side="left"))


def correlate(series: Mapping[str, SeriesData], timestamp: int) -> dict[str, Sample]:
    """Nearest sample per series.  Series without data are omitted."""
    result: dict[str, Sample] = {}
    for key, data in series.items():
        idx = nearest_index(data.timestamps, timestamp)
        if idx is not None:
            result[key] = data.sample(idx)
    return result


def build_tooltip(series: Mapping[str, SeriesData],
                  metrics: Sequence[MetricInfo],
                  scale: ChartScale,
                  pixel_x: float, pixel_y: float,
                  color_of: Callable[[str], str]) -> TooltipData | None:
    """Correlate the series under a cursor at (*pixel_x*, *pixel_y*).

    Only *metrics* (the visible ones) are considered; values keep their order.
    Returns None when none of them has data.
    """
    t = scale.timestamp_at(pixel_x)
    visible = {metric_key(m): m for m in metrics}
    nearest = correlate({k: series[k] for k in visible if k in series}, t)
    if not nearest:
        return None
    values = tuple(
        TooltipValue(
            metric=m,
            value=nearest[k].value,
            color=color_of(k),
            screen_x=scale.x(nearest[k].timestamp),
            screen_y=scale.y(nearest[k].value),
            timestamp=nearest[k].timestamp,
        )
        for k, m in visible.items() if k in nearest
    )
    return TooltipData(x=pixel_x, y=pixel_y, timestamp=t, values=values,
                       container_width=scale.width)
