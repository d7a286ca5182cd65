"""History fetcher — one bulk historical query per window selection."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from .client import QUERIES
from .errors import FetchError
from .identity import MetricIdentifier, metric_key
from .series import Sample, is_ordered, parse_value
from .window import TimeWindow, ns_to_iso, to_ns

logger = logging.getLogger(__name__)


class QueryClient(Protocol):
    async def query(self, document: str,
                    variables: dict[str, Any] | None = None) -> dict[str, Any]: ...


def build_history_variables(metrics: Iterable[MetricIdentifier], start: int, end: int, *,
                            interval: str | None = None,
                            samples: int | None = None,
                            raw: bool | None = None) -> dict[str, Any]:
    variables: dict[str, Any] = {
        "start": ns_to_iso(start),
        "end": ns_to_iso(end),
        "metrics": [m.to_payload() for m in metrics],
    }
    # Optional knobs are left out rather than sent as null
    if interval is not None:
        variables["interval"] = interval
    if samples is not None:
        variables["samples"] = samples
    if raw is not None:
        variables["raw"] = raw
    return variables


def decode_history(entries: Any, wanted: Iterable[str],
                   window: TimeWindow | None = None) -> dict[str, list[Sample]]:
    """Decode the ``history`` response list into ordered per-metric samples.

    Every key in *wanted* is present in the result (empty when the response
    has nothing for it); keys outside *wanted* are ignored.  With *window*,
    samples outside ``[start, end]`` are dropped.  Raises
    ``KeyError``/``TypeError``/``ValueError`` on malformed input.
    """
    result: dict[str, list[Sample]] = {key: [] for key in wanted}
    if entries is None:
        return result
    if not isinstance(entries, list):
        raise TypeError(f"history must be a list, got {type(entries).__name__}")

    for entry in entries:
        key = metric_key(MetricIdentifier.from_payload(entry))
        if key not in result:
            logger.debug("ignoring unrequested metric %s in history response", key)
            continue
        points = entry.get("history") or []
        samples = [Sample(parse_value(p["value"]), to_ns(p["timestamp"])) for p in points]
        if window is not None:
            kept = [s for s in samples if window.contains(s.timestamp)]
            if len(kept) != len(samples):
                logger.debug("history for %s: dropped %d samples outside the window",
                             key, len(samples) - len(kept))
            samples = kept
        if not is_ordered(samples):
            logger.debug("history for %s out of order; sorting %d samples",
                         key, len(samples))
            samples.sort(key=lambda s: s.timestamp)
        result[key].extend(samples)
        if len(result[key]) != len(samples):
            # Same metric split over several entries
            result[key].sort(key=lambda s: s.timestamp)
    return result


class HistoryFetcher:
    """Fetches a complete historical snapshot or raises ``FetchError``."""

    def __init__(self, client: QueryClient) -> None:
        self._client = client

    async def fetch(self, metrics: Iterable[MetricIdentifier], window: TimeWindow, *,
                    interval: str | None = None,
                    samples: int | None = None,
                    raw: bool | None = None) -> dict[str, list[Sample]]:
        metrics = list(metrics)
        wanted = [metric_key(m) for m in metrics]
        if not metrics:
            return {}
        variables = build_history_variables(metrics, window.start, window.end,
                                            interval=interval, samples=samples, raw=raw)
        logger.info("fetching history for %d metrics, %s .. %s",
                    len(metrics), variables["start"], variables["end"])

        data = await self._client.query(QUERIES["history"], variables)
        try:
            snapshot = decode_history(data.get("history"), wanted, window)
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
            raise FetchError(f"could not decode history response: {e}", cause=e) from e

        logger.info("history loaded: %d samples",
                    sum(len(v) for v in snapshot.values()))
        return snapshot
