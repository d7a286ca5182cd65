"""scadaview - Telemetry dashboard client: history, live updates, charts."""

from .errors import ScadaViewError, ConfigurationError, FetchError, StreamError, StateError
from .identity import MetricIdentifier, MetricInfo, metric_key, parse_metric_key
from .series import Sample, SeriesData
from .window import ChartMode, PresetTable, TimeWindow, DEFAULT_PRESETS, resolve, is_realtime_allowed
from .engine import MetricState, SeriesMergeEngine
from .correlator import TooltipData, TooltipValue, correlate, build_tooltip
from .history import HistoryFetcher
from .bridge import LiveStreamBridge, BridgeHandle, MetricUpdate
from .session import DashboardSession, SessionState

__all__ = [
    "ScadaViewError", "ConfigurationError", "FetchError", "StreamError", "StateError",
    "MetricIdentifier", "MetricInfo", "metric_key", "parse_metric_key",
    "Sample", "SeriesData",
    "ChartMode", "PresetTable", "TimeWindow", "DEFAULT_PRESETS", "resolve",
    "is_realtime_allowed",
    "MetricState", "SeriesMergeEngine",
    "TooltipData", "TooltipValue", "correlate", "build_tooltip",
    "HistoryFetcher",
    "LiveStreamBridge", "BridgeHandle", "MetricUpdate",
    "DashboardSession", "SessionState",
]
