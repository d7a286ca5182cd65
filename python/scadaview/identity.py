"""Metric identity — canonical keys for (group, node, device, metric) tuples."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

KEY_SEPARATOR = "/"

# Type names the platform uses for boolean metrics
_BOOLEAN_TYPES = frozenset({"Bool", "Boolean", "boolean", "11"})


@dataclass(frozen=True)
class MetricIdentifier:
    group_id: str
    node_id: str
    device_id: str
    metric_id: str

    @property
    def key(self) -> str:
        return metric_key(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MetricIdentifier:
        """Build from the camelCase wire shape used by the platform API."""
        return cls(
            group_id=str(payload["groupId"]),
            node_id=str(payload["nodeId"]),
            device_id=str(payload.get("deviceId") or ""),
            metric_id=str(payload["metricId"]),
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "groupId": self.group_id,
            "nodeId": self.node_id,
            "deviceId": self.device_id,
            "metricId": self.metric_id,
        }


@dataclass(frozen=True)
class MetricInfo(MetricIdentifier):
    """Identifier plus display metadata."""

    name: str = ""
    type: str = ""

    @property
    def identifier(self) -> MetricIdentifier:
        return MetricIdentifier(self.group_id, self.node_id,
                                self.device_id, self.metric_id)

    @property
    def is_boolean(self) -> bool:
        return is_boolean_type(self.type)

    @property
    def label(self) -> str:
        return self.name or self.metric_id


def metric_key(identifier: MetricIdentifier) -> str:
    """Return the stable mapping key ``group/node/device/metric``."""
    return KEY_SEPARATOR.join((identifier.group_id, identifier.node_id,
                               identifier.device_id, identifier.metric_id))


def parse_metric_key(key: str) -> MetricIdentifier:
    """Inverse of :func:`metric_key`.  Raises ``ValueError`` on malformed keys."""
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 4:
        raise ValueError(
            f"metric key must have 4 '{KEY_SEPARATOR}'-separated parts: {key!r}")
    return MetricIdentifier(*parts)


def is_boolean_type(type_name: str) -> bool:
    return type_name in _BOOLEAN_TYPES
