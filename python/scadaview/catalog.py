"""Metric catalog — the group / node / device / metric tree."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .client import QUERIES
from .errors import FetchError
from .history import QueryClient
from .identity import MetricInfo

logger = logging.getLogger(__name__)


@dataclass
class Metric:
    id: str
    name: str
    value: str | None = None
    type: str = ""
    scan_rate: int | None = None


@dataclass
class Device:
    id: str
    metrics: list[Metric] = field(default_factory=list)


@dataclass
class Node:
    id: str
    metrics: list[Metric] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)


@dataclass
class Group:
    id: str
    nodes: list[Node] = field(default_factory=list)


def _metric(raw: dict[str, Any]) -> Metric:
    return Metric(
        id=str(raw["id"]),
        name=str(raw.get("name") or raw["id"]),
        value=None if raw.get("value") is None else str(raw["value"]),
        type=str(raw.get("type") or ""),
        scan_rate=raw.get("scanRate"),
    )


def parse_groups(raw_groups: list[dict[str, Any]]) -> list[Group]:
    groups = []
    for g in raw_groups or []:
        nodes = []
        for n in g.get("nodes") or []:
            devices = [
                Device(str(d["id"]), [_metric(m) for m in d.get("metrics") or []])
                for d in n.get("devices") or []
            ]
            nodes.append(Node(str(n["id"]),
                              [_metric(m) for m in n.get("metrics") or []],
                              devices))
        groups.append(Group(str(g["id"]), nodes))
    return groups


def metric_infos(groups: list[Group]) -> list[MetricInfo]:
    """Flatten the tree.  Node-level metrics get an empty device id."""
    infos: list[MetricInfo] = []
    for g in groups:
        for n in g.nodes:
            for m in n.metrics:
                infos.append(MetricInfo(g.id, n.id, "", m.id, name=m.name, type=m.type))
            for d in n.devices:
                for m in d.metrics:
                    infos.append(MetricInfo(g.id, n.id, d.id, m.id,
                                            name=m.name, type=m.type))
    return infos


async def fetch_groups(client: QueryClient) -> list[Group]:
    data = await client.query(QUERIES["groups"])
    try:
        groups = parse_groups(data.get("groups") or [])
    except (KeyError, TypeError, AttributeError) as e:
        raise FetchError(f"could not decode groups response: {e}", cause=e) from e
    logger.info("catalog: %d groups", len(groups))
    return groups
