#!/usr/bin/env python3
"""Stand-in for the platform API with synthetic metrics, for viewer testing.

Serves on localhost:4200:
    POST /graphql         groups and history queries
    GET  /api/subscribe   live metricUpdate events (SSE), 2 Hz per metric

Usage:
    python examples/demo_source.py

Then in another terminal:
    ANYWHERESCADA_API_KEY=demo ANYWHERESCADA_API_URL=http://localhost:4200/graphql \\
        scadaview-viewer --sse http://localhost:4200/api/subscribe demo/line1/pump/flow
"""

import asyncio
import math
import random
import time

from aiohttp import web

from scadaview.sse import encode_event
from scadaview.window import NS_PER_MS, ns_to_iso, to_ns

# --- Catalog: one node-level flag and a pump with a few analog channels ---

GROUP, NODE, DEVICE = "demo", "line1", "pump"

CATALOG = [{
    "id": GROUP,
    "nodes": [{
        "id": NODE,
        "metrics": [
            {"id": "running", "name": "Running", "type": "Boolean", "value": "true",
             "scanRate": 500},
        ],
        "devices": [{
            "id": DEVICE,
            "metrics": [
                {"id": "flow", "name": "Flow (m3/h)", "type": "Float", "value": "0",
                 "scanRate": 500},
                {"id": "pressure", "name": "Pressure (bar)", "type": "Float", "value": "0",
                 "scanRate": 500},
                {"id": "temperature", "name": "Temperature (C)", "type": "Float",
                 "value": "0", "scanRate": 500},
            ],
        }],
    }],
}]


def value_at(metric_id: str, t: float):
    """Synthetic value of *metric_id* at epoch second *t*."""
    if metric_id == "running":
        return "true" if math.sin(2 * math.pi * t / 120.0) > -0.3 else "false"
    if metric_id == "flow":
        return 40.0 + 10.0 * math.sin(2 * math.pi * t / 60.0) + random.gauss(0, 0.5)
    if metric_id == "pressure":
        return 3.2 + 0.4 * math.sin(2 * math.pi * t / 45.0) + random.gauss(0, 0.02)
    if metric_id == "temperature":
        return 55.0 + 3.0 * math.sin(2 * math.pi * t / 300.0) + random.gauss(0, 0.1)
    return 0.0


def history(variables: dict) -> list:
    start = to_ns(variables["start"])
    end = to_ns(variables["end"])
    samples = min(variables.get("samples") or 600, 2000)
    step = max((end - start) // samples, 1)
    out = []
    for m in variables["metrics"]:
        points = [{"value": value_at(m["metricId"], ts / 1e9), "timestamp": ns_to_iso(ts)}
                  for ts in range(start, end, step)]
        out.append({**m, "history": points})
    return out


async def graphql_handler(request: web.Request) -> web.Response:
    body = await request.json()
    query = body.get("query", "")
    if "GetGroups" in query:
        return web.json_response({"data": {"groups": CATALOG}})
    if "GetHistory" in query:
        return web.json_response({"data": {"history": history(body["variables"])}})
    return web.json_response({"errors": [{"message": "unsupported query"}]})


async def subscribe_handler(request: web.Request) -> web.StreamResponse:
    resp = web.StreamResponse(headers={"Content-Type": "text/event-stream",
                                       "Cache-Control": "no-cache"})
    await resp.prepare(request)
    print(f"Client connected: {request.remote}")
    sent = 0
    try:
        while True:
            now_ms = time.time_ns() // NS_PER_MS
            for metric_id in ("running", "flow", "pressure", "temperature"):
                device = "" if metric_id == "running" else DEVICE
                await resp.write(encode_event("metricUpdate", {
                    "groupId": GROUP, "nodeId": NODE, "deviceId": device,
                    "metricId": metric_id,
                    "value": value_at(metric_id, now_ms / 1000.0),
                    "timestamp": now_ms,
                }))
                sent += 1
            if sent % 40 == 0:
                print(f"  sent {sent} updates")
            await asyncio.sleep(0.5)
    except ConnectionResetError:
        print("Client disconnected.")
    return resp


def main(host: str = "127.0.0.1", port: int = 4200):
    app = web.Application()
    app.router.add_post("/graphql", graphql_handler)
    app.router.add_get("/api/subscribe", subscribe_handler)
    print(f"Listening on {host}:{port}  (Ctrl-C to stop)")
    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    main()
