"""HTTP proxy in front of the platform API.

Routes:
    POST /api/history    historical samples for a set of metrics
    GET  /api/groups     the metric catalog
    GET  /api/subscribe  live updates as Server-Sent Events (``metricUpdate``)

The API key stays on this side; browser-style clients only see the proxy.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from aiohttp import web

from .bridge import LiveStreamBridge, MetricUpdate
from .client import QUERIES, GraphQLClient
from .config import Settings
from .errors import ConfigurationError, ScadaViewError, StreamError
from .history import HistoryFetcher, QueryClient
from .identity import MetricIdentifier, metric_key, parse_metric_key
from .sse import encode_comment, encode_event
from .transport import GraphQLWSTransport, Transport
from .window import ChartMode, TimeWindow, ns_to_iso, to_ns

logger = logging.getLogger(__name__)

_NOT_CONFIGURED = "API key not configured"
_STREAM_END = object()


class ProxyServer:
    """Request handlers bound to one upstream client and transport factory.

    *client* and *transport_factory* default to the real platform endpoints
    built from *settings*; tests inject their own.
    """

    def __init__(self, settings: Settings, *,
                 client: QueryClient | None = None,
                 transport_factory: Callable[[], Transport] | None = None,
                 keepalive: float = 15.0) -> None:
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self._transport_factory = transport_factory
        self._keepalive = keepalive

    # ------------------------------------------------------------------
    # Upstream access
    # ------------------------------------------------------------------

    def _get_client(self) -> QueryClient:
        if self._client is None:
            if not self.settings.api_key:
                raise ConfigurationError(_NOT_CONFIGURED)
            self._client = GraphQLClient(self.settings.api_key, self.settings.api_url,
                                         timeout=self.settings.request_timeout)
        return self._client

    def _make_transport(self) -> Transport:
        if self._transport_factory is not None:
            return self._transport_factory()
        if not self.settings.api_key:
            raise ConfigurationError(_NOT_CONFIGURED)
        return GraphQLWSTransport(self.settings.ws_url, self.settings.api_key)

    async def close(self) -> None:
        if self._owns_client and isinstance(self._client, GraphQLClient):
            await self._client.close()
        self._client = None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def history_handler(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            metrics = [MetricIdentifier.from_payload(m) for m in body["metrics"]]
            window = TimeWindow(ChartMode.HISTORICAL, to_ns(body["start"]), to_ns(body["end"]))
        except (ValueError, KeyError, TypeError) as e:
            return _error(f"invalid request: {e}", status=400)
        except ConfigurationError as e:
            return _error(str(e), status=400)

        try:
            fetcher = HistoryFetcher(self._get_client())
            snapshot = await fetcher.fetch(metrics, window,
                                           interval=body.get("interval"),
                                           samples=body.get("samples"),
                                           raw=body.get("raw"))
        except ScadaViewError as e:
            logger.error("history request failed: %s", e)
            return _error(str(e))

        return web.json_response([
            {
                **m.to_payload(),
                "history": [{"value": s.value, "timestamp": ns_to_iso(s.timestamp)}
                            for s in snapshot.get(metric_key(m), [])],
            }
            for m in metrics
        ])

    async def groups_handler(self, request: web.Request) -> web.Response:
        try:
            data = await self._get_client().query(QUERIES["groups"])
        except ScadaViewError as e:
            logger.error("groups request failed: %s", e)
            return _error(str(e))
        return web.json_response(data.get("groups") or [])

    async def subscribe_handler(self, request: web.Request) -> web.StreamResponse:
        """Relay live updates until the client goes away or upstream ends.

        ``?metrics=key1,key2`` limits the stream to those metric keys.
        """
        try:
            metrics = _parse_metrics_param(request.query.get("metrics"))
            transport = self._make_transport()
        except ConfigurationError as e:
            return _error(str(e))
        except ValueError as e:
            return _error(str(e), status=400)

        resp = web.StreamResponse(headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        })
        await resp.prepare(request)

        queue: asyncio.Queue[Any] = asyncio.Queue()
        bridge = LiveStreamBridge(transport, metrics)
        handle = bridge.open(queue.put_nowait, queue.put_nowait,
                             lambda: queue.put_nowait(_STREAM_END))
        peer = request.remote
        logger.info("subscriber %s connected", peer)
        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self._keepalive)
                except asyncio.TimeoutError:
                    await resp.write(encode_comment("keepalive"))
                    continue
                if item is _STREAM_END:
                    break
                if isinstance(item, StreamError):
                    await resp.write(encode_event("error", {"error": str(item)}))
                    break
                update: MetricUpdate = item
                await resp.write(encode_event("metricUpdate", update.to_payload()))
        except ConnectionResetError:
            logger.info("subscriber %s went away", peer)
        finally:
            handle.close()
            await handle.wait()
            logger.info("subscriber %s closed (%d delivered)", peer, bridge.delivered)
        return resp


def _error(message: str, status: int = 500) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _parse_metrics_param(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    keys = [k for k in raw.split(",") if k]
    for key in keys:
        parse_metric_key(key)
    return keys


server_key = web.AppKey("server", ProxyServer)


def make_app(settings: Settings, **kwargs: Any) -> web.Application:
    server = ProxyServer(settings, **kwargs)
    app = web.Application()
    app[server_key] = server
    app.router.add_post("/api/history", server.history_handler)
    app.router.add_get("/api/groups", server.groups_handler)
    app.router.add_get("/api/subscribe", server.subscribe_handler)

    async def _cleanup(app: web.Application) -> None:
        await app[server_key].close()

    app.on_cleanup.append(_cleanup)
    return app


async def serve(settings: Settings, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Run the proxy until cancelled."""
    app = make_app(settings)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("serving on http://%s:%d", host, port)
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
