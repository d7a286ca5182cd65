"""Transport adapters for live metric update streams.

Each transport yields raw ``metricUpdate`` payloads (camelCase dicts) in the
order the wire delivers them.  Decoding and filtering happen in the bridge.
"""

from __future__ import annotations

import asyncio
import codecs
import itertools
import json
import logging
from typing import Any, AsyncIterator, Iterable, Protocol
from urllib.parse import urlencode

import aiohttp
import websockets

from .client import SUBSCRIPTIONS
from .sse import SSEParser

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Abstract transport interface."""

    async def connect(self) -> None: ...
    def updates(self) -> AsyncIterator[dict[str, Any]]: ...
    async def close(self) -> None: ...


class GraphQLWSTransport:
    """GraphQL subscription over websocket (``graphql-transport-ws`` protocol)."""

    SUBPROTOCOL = "graphql-transport-ws"

    def __init__(self, url: str, token: str, *,
                 query: str = SUBSCRIPTIONS["metricUpdate"],
                 field: str = "metricUpdate",
                 ack_timeout: float = 10.0):
        sep = "&" if "?" in url else "?"
        self._url = f"{url}{sep}{urlencode({'token': token})}"
        self._query = query
        self._field = field
        self._ack_timeout = ack_timeout
        self._ws: Any = None
        self._sub_id = "1"

    async def connect(self) -> None:
        self._ws = await websockets.connect(self._url, subprotocols=[self.SUBPROTOCOL])
        await self._send({"type": "connection_init", "payload": {}})
        raw = await asyncio.wait_for(self._ws.recv(), timeout=self._ack_timeout)
        msg = json.loads(raw)
        if msg.get("type") != "connection_ack":
            raise ConnectionError(f"expected connection_ack, got {msg.get('type')!r}")
        await self._send({"id": self._sub_id, "type": "subscribe",
                          "payload": {"query": self._query}})
        logger.info("subscribed to %s", self._field)

    async def updates(self) -> AsyncIterator[dict[str, Any]]:
        if self._ws is None:
            raise ConnectionError("transport not connected")
        async for raw in self._ws:
            msg = json.loads(raw)
            kind = msg.get("type")
            if kind == "ping":
                await self._send({"type": "pong"})
            elif kind == "next":
                payload = msg.get("payload") or {}
                if payload.get("errors"):
                    raise ConnectionError(f"subscription error: {payload['errors']}")
                update = (payload.get("data") or {}).get(self._field)
                if update:
                    yield update
            elif kind == "error":
                raise ConnectionError(f"subscription error: {msg.get('payload')}")
            elif kind == "complete":
                return

    async def _send(self, msg: dict[str, Any]) -> None:
        await self._ws.send(json.dumps(msg))

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.send(json.dumps({"id": self._sub_id, "type": "complete"}))
        except websockets.ConnectionClosed:
            pass
        await ws.close()


class SSETransport:
    """Consumes a Server-Sent-Events endpoint such as ``/api/subscribe``."""

    def __init__(self, url: str, *, event: str = "metricUpdate",
                 session: aiohttp.ClientSession | None = None):
        self._url = url
        self._event = event
        self._session = session
        self._owns_session = session is None
        self._resp: aiohttp.ClientResponse | None = None

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=10))
        self._resp = await self._session.get(
            self._url, headers={"Accept": "text/event-stream"})
        if self._resp.status != 200:
            body = await self._resp.text()
            raise ConnectionError(f"SSE endpoint returned {self._resp.status}: {body.strip()}")

    async def updates(self) -> AsyncIterator[dict[str, Any]]:
        if self._resp is None:
            raise ConnectionError("transport not connected")
        parser = SSEParser()
        decoder = codecs.getincrementaldecoder("utf-8")()
        async for chunk in self._resp.content.iter_any():
            for ev in parser.feed(decoder.decode(chunk)):
                if ev.event == self._event:
                    yield ev.json()

    async def close(self) -> None:
        if self._resp is not None:
            self._resp.release()
            self._resp = None
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None


class ReplayTransport:
    """Replays a fixed sequence of payloads (demos and tests).

    *interval* seconds elapse between payloads; *error*, if given, is raised
    after the last one to simulate a transport failure.
    """

    def __init__(self, payloads: Iterable[dict[str, Any]], *,
                 interval: float = 0.0,
                 error: BaseException | None = None,
                 repeat: bool = False):
        self._payloads = list(payloads)
        self._interval = interval
        self._error = error
        self._repeat = repeat
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def updates(self) -> AsyncIterator[dict[str, Any]]:
        source = itertools.cycle(self._payloads) if self._repeat else self._payloads
        for payload in source:
            if self.closed:
                return
            await asyncio.sleep(self._interval)
            yield payload
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True
