"""Live stream bridge — a cancelable stream of single-metric update events.

The bridge pumps any :class:`~scadaview.transport.Transport` on the running
event loop and hands decoded :class:`MetricUpdate` events to a callback.  It
never reorders events and never reconnects; a failed or completed bridge is
replaced by opening a new one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .errors import StateError, StreamError
from .identity import MetricIdentifier, metric_key
from .series import Sample, parse_value
from .transport import Transport
from .window import NS_PER_MS, to_ns

logger = logging.getLogger(__name__)

EventCallback = Callable[["MetricUpdate"], None]
ErrorCallback = Callable[[StreamError], None]
CompleteCallback = Callable[[], None]


@dataclass(frozen=True)
class MetricUpdate:
    identifier: MetricIdentifier
    value: float
    timestamp: int

    @property
    def key(self) -> str:
        return metric_key(self.identifier)

    @property
    def sample(self) -> Sample:
        return Sample(self.value, self.timestamp)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MetricUpdate:
        return cls(
            identifier=MetricIdentifier.from_payload(payload),
            value=parse_value(payload["value"]),
            timestamp=to_ns(payload["timestamp"]),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = self.identifier.to_payload()
        payload["value"] = self.value
        payload["timestamp"] = self.timestamp // NS_PER_MS
        return payload


class BridgeHandle:
    """Returned by :meth:`LiveStreamBridge.open`; closing it stops delivery."""

    def __init__(self, bridge: LiveStreamBridge, task: asyncio.Task) -> None:
        self._bridge = bridge
        self._task = task

    @property
    def closed(self) -> bool:
        return self._bridge.closed

    def close(self) -> None:
        self._bridge.close(self)

    async def wait(self) -> None:
        """Wait until the pump task has finished and released the transport.

        Cancelling the pump does not raise here; cancelling the waiter does.
        """
        await asyncio.wait({self._task})


class LiveStreamBridge:
    """Single-use bridge between one transport and one consumer.

    *metrics* is the set of interesting metric keys; events for other
    metrics are dropped.  ``None`` passes every metric through.
    """

    def __init__(self, transport: Transport,
                 metrics: Iterable[str] | None = None) -> None:
        self._transport = transport
        self._metrics: frozenset[str] | None = None
        self.set_metrics(metrics)
        self._handle: BridgeHandle | None = None
        self._closed = False
        self.delivered = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def set_metrics(self, metrics: Iterable[str] | None) -> None:
        self._metrics = None if metrics is None else frozenset(metrics)

    def open(self, on_event: EventCallback,
             on_error: ErrorCallback | None = None,
             on_complete: CompleteCallback | None = None) -> BridgeHandle:
        """Start delivering events.  Must be called from the event loop."""
        if self._handle is not None or self._closed:
            raise StateError("bridge already opened; open a new bridge to reconnect")
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._pump(on_event, on_error, on_complete))
        self._handle = BridgeHandle(self, task)
        return self._handle

    def close(self, handle: BridgeHandle | None = None) -> None:
        """Stop delivery immediately.  Idempotent.

        The pump task is cancelled and releases the transport as it unwinds.
        """
        if self._closed:
            return
        self._closed = True
        if self._handle is not None and not self._handle._task.done():
            self._handle._task.cancel()
        logger.debug("bridge closed (%d delivered, %d dropped)",
                     self.delivered, self.dropped)

    async def _pump(self, on_event: EventCallback,
                    on_error: ErrorCallback | None,
                    on_complete: CompleteCallback | None) -> None:
        try:
            await self._transport.connect()
            async for payload in self._transport.updates():
                if self._closed:
                    break
                self._deliver(payload, on_event)
        except Exception as e:
            if self._closed:
                return
            self._closed = True
            logger.warning("live stream failed: %s", e)
            self._notify(on_error, StreamError(f"live stream failed: {e}", cause=e))
        else:
            if self._closed:
                return
            self._closed = True
            logger.info("live stream completed")
            self._notify(on_complete)
        finally:
            try:
                await self._transport.close()
            except Exception:
                logger.exception("transport close failed")

    def _deliver(self, payload: dict[str, Any], on_event: EventCallback) -> None:
        try:
            update = MetricUpdate.from_payload(payload)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            self.dropped += 1
            logger.warning("dropping undecodable update %r: %s", payload, e)
            return
        if self._metrics is not None and update.key not in self._metrics:
            self.dropped += 1
            return
        self.delivered += 1
        try:
            on_event(update)
        except Exception:
            logger.exception("update callback failed for %s", update.key)

    @staticmethod
    def _notify(callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("bridge callback failed")
