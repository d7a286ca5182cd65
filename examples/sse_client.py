#!/usr/bin/env python3
"""Connect to an SSE live update endpoint and print metric values.

Run a source first, either the demo:
    python examples/demo_source.py

or the proxy in front of the real API:
    scadaview serve --port 4200

Then in another terminal:
    python examples/sse_client.py [URL]
"""

import asyncio
import sys

from scadaview.bridge import LiveStreamBridge
from scadaview.chart import format_timestamp, format_value
from scadaview.transport import SSETransport

url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:4200/api/subscribe"


def on_event(update):
    print(f"[{format_timestamp(update.timestamp)}] {update.key} = {format_value(update.value)}")


def on_error(error):
    print(f"stream failed: {error}")


async def main():
    bridge = LiveStreamBridge(SSETransport(url))
    handle = bridge.open(on_event, on_error, lambda: print("stream ended"))
    try:
        await handle.wait()
    finally:
        handle.close()


try:
    asyncio.run(main())
except KeyboardInterrupt:
    pass
