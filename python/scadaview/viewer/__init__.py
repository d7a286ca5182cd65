"""scadaview chart viewer — DearPyGui-based live/historical plotter."""

from __future__ import annotations

import argparse
import asyncio
import sys


def launch() -> None:
    """Entry point for ``scadaview-viewer`` console script."""
    parser = argparse.ArgumentParser(
        prog="scadaview-viewer",
        description="scadaview chart viewer",
    )
    parser.add_argument("metrics", nargs="*",
                        help="Metric keys (group/node/device/metric) to plot on start")
    parser.add_argument("--preset", default="15m",
                        help="Initial realtime window (5m 15m 30m 1h)")
    parser.add_argument("--sse", metavar="URL",
                        help="Take live updates from an SSE endpoint "
                             "(e.g. http://localhost:8080/api/subscribe)")
    parser.add_argument("--env-file", metavar="PATH",
                        help="Settings file (default: .env)")
    args = parser.parse_args()

    try:
        import dearpygui.dearpygui  # noqa: F401
    except ImportError:
        print("Error: dearpygui is required for the viewer.\n"
              "Install with: pip install 'scadaview[viewer]'",
              file=sys.stderr)
        sys.exit(1)

    from ..config import get_settings
    from ..errors import ScadaViewError
    from .app import ViewerApp

    try:
        settings = get_settings(args.env_file)
        settings.require_api_key()
    except ScadaViewError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    app = ViewerApp(settings, sse_url=args.sse)

    async def main() -> None:
        app.setup()
        app.spawn(app.start(args.metrics, args.preset))
        await app.run()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
