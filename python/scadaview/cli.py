"""scadaview command-line tool."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .catalog import fetch_groups, metric_infos
from .chart import format_timestamp, format_value
from .client import GraphQLClient
from .config import Settings, get_settings
from .errors import ScadaViewError
from .history import HistoryFetcher
from .identity import MetricIdentifier, parse_metric_key
from .session import DashboardSession
from .transport import GraphQLWSTransport, SSETransport
from .window import (DEFAULT_PRESETS, ChartMode, TimeWindow, now_ns, resolve,
                     to_ns)


def _client(settings: Settings) -> GraphQLClient:
    return GraphQLClient(settings.require_api_key(), settings.api_url,
                         timeout=settings.request_timeout)


def _metrics(keys: list[str]) -> list[MetricIdentifier]:
    try:
        return [parse_metric_key(k) for k in keys]
    except ValueError as e:
        raise SystemExit(f"Error: {e}")


def _window_args(args: argparse.Namespace) -> TimeWindow:
    if args.start or args.end:
        if not (args.start and args.end):
            raise SystemExit("Error: --start and --end must be given together")
        return resolve(ChartMode.HISTORICAL,
                       explicit_range=(to_ns(args.start), to_ns(args.end)))
    # History accepts every preset, not only the realtime ones
    end = now_ns()
    return resolve(ChartMode.HISTORICAL,
                   explicit_range=(end - DEFAULT_PRESETS.duration(args.preset), end))


async def cmd_groups(args: argparse.Namespace, settings: Settings) -> None:
    """Print every metric in the catalog."""
    async with _client(settings) as client:
        groups = await fetch_groups(client)
    for info in metric_infos(groups):
        kind = "bool" if info.is_boolean else (info.type or "-")
        print(f"{info.key:<60s} {kind:<10s} {info.label}")


async def cmd_history(args: argparse.Namespace, settings: Settings) -> None:
    """Fetch and print history for one or more metric keys."""
    metrics = _metrics(args.metrics)
    try:
        window = _window_args(args)
    except ValueError as e:
        raise SystemExit(f"Error: bad time range: {e}")
    async with _client(settings) as client:
        snapshot = await HistoryFetcher(client).fetch(
            metrics, window, interval=args.interval, samples=args.samples,
            raw=True if args.raw else None)

    if args.json:
        out = {key: [[s.timestamp, s.value] for s in samples]
               for key, samples in snapshot.items()}
        json.dump(out, sys.stdout)
        print()
        return
    for key, samples in snapshot.items():
        print(f"{key} ({len(samples)} samples)")
        for s in samples:
            print(f"  {format_timestamp(s.timestamp)}  {format_value(s.value)}")


async def cmd_watch(args: argparse.Namespace, settings: Settings) -> None:
    """Run a realtime session and print the latest value of changed metrics."""
    metrics = _metrics(args.metrics)
    async with _client(settings) as client:
        if args.sse:
            factory = lambda: SSETransport(args.sse)
        else:
            token = settings.require_api_key()
            factory = lambda: GraphQLWSTransport(settings.ws_url, token)
        session = DashboardSession(HistoryFetcher(client), factory,
                                   tick_interval=settings.tick_interval)

        def on_change(keys: frozenset[str]) -> None:
            for key in sorted(keys):
                data = session.engine.series(key)
                if len(data):
                    last = data.sample(len(data) - 1)
                    print(f"[{format_timestamp(last.timestamp)}] {key} = "
                          f"{format_value(last.value)}  ({len(data)} in window)")

        session.subscribe(on_change)
        try:
            await session.set_metrics(metrics)
            await session.select_window(ChartMode.REALTIME, preset=args.preset)
            if session.error is not None:
                raise session.error
            deadline = args.duration
            elapsed = 0.0
            while deadline is None or elapsed < deadline:
                await asyncio.sleep(0.5)
                elapsed += 0.5
                if session.error is not None:
                    raise session.error
        finally:
            session.close()


async def cmd_serve(args: argparse.Namespace, settings: Settings) -> None:
    """Run the HTTP/SSE proxy."""
    from .server import serve
    settings.require_api_key()
    await serve(settings, args.host, args.port)


def _add_window(p: argparse.ArgumentParser) -> None:
    p.add_argument("--preset", default="1h",
                   help="Time range preset (5m 15m 30m 1h 6h 12h 1d 1w 1M)")
    p.add_argument("--start", help="Range start (ISO-8601 or epoch ms)")
    p.add_argument("--end", help="Range end (ISO-8601 or epoch ms)")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="scadaview",
                                     description="scadaview telemetry dashboard tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--env-file", help="Settings file (default: .env)")
    sub = parser.add_subparsers(dest="command")

    # groups
    sub.add_parser("groups", help="List the metric catalog")

    # history
    p_hist = sub.add_parser("history", help="Fetch historical samples")
    p_hist.add_argument("metrics", nargs="+", help="Metric keys group/node/device/metric")
    _add_window(p_hist)
    p_hist.add_argument("--interval", help="Aggregation interval (e.g. 1m)")
    p_hist.add_argument("--samples", type=int, help="Target sample count")
    p_hist.add_argument("--raw", action="store_true", help="Request raw samples")
    p_hist.add_argument("--json", action="store_true", help="Print JSON")

    # watch
    p_watch = sub.add_parser("watch", help="Follow metrics live")
    p_watch.add_argument("metrics", nargs="+", help="Metric keys group/node/device/metric")
    p_watch.add_argument("--preset", default="5m", help="Realtime window (5m 15m 30m 1h)")
    p_watch.add_argument("--sse", metavar="URL",
                         help="Read live updates from an SSE endpoint instead")
    p_watch.add_argument("--duration", type=float, help="Stop after N seconds")

    # serve
    p_serve = sub.add_parser("serve", help="Run the HTTP/SSE proxy")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8080)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(name)s: %(message)s")

    commands = {
        "groups": cmd_groups,
        "history": cmd_history,
        "watch": cmd_watch,
        "serve": cmd_serve,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return

    try:
        settings = get_settings(args.env_file)
        asyncio.run(command(args, settings))
    except ScadaViewError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
