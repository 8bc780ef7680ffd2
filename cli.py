from __future__ import annotations

import argparse
import json
import sys

import requests

from drd.db import configure_logging, init_db
from drd.routes import Routes
from drd.settings import parse_ports, settings
from drd.watcher import EventWatcher


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _print_routes(routes: Routes) -> None:
    _print(routes.to_dict())
    sys.stdout.flush()


def watch(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    init_db()
    watcher = EventWatcher(
        notify=_print_routes,
        fallback_ports=parse_ports(args.ports),
        ping_interval_s=args.ping_interval,
        reconnect_interval_s=args.reconnect_interval,
    )
    try:
        watcher.run()
    except KeyboardInterrupt:
        watcher.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Docker Route Discovery CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("routes", help="Show the current routing table")

    s_route = sub.add_parser("route", help="Show the route for one host")
    s_route.add_argument("host")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_watch = sub.add_parser("watch", help="Watch docker locally and print every routing table")
    s_watch.add_argument("--ports", default=settings.fallback_ports, help="Fallback ports, comma-separated")
    s_watch.add_argument("--ping-interval", type=float, default=settings.ping_interval_s)
    s_watch.add_argument("--reconnect-interval", type=float, default=settings.reconnect_interval_s)
    s_watch.add_argument("--log-level", default=settings.log_level)

    args = p.parse_args(argv)

    if args.cmd == "watch":
        return watch(args)

    base = args.api.rstrip("/")

    if args.cmd == "routes":
        _print(requests.get(f"{base}/routes", timeout=10).json())
        return 0

    if args.cmd == "route":
        r = requests.get(f"{base}/routes/{args.host}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
