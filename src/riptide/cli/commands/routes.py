"""Print the method table of an App."""
from __future__ import annotations

import argparse
import json

from riptide.cli.target import load_app
from riptide.devtools import collect_status


def register_routes_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `routes` subcommand and its CLI arguments."""
    routes_parser = subparsers.add_parser("routes", help="List registered methods.")
    routes_parser.add_argument("target", help="App to load, as module:attr (attr defaults to app).")
    routes_parser.add_argument("--json", action="store_true", help="Print the table as JSON.")


def run_routes_command(args: argparse.Namespace) -> int:
    app = load_app(args.target)
    status = collect_status(app)

    if args.json:
        rows = [
            {"key": f"{svc.name}.{m.name}", "kind": m.kind, "method": m.http_method, "path": m.path}
            for svc in status.services
            for m in svc.methods
        ]
        print(json.dumps(rows, indent=2))
        return 0

    for svc in status.services:
        print(svc.name)
        for m in svc.methods:
            print(f"  {m.http_method:<5} {m.path:<40} {m.kind}")
    return 0
