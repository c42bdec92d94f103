#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys

from riptide.cli.commands.gen import register_gen_command, run_gen_command
from riptide.cli.commands.health import register_health_command, run_health_command
from riptide.cli.commands.routes import register_routes_command, run_routes_command
from riptide.cli.commands.serve import register_serve_command, run_serve_command

_COMMANDS = {
    "gen": run_gen_command,
    "serve": run_serve_command,
    "routes": run_routes_command,
    "health": run_health_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="riptide", description="Typed RPC services and TypeScript client generation.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_gen_command(subparsers)
    register_serve_command(subparsers)
    register_routes_command(subparsers)
    register_health_command(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(name)s] %(levelname)s %(message)s",
    )

    run = _COMMANDS.get(args.command)
    if run is None:
        parser.print_help()
        return 1
    try:
        return run(args)
    except Exception as exc:
        print(f"riptide: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
