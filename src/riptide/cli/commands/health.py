"""Probe a running server through Devtools.Ping (container healthcheck)."""
from __future__ import annotations

import argparse

from riptide.client import Client
from riptide.config import Settings


def register_health_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `health` subcommand and its CLI arguments."""
    health_parser = subparsers.add_parser("health", help="Exit 0 when the server answers Devtools.Ping.")
    health_parser.add_argument("--url", help="Base URL (default: built from RIPTIDE_HOST/RIPTIDE_PORT).")
    health_parser.add_argument("--timeout", type=float, default=2.0)


def run_health_command(args: argparse.Namespace) -> int:
    base_url = args.url or Settings().base_url
    result = Client(base_url, timeout=args.timeout).query("Devtools.Ping")
    if isinstance(result, dict) and result.get("ok") is True:
        print(f"[riptide] {base_url} is healthy")
        return 0
    print(f"[riptide] {base_url} answered without ok=true")
    return 1
