"""Serve an App with CherryPy."""
from __future__ import annotations

import argparse

from riptide.cli.target import load_app
from riptide.config import Settings
from riptide.routing.server import serve


def register_serve_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `serve` subcommand and its CLI arguments."""
    serve_parser = subparsers.add_parser("serve", help="Run the RPC server for an app.")
    serve_parser.add_argument("target", help="App to load, as module:attr (attr defaults to app).")
    serve_parser.add_argument("--host", help="Bind address (default: RIPTIDE_HOST).")
    serve_parser.add_argument("--port", type=int, help="Port (default: RIPTIDE_PORT).")
    serve_parser.add_argument("--devtools", action="store_true", help="Register the Devtools service.")
    serve_parser.add_argument(
        "--mask-internal-errors",
        action="store_true",
        help="Replace internal error messages with a generic one.",
    )


def run_serve_command(args: argparse.Namespace) -> int:
    """Load the app and block serving it."""
    settings = Settings()
    updates: dict[str, object] = {}
    if args.host:
        updates["host"] = args.host
    if args.port is not None:
        updates["port"] = args.port
    if args.mask_internal_errors:
        updates["mask_internal_errors"] = True
    if updates:
        settings = settings.model_copy(update=updates)

    app = load_app(args.target)
    print(f"[riptide] serving {args.target} on http://{settings.host}:{settings.port}", flush=True)
    serve(app, settings, devtools=args.devtools)
    return 0
