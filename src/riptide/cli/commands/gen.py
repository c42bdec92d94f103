"""Generate TypeScript types, schemas, manifest and client for an App."""
from __future__ import annotations

import argparse
import sys

from riptide.cli.target import load_app
from riptide.config import Settings
from riptide.errors import ConfigurationError
from riptide.orchestrator.flavors import FLAVORS
from riptide.orchestrator.gen_ts_types import COMMENT_MODES, ENUM_STYLES, OPTIONAL_STYLES
from riptide.orchestrator.pipeline import GeneratorConfig, check, generate


def _parse_type_mappings(items: list[str]) -> dict[str, str]:
    mappings: dict[str, str] = {}
    for item in items:
        if "=" not in item:
            raise ConfigurationError(f"--type-map expects module.Type=TsType, got {item!r}")
        host_type, ts_type = item.split("=", 1)
        mappings[host_type.strip()] = ts_type.strip()
    return mappings


def register_gen_command(subparsers: argparse._SubParsersAction) -> None:
    """Register the `gen` subcommand and its CLI arguments."""
    gen_parser = subparsers.add_parser("gen", help="Generate the TypeScript client for an app.")
    gen_parser.add_argument("target", help="App to load, as module:attr (attr defaults to app).")
    gen_parser.add_argument("-o", "--out", help="Output directory (default: RIPTIDE_OUT_DIR).")
    gen_parser.add_argument("--strip-prefix", help="Module prefix to strip when qualifying type names.")
    gen_parser.add_argument("--enum-style", choices=ENUM_STYLES, default="union")
    gen_parser.add_argument("--optional-style", choices=OPTIONAL_STYLES, default="default")
    gen_parser.add_argument(
        "--flavor",
        action="append",
        choices=FLAVORS,
        default=[],
        help="Also emit a runtime-validation schema file (repeatable).",
    )
    gen_parser.add_argument("--no-types", action="store_true", help="Skip types.ts (requires --flavor).")
    gen_parser.add_argument("--no-client", action="store_true", help="Skip client.ts.")
    gen_parser.add_argument("--discovery", action="store_true", help="Also write discovery.json.")
    gen_parser.add_argument("--split", action="store_true", help="One types_<module>.ts per module.")
    gen_parser.add_argument("--frontmatter", default="", help="Text placed after the generated header.")
    gen_parser.add_argument(
        "--type-map",
        action="append",
        default=[],
        metavar="MODULE.TYPE=TS",
        help="Render a host type as a fixed TypeScript type (repeatable).",
    )
    gen_parser.add_argument("--comments", choices=COMMENT_MODES, default="default")
    gen_parser.add_argument(
        "--check",
        action="store_true",
        help="Do not write; exit 1 if generated files are missing or stale.",
    )


def run_gen_command(args: argparse.Namespace) -> int:
    """Load the app, then generate (or check) its client files."""
    settings = Settings()
    config = GeneratorConfig(
        out_dir=args.out or settings.out_dir,
        strip_prefix=settings.strip_prefix if args.strip_prefix is None else args.strip_prefix,
        enum_style=args.enum_style,
        optional_style=args.optional_style,
        flavors=tuple(args.flavor),
        emit_types=not args.no_types,
        emit_client=not args.no_client,
        emit_discovery=args.discovery,
        single_file=not args.split,
        frontmatter=args.frontmatter,
        type_mappings=_parse_type_mappings(args.type_map),
        preserve_comments=args.comments,
    )
    config.validate()
    app = load_app(args.target)

    if args.check:
        stale = check(app, config)
        if stale:
            print(f"[riptide] {len(stale)} generated file(s) out of date in {config.out_dir}:", file=sys.stderr)
            for name in stale:
                print(f"  - {name}", file=sys.stderr)
            print("[riptide] run `riptide gen` to update them.", file=sys.stderr)
            return 1
        print(f"[riptide] generated files in {config.out_dir} are up to date")
        return 0

    result = generate(app, config)
    for warning in result.warnings:
        print(f"[riptide] warning: {warning}", file=sys.stderr)
    print(
        f"[riptide] wrote {len(result.written)} files to {config.out_dir} "
        f"({result.type_count} types, {result.method_count} methods)"
    )
    return 0
