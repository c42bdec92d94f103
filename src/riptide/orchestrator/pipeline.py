"""Generation pipeline: extract -> resolve -> emit, rendered fully in memory before any write."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from riptide.errors import ConfigurationError
from riptide.orchestrator.extract import extract_schema
from riptide.orchestrator.flavors import FLAVORS, ZodFlavor
from riptide.orchestrator.gen_ts_client import render_client
from riptide.orchestrator.gen_ts_types import (
    COMMENT_MODES,
    ENUM_STYLES,
    OPTIONAL_STYLES,
    TypeEmitterConfig,
    TypeScriptRenderer,
)
from riptide.orchestrator.manifest import render_discovery, render_manifest
from riptide.orchestrator.resolve import resolve_names
from riptide.orchestrator.sink import FilesystemSink, Sink, stale_files

if TYPE_CHECKING:
    from riptide.registry import App

logger = logging.getLogger(__name__)


# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class GeneratorConfig:
    """Everything a generation run needs besides the App."""
    out_dir: str
    strip_prefix: str = ""
    enum_style: str = "union"
    optional_style: str = "default"
    flavors: tuple[str, ...] = ()
    emit_types: bool = True
    emit_client: bool = True
    emit_discovery: bool = False
    single_file: bool = True
    frontmatter: str = ""
    type_mappings: dict[str, str] = field(default_factory=dict)
    preserve_comments: str = "default"

    def validate(self) -> None:
        """Reject invalid option combinations before extraction starts."""
        if not str(self.out_dir).strip():
            raise ConfigurationError("out_dir is required")
        if self.enum_style not in ENUM_STYLES:
            raise ConfigurationError(f"enum_style must be one of {', '.join(ENUM_STYLES)}, got {self.enum_style!r}")
        if self.optional_style not in OPTIONAL_STYLES:
            raise ConfigurationError(
                f"optional_style must be one of {', '.join(OPTIONAL_STYLES)}, got {self.optional_style!r}"
            )
        if self.preserve_comments not in COMMENT_MODES:
            raise ConfigurationError(
                f"preserve_comments must be one of {', '.join(COMMENT_MODES)}, got {self.preserve_comments!r}"
            )
        for flavor in self.flavors:
            if flavor not in FLAVORS:
                raise ConfigurationError(f"unknown flavor {flavor!r} (expected one of {', '.join(FLAVORS)})")
        if len(set(self.flavors)) != len(self.flavors):
            raise ConfigurationError("flavors must not repeat")
        if not self.emit_types and not self.flavors:
            raise ConfigurationError("emit_types=False needs at least one flavor to supply the types")
        if any(ch.isspace() for ch in self.strip_prefix):
            raise ConfigurationError(f"strip_prefix must not contain whitespace: {self.strip_prefix!r}")
        for host_type, ts_type in self.type_mappings.items():
            if not host_type.strip() or not ts_type.strip():
                raise ConfigurationError(f"type mapping {host_type!r} -> {ts_type!r} must not be empty")

    def emitter_config(self) -> TypeEmitterConfig:
        return TypeEmitterConfig(
            enum_style=self.enum_style,
            optional_style=self.optional_style,
            preserve_comments=self.preserve_comments,
            frontmatter=self.frontmatter,
        )


@dataclass
class GenerateResult:
    files: dict[str, str]
    warnings: list[str] = field(default_factory=list)
    type_count: int = 0
    method_count: int = 0
    written: list[str] = field(default_factory=list)


# ============================================================
# Pipeline
# ============================================================

def render(app: "App", config: GeneratorConfig) -> GenerateResult:
    """Run the whole pipeline and return every output file as text."""
    config.validate()
    app.freeze()

    schema = extract_schema(app, type_mappings=config.type_mappings)
    nodes = schema.sorted_nodes()
    names = resolve_names(nodes, config.strip_prefix)
    emitter_config = config.emitter_config()
    renderer = TypeScriptRenderer(names, emitter_config)

    files: dict[str, str] = {}
    warnings: list[str] = []
    if config.emit_types:
        if config.single_file:
            files["types.ts"] = renderer.render_single_file(nodes)
        else:
            files.update(renderer.render_module_files(nodes))

    types_import = "./types"
    for flavor_name in config.flavors:
        flavor = ZodFlavor(renderer, mini=flavor_name == "zod-mini", emit_types=config.emit_types)
        files[flavor.filename] = flavor.render(nodes)
        warnings.extend(flavor.warnings)
    if not config.emit_types:
        types_import = f"./schemas.{config.flavors[0]}"

    files["manifest.ts"] = render_manifest(schema, names, emitter_config, types_import=types_import)
    if config.emit_client:
        files["client.ts"] = render_client(schema, names, emitter_config, types_import=types_import)
    if config.emit_discovery:
        files["discovery.json"] = render_discovery(schema, names, emitter_config)

    return GenerateResult(
        files=files,
        warnings=warnings,
        type_count=len(nodes),
        method_count=len(schema.methods),
    )


def generate(app: "App", config: GeneratorConfig, sink: Sink | None = None) -> GenerateResult:
    """Render everything, then hand the files to the sink (filesystem by default)."""
    result = render(app, config)
    target = sink if sink is not None else FilesystemSink(config.out_dir)
    result.written = target.write(result.files)
    for warning in result.warnings:
        logger.warning("%s", warning)
    logger.info("generated %d files (%d types, %d methods)", len(result.files), result.type_count, result.method_count)
    return result


def check(app: "App", config: GeneratorConfig) -> list[str]:
    """Files under out_dir that are missing or differ from a fresh render."""
    result = render(app, config)
    return stale_files(config.out_dir, result.files)
