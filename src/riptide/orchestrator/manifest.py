"""Manifest (`manifest.ts`) and discovery (`discovery.json`) builders."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from riptide.orchestrator.gen_ts_types import TypeEmitterConfig, TypeScriptRenderer, file_header, finish
from riptide.orchestrator.schema import MethodNode, Origin, Schema


@dataclass(frozen=True)
class ManifestEntry:
    key: str
    service: str
    method: str
    kind: str
    http_method: str
    path: str
    request: str
    response: str


def build_entries(schema: Schema, names: dict[Origin, str], config: TypeEmitterConfig) -> list[ManifestEntry]:
    """One entry per registered method, sorted by key."""
    renderer = TypeScriptRenderer(names, config)
    entries: list[ManifestEntry] = []
    seen: set[str] = set()
    for method in sorted(schema.methods, key=lambda item: item.key):
        if method.key in seen:
            raise ValueError(f"method {method.key} appears twice in the schema")
        seen.add(method.key)
        entries.append(_entry(method, renderer))
    return entries


def _entry(method: MethodNode, renderer: TypeScriptRenderer) -> ManifestEntry:
    return ManifestEntry(
        key=method.key,
        service=method.service,
        method=method.name,
        kind=method.kind,
        http_method=method.http_method,
        path=method.path,
        request=renderer.ref(method.request),
        response=renderer.ref(method.response),
    )


def render_manifest(
    schema: Schema,
    names: dict[Origin, str],
    config: TypeEmitterConfig,
    *,
    types_import: str = "./types",
) -> str:
    qualified = {origin: f"types.{name}" for origin, name in names.items()}
    entries = build_entries(schema, qualified, config)

    lines = file_header(config.frontmatter)
    lines.append(f'import type * as types from "{types_import}";')
    lines.append("")
    lines.append("export interface Manifest {")
    for entry in entries:
        lines.append(f"  {json.dumps(entry.key)}: {{")
        lines.append(f"    req: {entry.request};")
        lines.append(f"    res: {entry.response};")
        lines.append("  };")
    lines.append("}")
    lines.append("")
    lines.append("export const metadata = {")
    for entry in entries:
        lines.append(
            f"  {json.dumps(entry.key)}: {{ method: {json.dumps(entry.http_method)}, "
            f"path: {json.dumps(entry.path)}, primitive: {json.dumps(entry.kind)} }},"
        )
    lines.append("} as const;")
    lines.append("")
    lines.append("export type MethodKey = keyof Manifest;")
    lines.append("")
    lines.append("export const registry = { metadata } as const;")
    return finish(lines)


def discovery_document(schema: Schema, names: dict[Origin, str], config: TypeEmitterConfig) -> dict[str, Any]:
    entries = build_entries(schema, names, config)
    services: dict[str, list[str]] = {}
    for entry in entries:
        services.setdefault(entry.service, []).append(entry.method)
    return {
        "methods": {
            entry.key: {
                "kind": entry.kind,
                "method": entry.http_method,
                "path": entry.path,
                "request": entry.request,
                "response": entry.response,
            }
            for entry in entries
        },
        "services": services,
        "types": sorted(names.values()),
    }


def render_discovery(schema: Schema, names: dict[Origin, str], config: TypeEmitterConfig) -> str:
    return json.dumps(discovery_document(schema, names, config), indent=2, sort_keys=True) + "\n"
