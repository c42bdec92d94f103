"""Render resolved type nodes as TypeScript declarations."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass

from riptide.descriptors import ALIAS, ENUM
from riptide.orchestrator.resolve import sanitize_path
from riptide.orchestrator.schema import (
    ListRef,
    LiteralRef,
    MapRef,
    MappedRef,
    NamedRef,
    NullableRef,
    Origin,
    PrimitiveRef,
    TupleRef,
    TypeNode,
    TypeRef,
    UnionRef,
)


# ============================================================
# Configuration
# ============================================================

GENERATED_HEADER = "// Code generated by riptide. DO NOT EDIT."

ENUM_STYLES = ("union", "enum", "const_enum", "object")
OPTIONAL_STYLES = ("default", "undefined", "null")
COMMENT_MODES = ("default", "none")


@dataclass(frozen=True)
class TypeEmitterConfig:
    """Style options for declaration rendering."""
    enum_style: str = "union"
    optional_style: str = "default"
    preserve_comments: str = "default"
    frontmatter: str = ""


_PRIMITIVE_TS = {
    "boolean": "boolean",
    "number": "number",
    "string": "string",
    "unknown": "unknown",
    "null": "null",
    "empty": "Record<string, never>",
}

_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


# ============================================================
# Text helpers
# ============================================================

def property_name(name: str) -> str:
    """Quote property names that are not valid identifiers."""
    return name if _IDENTIFIER.match(name) else json.dumps(name)


def ts_literal(value: str | int | float | bool) -> str:
    return json.dumps(value)


def jsdoc(doc: str, indent: str = "") -> list[str]:
    """Render a JSDoc block: one line when short, multi-line otherwise."""
    text = doc.strip().replace("*/", "*\\/")
    if not text:
        return []
    lines = text.splitlines()
    if len(lines) == 1:
        return [f"{indent}/** {lines[0]} */"]
    block = [f"{indent}/**"]
    for line in lines:
        block.append(f"{indent} * {line}".rstrip())
    block.append(f"{indent} */")
    return block


def file_header(frontmatter: str = "") -> list[str]:
    lines = [GENERATED_HEADER]
    if frontmatter.strip():
        lines.extend(frontmatter.rstrip().splitlines())
    lines.append("")
    return lines


def finish(lines: list[str]) -> str:
    return "\n".join(lines).rstrip() + "\n"


def field_presence(optional: bool, nullable: bool, style: str) -> tuple[bool, bool]:
    """Return (may be absent, may be null) for a field under an optional style.

    The server omits empty omittable fields and sends null for a None nullable
    field. "default" mirrors that exactly; "undefined" also lets nullable fields
    be absent and "null" also lets omittable fields be null, so neither style
    rejects a payload the server sends.
    """
    if style == "undefined" and nullable:
        return True, True
    if style == "null" and optional:
        return True, True
    return optional, nullable


def module_file_stem(module: str) -> str:
    return f"types_{sanitize_path(module) or 'root'}"


# ============================================================
# Renderer
# ============================================================

class TypeScriptRenderer:
    """Turns TypeRefs and TypeNodes into TypeScript text using resolved names."""

    def __init__(self, names: dict[Origin, str], config: TypeEmitterConfig) -> None:
        self.names = names
        self.config = config

    def ref(self, ref: TypeRef) -> str:
        if isinstance(ref, PrimitiveRef):
            return _PRIMITIVE_TS[ref.name]
        if isinstance(ref, NamedRef):
            return self.names[ref.origin]
        if isinstance(ref, MappedRef):
            return ref.ts
        if isinstance(ref, ListRef):
            item = self.ref(ref.item)
            if isinstance(ref.item, (NullableRef, UnionRef)) or (
                isinstance(ref.item, LiteralRef) and len(ref.item.values) > 1
            ):
                item = f"({item})"
            return f"{item}[]"
        if isinstance(ref, MapRef):
            return f"Record<{self.ref(ref.key)}, {self.ref(ref.value)}>"
        if isinstance(ref, NullableRef):
            return f"{self.ref(ref.inner)} | null"
        if isinstance(ref, TupleRef):
            return "[" + ", ".join(self.ref(item) for item in ref.items) + "]"
        if isinstance(ref, UnionRef):
            return " | ".join(self.ref(option) for option in ref.options)
        if isinstance(ref, LiteralRef):
            return " | ".join(ts_literal(value) for value in ref.values)
        raise TypeError(f"unknown type reference {ref!r}")

    def _doc(self, doc: str, indent: str = "") -> list[str]:
        if self.config.preserve_comments == "none":
            return []
        return jsdoc(doc, indent)

    def declaration(self, node: TypeNode) -> list[str]:
        name = self.names[node.origin]
        lines = self._doc(node.doc)
        if node.kind == ENUM:
            lines.extend(self._enum(name, node))
        elif node.kind == ALIAS:
            assert node.target is not None
            lines.append(f"export type {name} = {self.ref(node.target)};")
        else:
            lines.extend(self._interface(name, node))
        return lines

    def _interface(self, name: str, node: TypeNode) -> list[str]:
        if not node.fields:
            return [f"export interface {name} {{}}"]
        lines = [f"export interface {name} {{"]
        for field in node.fields:
            lines.extend(self._doc(field.doc, "  "))
            rendered = self.ref(field.type)
            key = property_name(field.wire_name)
            absent, nullable = field_presence(field.optional, field.nullable, self.config.optional_style)
            if nullable:
                rendered = f"{rendered} | null"
            marker = "?" if absent else ""
            lines.append(f"  {key}{marker}: {rendered};")
        lines.append("}")
        return lines

    def _enum(self, name: str, node: TypeNode) -> list[str]:
        style = self.config.enum_style
        if style == "union":
            values = " | ".join(ts_literal(variant.value) for variant in node.variants)
            return [f"export type {name} = {values};"]
        if style == "object":
            lines = [f"export const {name} = {{"]
            for variant in node.variants:
                lines.append(f"  {property_name(variant.name)}: {ts_literal(variant.value)},")
            lines.append("} as const;")
            lines.append(f"export type {name} = (typeof {name})[keyof typeof {name}];")
            return lines
        keyword = "export const enum" if style == "const_enum" else "export enum"
        lines = [f"{keyword} {name} {{"]
        for variant in node.variants:
            lines.append(f"  {property_name(variant.name)} = {ts_literal(variant.value)},")
        lines.append("}")
        return lines

    # ----- files ----------------------------------------------------------

    def render_single_file(self, nodes: list[TypeNode]) -> str:
        """All declarations in one `types.ts`, in canonical origin order."""
        lines = file_header(self.config.frontmatter)
        for node in nodes:
            lines.extend(self.declaration(node))
            lines.append("")
        return finish(lines)

    def render_module_files(self, nodes: list[TypeNode]) -> dict[str, str]:
        """One `types_<module>.ts` per origin module plus a barrel `types.ts`."""
        by_module: dict[str, list[TypeNode]] = {}
        home: dict[Origin, str] = {}
        for node in nodes:
            by_module.setdefault(node.module, []).append(node)
            home[node.origin] = module_file_stem(node.module)

        files: dict[str, str] = {}
        for module in sorted(by_module):
            stem = module_file_stem(module)
            imports: dict[str, set[str]] = {}
            for node in by_module[module]:
                for origin in node.references():
                    other = home.get(origin)
                    if other is not None and other != stem:
                        imports.setdefault(other, set()).add(self.names[origin])

            lines = file_header(self.config.frontmatter)
            for other in sorted(imports):
                lines.append(f'import type {{ {", ".join(sorted(imports[other]))} }} from "./{other}";')
            if imports:
                lines.append("")
            for node in by_module[module]:
                lines.extend(self.declaration(node))
                lines.append("")
            files[f"{stem}.ts"] = finish(lines)

        barrel = file_header(self.config.frontmatter)
        for module in sorted(by_module):
            barrel.append(f'export * from "./{module_file_stem(module)}";')
        files["types.ts"] = finish(barrel)
        return files
