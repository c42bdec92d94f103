"""Runtime-validation flavors: zod and zod/mini schema files."""
from __future__ import annotations

import json
from dataclasses import dataclass

from riptide.descriptors import ALIAS, ENUM
from riptide.orchestrator.gen_ts_types import (
    TypeScriptRenderer,
    field_presence,
    file_header,
    finish,
    jsdoc,
    property_name,
)
from riptide.orchestrator.schema import (
    FieldNode,
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

FLAVORS = ("zod", "zod-mini")

SUPPORTED = "supported"
SKIPPED = "skipped"
UNSUPPORTED = "unsupported"


# ============================================================
# Validate rules
# ============================================================

@dataclass(frozen=True)
class ValidateRule:
    """One rule of a validate string: `min=8` -> ValidateRule("min", "8")."""
    name: str
    param: str = ""


def parse_validate(tag: str) -> list[ValidateRule]:
    rules: list[ValidateRule] = []
    for part in tag.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, param = part.partition("=")
        rules.append(ValidateRule(name.strip(), param.strip() if sep else ""))
    return rules


_SKIPPED_RULES = frozenset({
    "omitempty", "omitzero", "omitnil", "dive", "keys", "endkeys", "unique",
    "required_with", "required_without", "required_if", "excluded_if", "excluded_unless",
    "eqfield", "nefield", "gtfield", "gtefield", "ltfield", "ltefield",
    "eqcsfield", "necsfield", "gtcsfield", "gtecsfield", "ltcsfield", "ltecsfield",
})

_HOSTNAME = r"/^([a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*[a-zA-Z]{2,}$/"
_JSON_CHECK = "(v) => { try { JSON.parse(v); return true; } catch { return false; } }"

_REGEX_RULES = {
    "alphanum": r"/^[a-zA-Z0-9]+$/",
    "alpha": r"/^[a-zA-Z]+$/",
    "numeric": r"/^[0-9]+$/",
    "lowercase": r"/^[a-z]+$/",
    "uppercase": r"/^[A-Z]+$/",
    "base64": r"/^[A-Za-z0-9+/]*={0,2}$/",
    "base64url": r"/^[A-Za-z0-9_-]*={0,2}$/",
    "hostname": _HOSTNAME,
    "fqdn": _HOSTNAME,
    "mac": r"/^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$/",
    "semver": r"/^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?(\+[a-zA-Z0-9.]+)?$/",
    "e164": r"/^\+[1-9]\d{1,14}$/",
    "isbn": r"/^(?:\d[- ]*){9}[\dXx]$/",
    "isbn10": r"/^(?:\d[- ]*){9}[\dXx]$/",
    "isbn13": r"/^(?:\d[- ]*){13}$/",
}

_ZOD_FIXED = {
    "email": ".email()",
    "url": ".url()",
    "uri": ".url()",
    "uuid": ".uuid()",
    "uuid4": ".uuid()",
    "datetime": ".datetime()",
    "ip": ".ip()",
    "ip4": '.ip({ version: "v4" })',
    "ipv4": '.ip({ version: "v4" })',
    "ip6": '.ip({ version: "v6" })',
    "ipv6": '.ip({ version: "v6" })',
    "json": f".refine({_JSON_CHECK}, {{ message: 'Invalid JSON' }})",
    "boolean": ".refine((v) => ['true', 'false', '1', '0'].includes(v.toLowerCase()), "
               "{ message: 'Must be a boolean string' })",
    "latitude": ".refine((v) => { const n = parseFloat(v); return !isNaN(n) && n >= -90 && n <= 90; }, "
                "{ message: 'Invalid latitude' })",
    "longitude": ".refine((v) => { const n = parseFloat(v); return !isNaN(n) && n >= -180 && n <= 180; }, "
                 "{ message: 'Invalid longitude' })",
}
_ZOD_PARAM = {
    "min": ".min({})",
    "max": ".max({})",
    "len": ".length({})",
    "gt": ".gt({})",
    "gte": ".gte({})",
    "lt": ".lt({})",
    "lte": ".lte({})",
}

_MINI_FIXED = {
    "email": "z.email()",
    "url": "z.url()",
    "uri": "z.url()",
    "uuid": "z.uuid()",
    "uuid4": "z.uuid()",
    "datetime": "z.iso.datetime()",
    "ip": "z.ip()",
    "ip4": "z.ipv4()",
    "ipv4": "z.ipv4()",
    "ip6": "z.ipv6()",
    "ipv6": "z.ipv6()",
    "json": f"z.refine({_JSON_CHECK})",
}
_MINI_PARAM = {
    "len": "z.length({})",
    "gt": "z.gt({})",
    "gte": "z.gte({})",
    "lt": "z.lt({})",
    "lte": "z.lte({})",
}
_MINI_SKIPPED = frozenset({"boolean", "latitude", "longitude"})

STRING_KIND = "string"
ARRAY_KIND = "array"
NUMBER_KIND = "number"


def _comparison(rule: ValidateRule, is_string: bool, operator: str) -> str:
    value = json.dumps(rule.param) if is_string else rule.param
    return f"refine(v => v {operator} {value})"


def zod_method(rule: ValidateRule, is_string: bool) -> tuple[str, str]:
    """Method-chain fragment for classic zod, plus its support level."""
    if rule.name == "required":
        return (".min(1)" if is_string else ""), SUPPORTED
    if rule.name in _ZOD_FIXED:
        return _ZOD_FIXED[rule.name], SUPPORTED
    if rule.name in _REGEX_RULES:
        return f".regex({_REGEX_RULES[rule.name]})", SUPPORTED
    if rule.name in _SKIPPED_RULES:
        return "", SKIPPED
    if not rule.param:
        return "", UNSUPPORTED
    if rule.name in _ZOD_PARAM:
        return _ZOD_PARAM[rule.name].format(rule.param), SUPPORTED
    if rule.name == "eq":
        return "." + _comparison(rule, is_string, "==="), SUPPORTED
    if rule.name == "ne":
        return "." + _comparison(rule, is_string, "!=="), SUPPORTED
    if rule.name in ("contains", "startswith", "endswith"):
        method = {"contains": "includes", "startswith": "startsWith", "endswith": "endsWith"}[rule.name]
        return f".{method}({json.dumps(rule.param)})", SUPPORTED
    return "", UNSUPPORTED


def zod_mini_check(rule: ValidateRule, kind: str) -> tuple[str, str]:
    """Check-function fragment for zod/mini, plus its support level."""
    if rule.name == "required":
        return ("z.minLength(1)" if kind == STRING_KIND else ""), SUPPORTED
    if rule.name in _MINI_FIXED:
        return _MINI_FIXED[rule.name], SUPPORTED
    if rule.name in _REGEX_RULES:
        return f"z.regex({_REGEX_RULES[rule.name]})", SUPPORTED
    if rule.name in _SKIPPED_RULES or rule.name in _MINI_SKIPPED:
        return "", SKIPPED
    if not rule.param:
        return "", UNSUPPORTED
    if rule.name in ("min", "max"):
        sized = kind in (STRING_KIND, ARRAY_KIND)
        if rule.name == "min":
            return (f"z.minLength({rule.param})" if sized else f"z.gte({rule.param})"), SUPPORTED
        return (f"z.maxLength({rule.param})" if sized else f"z.lte({rule.param})"), SUPPORTED
    if rule.name in _MINI_PARAM:
        return _MINI_PARAM[rule.name].format(rule.param), SUPPORTED
    if rule.name == "eq":
        return "z." + _comparison(rule, kind == STRING_KIND, "==="), SUPPORTED
    if rule.name == "ne":
        return "z." + _comparison(rule, kind == STRING_KIND, "!=="), SUPPORTED
    if rule.name in ("contains", "startswith", "endswith"):
        method = {"contains": "includes", "startswith": "startsWith", "endswith": "endsWith"}[rule.name]
        return f"z.{method}({json.dumps(rule.param)})", SUPPORTED
    return "", UNSUPPORTED


def oneof_values(rules: list[ValidateRule]) -> list[str]:
    for rule in rules:
        if rule.name == "oneof" and rule.param:
            return rule.param.split()
    return []


# ============================================================
# Schema file renderer
# ============================================================

class ZodFlavor:
    """Renders `schemas.zod.ts` (or `schemas.zod-mini.ts` when mini=True)."""

    def __init__(
        self,
        renderer: TypeScriptRenderer,
        *,
        mini: bool = False,
        emit_types: bool = True,
    ) -> None:
        self.renderer = renderer
        self.mini = mini
        self.emit_types = emit_types
        self.warnings: list[str] = []
        self._declared: set[Origin] = set()

    @property
    def name(self) -> str:
        return "zod-mini" if self.mini else "zod"

    @property
    def filename(self) -> str:
        return f"schemas.{self.name}.ts"

    @property
    def import_line(self) -> str:
        return "import * as z from 'zod/mini';" if self.mini else "import { z } from 'zod';"

    def schema_name(self, origin: Origin) -> str:
        return f"{self.renderer.names[origin]}Schema"

    # ----- expressions ----------------------------------------------------

    def _nullable(self, expr: str) -> str:
        return f"z.nullable({expr})" if self.mini else f"{expr}.nullable()"

    def _optional(self, expr: str) -> str:
        return f"z.optional({expr})" if self.mini else f"{expr}.optional()"

    def _nullish(self, expr: str) -> str:
        return f"z.nullish({expr})" if self.mini else f"{expr}.nullish()"

    def _literals(self, values: tuple[str | int | float | bool, ...]) -> str:
        if values and all(isinstance(value, str) for value in values):
            return "z.enum([" + ", ".join(json.dumps(value) for value in values) + "])"
        literals = [f"z.literal({json.dumps(value)})" for value in values]
        if len(literals) == 1:
            return literals[0]
        return "z.union([" + ", ".join(literals) + "])"

    def expr(self, ref: TypeRef) -> str:
        if isinstance(ref, PrimitiveRef):
            if ref.name == "number" and ref.format == "int":
                return "z.int()" if self.mini else "z.number().int()"
            if ref.name == "empty":
                return "z.object({})"
            return f"z.{ref.name}()"
        if isinstance(ref, NamedRef):
            name = self.schema_name(ref.origin)
            if ref.origin in self._declared:
                return name
            return f"z.lazy(() => {name})"
        if isinstance(ref, MappedRef):
            self.warnings.append(f"{self.name}: mapped type {ref.ts!r} has no schema; using z.unknown()")
            return "z.unknown()"
        if isinstance(ref, ListRef):
            return f"z.array({self.expr(ref.item)})"
        if isinstance(ref, MapRef):
            return f"z.record(z.string(), {self.expr(ref.value)})"
        if isinstance(ref, NullableRef):
            return self._nullable(self.expr(ref.inner))
        if isinstance(ref, TupleRef):
            return "z.tuple([" + ", ".join(self.expr(item) for item in ref.items) + "])"
        if isinstance(ref, UnionRef):
            return "z.union([" + ", ".join(self.expr(option) for option in ref.options) + "])"
        if isinstance(ref, LiteralRef):
            return self._literals(ref.values)
        raise TypeError(f"unknown type reference {ref!r}")

    def _field_expr(self, owner: str, field: FieldNode) -> str:
        rules = parse_validate(field.validate)
        is_string = isinstance(field.type, PrimitiveRef) and field.type.name == "string"
        expr = self.expr(field.type)

        allowed = oneof_values(rules)
        if allowed and is_string:
            expr = "z.enum([" + ", ".join(json.dumps(value) for value in allowed) + "])"

        if self.mini:
            kind = STRING_KIND if is_string else (ARRAY_KIND if isinstance(field.type, ListRef) else NUMBER_KIND)
            checks: list[str] = []
            for rule in rules:
                if rule.name == "oneof":
                    continue
                fragment, support = zod_mini_check(rule, kind)
                self._note(owner, field, rule, support)
                if fragment:
                    checks.append(fragment)
            if checks:
                expr = f"{expr}.check({', '.join(checks)})"
        else:
            for rule in rules:
                if rule.name == "oneof":
                    continue
                fragment, support = zod_method(rule, is_string)
                self._note(owner, field, rule, support)
                expr += fragment

        absent, nullable = field_presence(field.optional, field.nullable, self.renderer.config.optional_style)
        if absent and nullable:
            expr = self._nullish(expr)
        elif nullable:
            expr = self._nullable(expr)
        elif absent:
            expr = self._optional(expr)
        return expr

    def _note(self, owner: str, field: FieldNode, rule: ValidateRule, support: str) -> None:
        if support == UNSUPPORTED:
            self.warnings.append(
                f"{self.name}: {owner}.{field.wire_name}: validate rule {rule.name!r} has no equivalent; skipped"
            )

    # ----- declarations ---------------------------------------------------

    def declaration(self, node: TypeNode) -> list[str]:
        name = self.renderer.names[node.origin]
        schema = self.schema_name(node.origin)
        lines: list[str] = []
        if self.renderer.config.preserve_comments != "none":
            lines.extend(jsdoc(node.doc))

        if node.kind == ENUM:
            lines.append(f"export const {schema} = {self._literals(tuple(v.value for v in node.variants))};")
        elif node.kind == ALIAS:
            assert node.target is not None
            lines.append(f"export const {schema} = {self.expr(node.target)};")
        elif not node.fields:
            lines.append(f"export const {schema} = z.object({{}});")
        else:
            lines.append(f"export const {schema} = z.object({{")
            for field in node.fields:
                lines.append(f"  {property_name(field.wire_name)}: {self._field_expr(name, field)},")
            lines.append("});")

        self._declared.add(node.origin)
        if not self.emit_types:
            lines.append(f"export type {name} = z.infer<typeof {schema}>;")
        return lines

    def render(self, nodes: list[TypeNode]) -> str:
        self._declared = set()
        lines = file_header(self.renderer.config.frontmatter)
        lines.append(self.import_line)
        lines.append("")
        for node in nodes:
            lines.extend(self.declaration(node))
            lines.append("")
        return finish(lines)
