"""Assign every discovered type a unique, stable emitted name."""
from __future__ import annotations

import re
from typing import Iterable

from riptide.errors import CollisionError
from riptide.orchestrator.schema import Origin, TypeNode

# TypeScript reserved words and strict-mode identifiers that cannot name a type.
TS_RESERVED = frozenset({
    "any", "as", "await", "boolean", "break", "case", "catch", "class", "const",
    "continue", "debugger", "declare", "default", "delete", "do", "else", "enum",
    "export", "extends", "false", "finally", "for", "from", "function", "get",
    "if", "implements", "import", "in", "infer", "instanceof", "interface",
    "is", "keyof", "let", "module", "namespace", "never", "new", "null",
    "number", "object", "package", "private", "protected", "public",
    "readonly", "require", "return", "set", "static", "string", "super",
    "switch", "symbol", "this", "throw", "true", "try", "type", "typeof",
    "undefined", "unique", "unknown", "var", "void", "while", "with", "yield",
})

_NON_ALNUM = re.compile(r"[^0-9A-Za-z]+")


def sanitize_path(path: str) -> str:
    """Replace every non-alphanumeric run with `_` and trim the ends."""
    return _NON_ALNUM.sub("_", path).strip("_")


def escape_reserved(name: str) -> str:
    return f"{name}_" if name in TS_RESERVED else name


def candidate_name(module: str, name: str, strip_prefix: str = "") -> str:
    """Emitted name for (module, declared name) under a strip prefix."""
    # "." and "/" both separate segments in modules and prefixes
    prefix = strip_prefix.strip().replace("/", ".").strip(".")
    dotted = module.replace("/", ".")
    if prefix and dotted == prefix:
        candidate = name
    elif prefix and dotted.startswith(prefix + "."):
        candidate = f"{sanitize_path(dotted[len(prefix) + 1:])}_{name}"
    else:
        qualifier = sanitize_path(module)
        candidate = f"{qualifier}_{name}" if qualifier else name
    return escape_reserved(candidate)


def resolve_names(nodes: Iterable[TypeNode], strip_prefix: str = "") -> dict[Origin, str]:
    """Map origin -> emitted name; two origins sharing a name is a CollisionError."""
    resolved: dict[Origin, str] = {}
    owners: dict[str, TypeNode] = {}
    for node in sorted(nodes, key=lambda item: item.origin):
        candidate = candidate_name(node.module, node.name, strip_prefix)
        first = owners.get(candidate)
        if first is not None:
            raise CollisionError(candidate, first.origin_label, node.origin_label)
        owners[candidate] = node
        resolved[node.origin] = candidate
    return resolved
