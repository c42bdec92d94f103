"""Intermediate representation shared by the extractor, resolver and emitters."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Union

Origin = tuple[str, str]


# ============================================================
# Type references
# ============================================================

@dataclass(frozen=True)
class PrimitiveRef:
    """boolean / number / string / unknown / null / empty, with an optional format hint."""
    name: str
    format: str = ""


@dataclass(frozen=True)
class NamedRef:
    origin: Origin


@dataclass(frozen=True)
class MappedRef:
    """A host type rendered verbatim through `type_mappings`."""
    ts: str


@dataclass(frozen=True)
class ListRef:
    item: "TypeRef"


@dataclass(frozen=True)
class MapRef:
    key: "TypeRef"
    value: "TypeRef"


@dataclass(frozen=True)
class NullableRef:
    inner: "TypeRef"


@dataclass(frozen=True)
class TupleRef:
    items: tuple["TypeRef", ...]


@dataclass(frozen=True)
class UnionRef:
    options: tuple["TypeRef", ...]


@dataclass(frozen=True)
class LiteralRef:
    values: tuple[str | int | float | bool, ...]


TypeRef = Union[PrimitiveRef, NamedRef, MappedRef, ListRef, MapRef, NullableRef, TupleRef, UnionRef, LiteralRef]

EMPTY = PrimitiveRef("empty")


def walk_refs(ref: TypeRef) -> Iterator[TypeRef]:
    """Yield ref and every reference nested inside it."""
    yield ref
    if isinstance(ref, ListRef):
        yield from walk_refs(ref.item)
    elif isinstance(ref, MapRef):
        yield from walk_refs(ref.key)
        yield from walk_refs(ref.value)
    elif isinstance(ref, NullableRef):
        yield from walk_refs(ref.inner)
    elif isinstance(ref, (TupleRef, UnionRef)):
        for child in ref.items if isinstance(ref, TupleRef) else ref.options:
            yield from walk_refs(child)


# ============================================================
# Nodes
# ============================================================

@dataclass(frozen=True)
class FieldNode:
    attr: str
    wire_name: str
    type: TypeRef
    optional: bool = False
    nullable: bool = False
    validate: str = ""
    doc: str = ""


@dataclass(frozen=True)
class VariantNode:
    name: str
    value: str | int | float


@dataclass(frozen=True)
class TypeNode:
    """A discovered named type; identity is its origin (module, declared key)."""
    kind: str
    module: str
    key: str
    name: str
    fields: tuple[FieldNode, ...] = ()
    variants: tuple[VariantNode, ...] = ()
    target: TypeRef | None = None
    doc: str = ""
    found_at: str = ""

    @property
    def origin(self) -> Origin:
        return (self.module, self.key)

    @property
    def origin_label(self) -> str:
        return f"{self.module}.{self.key}"

    def references(self) -> set[Origin]:
        """Origins of every named type this declaration points at."""
        refs: list[TypeRef] = [f.type for f in self.fields]
        if self.target is not None:
            refs.append(self.target)
        found: set[Origin] = set()
        for ref in refs:
            for child in walk_refs(ref):
                if isinstance(child, NamedRef):
                    found.add(child.origin)
        return found


@dataclass(frozen=True)
class MethodNode:
    key: str
    service: str
    name: str
    kind: str
    http_method: str
    path: str
    request: TypeRef
    response: TypeRef


@dataclass
class Schema:
    nodes: dict[Origin, TypeNode] = field(default_factory=dict)
    methods: list[MethodNode] = field(default_factory=list)

    def sorted_nodes(self) -> list[TypeNode]:
        return [self.nodes[origin] for origin in sorted(self.nodes)]
