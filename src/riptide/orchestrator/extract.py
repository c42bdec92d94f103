"""Walk registered methods and collect every reachable named type."""
from __future__ import annotations

import collections.abc
import datetime as dt
import logging
import types
import typing
import uuid
from collections import deque
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, ForwardRef, Literal, TypeVar, Union, get_args, get_origin

from riptide.descriptors import (
    ALIAS,
    TypeDescription,
    is_alias,
    is_composite,
    is_enum,
    is_struct,
    split_optional,
    strip_annotated,
    type_label,
)
from riptide.errors import ExtractionError
from riptide.orchestrator.schema import (
    EMPTY,
    FieldNode,
    ListRef,
    LiteralRef,
    MapRef,
    MappedRef,
    MethodNode,
    NamedRef,
    NullableRef,
    Origin,
    PrimitiveRef,
    Schema,
    TupleRef,
    TypeNode,
    TypeRef,
    UnionRef,
    VariantNode,
)

if TYPE_CHECKING:
    from riptide.registry import App

logger = logging.getLogger(__name__)


_PRIMITIVES: dict[Any, PrimitiveRef] = {
    bool: PrimitiveRef("boolean"),
    int: PrimitiveRef("number", "int"),
    float: PrimitiveRef("number"),
    str: PrimitiveRef("string"),
    bytes: PrimitiveRef("string", "bytes"),
    bytearray: PrimitiveRef("string", "bytes"),
    dt.datetime: PrimitiveRef("string", "datetime"),
    dt.date: PrimitiveRef("string", "date"),
    dt.time: PrimitiveRef("string", "time"),
    dt.timedelta: PrimitiveRef("number", "duration"),
    uuid.UUID: PrimitiveRef("string", "uuid"),
    Decimal: PrimitiveRef("string", "decimal"),
}

_SEQUENCE_ORIGINS = frozenset({
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Collection,
})
_MAP_ORIGINS = frozenset({dict, collections.abc.Mapping, collections.abc.MutableMapping})
_ITERATOR_ORIGINS = frozenset({
    collections.abc.Iterator,
    collections.abc.Iterable,
    collections.abc.Generator,
    collections.abc.AsyncIterator,
    collections.abc.AsyncIterable,
    collections.abc.AsyncGenerator,
    collections.abc.Awaitable,
    collections.abc.Coroutine,
})
_CONCURRENCY_MODULES = frozenset({"threading", "_thread", "queue", "asyncio", "multiprocessing", "concurrent"})


def _is_union(tp: Any) -> bool:
    origin = get_origin(tp)
    return origin is Union or origin is types.UnionType


def mapping_key(tp: Any) -> str:
    """Key used by `type_mappings` for a named host type."""
    return f"{getattr(tp, '__module__', '')}.{getattr(tp, '__qualname__', getattr(tp, '__name__', ''))}"


class Extractor:
    """Breadth-first traversal over request/response types with a visited set."""

    def __init__(self, app: "App", *, type_mappings: dict[str, str] | None = None) -> None:
        self.app = app
        self.type_mappings = dict(type_mappings or {})
        self._visited: set[Origin] = set()
        self._queue: deque[tuple[TypeDescription, str]] = deque()
        self._nodes: dict[Origin, TypeNode] = {}

    def extract(self) -> Schema:
        methods: list[MethodNode] = []
        for method in self.app.methods():
            request = EMPTY if method.request is None else self.ref_for(method.request, f"{method.key}.request")
            response = EMPTY if method.response is None else self.ref_for(method.response, f"{method.key}.response")
            methods.append(
                MethodNode(
                    key=method.key,
                    service=method.service,
                    name=method.name,
                    kind=method.kind.value,
                    http_method=method.http_method,
                    path=method.path,
                    request=request,
                    response=response,
                )
            )
        while self._queue:
            description, path = self._queue.popleft()
            self._nodes[description.origin] = self._expand(description, path)
        logger.debug("extracted %d types from %d methods", len(self._nodes), len(methods))
        return Schema(nodes=self._nodes, methods=methods)

    # ----- references -----------------------------------------------------

    def ref_for(self, annotation: Any, path: str) -> TypeRef:
        tp, _ = strip_annotated(annotation)

        mapped = self.type_mappings.get(mapping_key(tp)) if (isinstance(tp, type) or is_alias(tp)) else None
        if mapped:
            return MappedRef(mapped)
        if tp is Any or tp is object:
            return PrimitiveRef("unknown")
        if tp is None or tp is type(None):
            return PrimitiveRef("null")
        if isinstance(tp, TypeVar):
            raise ExtractionError(f"unresolved type variable {tp.__name__}", field_path=path)
        if isinstance(tp, (str, ForwardRef)):
            raise ExtractionError(f"unresolved forward reference {tp!r}", field_path=path)
        if is_alias(tp):
            return self._named(tp, path)

        origin = get_origin(tp)
        args = get_args(tp)
        if origin is Literal:
            return self._literal(args, path)
        if _is_union(tp):
            inner, nullable = split_optional(tp)
            if nullable:
                return NullableRef(self.ref_for(inner, path))
            return UnionRef(tuple(self.ref_for(arg, path) for arg in args))
        if origin in _MAP_ORIGINS:
            key_type = args[0] if args else str
            value_type = args[1] if len(args) == 2 else Any
            return MapRef(self._map_key(key_type, path), self.ref_for(value_type, f"{path}[value]"))
        if origin is tuple:
            if not args or (len(args) == 2 and args[1] is Ellipsis):
                return ListRef(self.ref_for(args[0] if args else Any, f"{path}[]"))
            return TupleRef(tuple(self.ref_for(arg, f"{path}[{index}]") for index, arg in enumerate(args)))
        if origin in _SEQUENCE_ORIGINS:
            return ListRef(self.ref_for(args[0] if args else Any, f"{path}[]"))
        if origin is collections.abc.Callable:
            raise ExtractionError("functions cannot be serialized", field_path=path)
        if origin in _ITERATOR_ORIGINS:
            raise ExtractionError("iterators and coroutines cannot be serialized", field_path=path)
        if origin is not None:
            if is_struct(tp):
                return self._named(tp, path)
            raise ExtractionError(f"unsupported generic type {type_label(tp)}", field_path=path)

        if tp in _PRIMITIVES:
            return _PRIMITIVES[tp]
        if tp in (list, set, frozenset, tuple):
            return ListRef(PrimitiveRef("unknown"))
        if tp is dict:
            return MapRef(PrimitiveRef("string"), PrimitiveRef("unknown"))
        if is_composite(tp):
            return self._named(tp, path)
        return self._unsupported(tp, path)

    def _unsupported(self, tp: Any, path: str) -> TypeRef:
        if tp is complex:
            raise ExtractionError("complex numbers cannot be serialized", field_path=path)
        module = getattr(tp, "__module__", "") or ""
        if module.split(".")[0] in _CONCURRENCY_MODULES:
            raise ExtractionError(f"{type_label(tp)} is a concurrency primitive and cannot be serialized", field_path=path)
        if tp in (types.FunctionType, types.MethodType, types.BuiltinFunctionType, collections.abc.Callable):
            raise ExtractionError("functions cannot be serialized", field_path=path)
        if tp in (types.GeneratorType, types.CoroutineType):
            raise ExtractionError("iterators and coroutines cannot be serialized", field_path=path)
        if isinstance(tp, type):
            raise ExtractionError(
                f"opaque type {type_label(tp, qualified=True)} has no serializable fields "
                "(use a dataclass, pydantic model, TypedDict or Enum)",
                field_path=path,
            )
        raise ExtractionError(f"unsupported annotation {tp!r}", field_path=path)

    def _literal(self, values: tuple[Any, ...], path: str) -> LiteralRef:
        collected: list[str | int | float | bool] = []
        for value in values:
            if isinstance(value, Enum):
                value = value.value
            if not isinstance(value, (str, int, float, bool)):
                raise ExtractionError(f"unsupported literal value {value!r}", field_path=path)
            collected.append(value)
        return LiteralRef(tuple(collected))

    def _map_key(self, key_type: Any, path: str) -> TypeRef:
        core, _ = strip_annotated(key_type)
        if core in (str, int) or core is Any:
            return PrimitiveRef("string")
        if is_enum(core):
            for member in core:
                if isinstance(member.value, bool) or not isinstance(member.value, (str, int)):
                    raise ExtractionError(f"map key enum {core.__qualname__} must have str or int values", field_path=path)
            return PrimitiveRef("string")
        raise ExtractionError(f"map keys must be str, int or an enum, got {type_label(core)}", field_path=path)

    def _named(self, tp: Any, path: str) -> NamedRef:
        try:
            description = self.app.describe(tp)
        except ExtractionError as exc:
            if exc.field_path:
                raise
            raise ExtractionError(exc.reason, field_path=path) from exc
        if description.origin not in self._visited:
            self._visited.add(description.origin)
            self._queue.append((description, path))
        return NamedRef(description.origin)

    # ----- nodes ----------------------------------------------------------

    def _expand(self, description: TypeDescription, path: str) -> TypeNode:
        target = None
        if description.kind == ALIAS:
            target = self.ref_for(description.target, path)

        fields: list[FieldNode] = []
        for descriptor in description.fields:
            field_path = f"{path}.{descriptor.attr}"
            ref = self.ref_for(descriptor.annotation, field_path)
            if descriptor.nullable and isinstance(ref, NullableRef):
                ref = ref.inner
            fields.append(
                FieldNode(
                    attr=descriptor.attr,
                    wire_name=descriptor.wire_name,
                    type=ref,
                    optional=descriptor.optional,
                    nullable=descriptor.nullable,
                    validate=descriptor.validate,
                    doc=descriptor.doc,
                )
            )

        return TypeNode(
            kind=description.kind,
            module=description.module,
            key=description.key,
            name=description.name,
            fields=tuple(fields),
            variants=tuple(VariantNode(variant.name, variant.value) for variant in description.variants),
            target=target,
            doc=description.doc,
            found_at=path,
        )


def extract_schema(app: "App", *, type_mappings: dict[str, str] | None = None) -> Schema:
    return Extractor(app, type_mappings=type_mappings).extract()
