"""Uniform description of host-side types: fields, wire names and enum variants.

The extractor and the runtime wire codec both read composite types through
`describe()`, so the field list, the wire-name mapping and the optional /
nullable flags are computed in exactly one place.

Supported composite kinds:
  - @dataclass classes (including generic instantiations like Page[User])
  - pydantic BaseModel subclasses
  - TypedDict classes
  - Enum subclasses with str / int / float values
  - NewType and PEP 695 `type X = ...` aliases
"""
from __future__ import annotations

import dataclasses
import re
import sys
import types
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, TypeVar, Union, get_args, get_origin, get_type_hints

import annotated_types
from pydantic import BaseModel

from riptide.errors import ExtractionError

try:
    # Python 3.12+ (PEP 695 runtime object)
    from typing import TypeAliasType  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    TypeAliasType = None  # type: ignore[assignment]


FIELD_CASES = frozenset({"preserve", "camel"})

STRUCT = "struct"
ENUM = "enum"
ALIAS = "alias"


# ============================================================
# Descriptor records
# ============================================================

@dataclass(frozen=True)
class FieldDescriptor:
    """One serializable field of a composite type."""
    attr: str
    wire_name: str
    annotation: Any
    optional: bool = False
    nullable: bool = False
    validate: str = ""
    doc: str = ""


@dataclass(frozen=True)
class EnumVariant:
    """One member of an enum type."""
    name: str
    value: str | int | float


@dataclass(frozen=True)
class TypeDescription:
    """Everything the generator and the codec need to know about a named type."""
    kind: str
    module: str
    key: str
    name: str
    fields: tuple[FieldDescriptor, ...] = ()
    variants: tuple[EnumVariant, ...] = ()
    target: Any = None
    doc: str = ""

    @property
    def origin(self) -> tuple[str, str]:
        """Stable origin identity: (module path, declared name key)."""
        return (self.module, self.key)


# ============================================================
# Naming helpers
# ============================================================

_CAMEL_SPLIT = re.compile(r"_+([a-zA-Z0-9])")


def to_camel_case(name: str) -> str:
    """Convert snake_case to camelCase, keeping leading underscores out."""
    stripped = name.strip("_")
    if not stripped:
        return name
    head, *rest = stripped.split("_", 1)
    if not rest:
        return head
    return head + _CAMEL_SPLIT.sub(lambda match: match.group(1).upper(), "_" + rest[0])


def wire_name_for(attr: str, override: str | None, field_case: str) -> str:
    """Return the on-the-wire key for a declared attribute name."""
    if override:
        return override
    if field_case == "camel":
        return to_camel_case(attr)
    return attr


def sanitize_type_name(name: str) -> str:
    """Make a generic instantiation label usable as an identifier (Page[User] -> Page_User)."""
    result = name.replace(".", "_").replace("/", "_")
    result = result.replace("[", "_").replace("]", "").replace(",", "_").replace(" ", "")
    result = result.replace("*", "Ptr").replace("|", "_or_")
    return re.sub(r"_+", "_", result).strip("_")


def type_label(tp: Any, *, qualified: bool = False) -> str:
    """Readable label for a type, used for synthetic names and error messages."""
    if tp is type(None) or tp is None:
        return "None"
    origin = get_origin(tp)
    if origin is not None:
        base = origin.__name__ if hasattr(origin, "__name__") else str(origin)
        if origin is Union or origin is types.UnionType:
            base = "Union"
        inner = ", ".join(type_label(arg, qualified=qualified) for arg in get_args(tp))
        return f"{base}[{inner}]"
    if isinstance(tp, type):
        if qualified and tp.__module__ != "builtins":
            return f"{tp.__module__}.{tp.__qualname__}"
        return tp.__qualname__ if qualified else tp.__name__
    return getattr(tp, "__name__", repr(tp))


# ============================================================
# Annotation helpers
# ============================================================

def unwrap_aliases(tp: Any) -> Any:
    """Resolve alias wrappers (TypeAliasType/NewType) to their base type."""
    # unwrap PEP 695 alias: `type NoteId = int`
    if TypeAliasType is not None and isinstance(tp, TypeAliasType):  # type: ignore[arg-type]
        return unwrap_aliases(tp.__value__)  # type: ignore[attr-defined]
    # unwrap NewType("X", int)
    if hasattr(tp, "__supertype__"):
        return unwrap_aliases(tp.__supertype__)
    return tp


def strip_annotated(tp: Any) -> tuple[Any, list[Any]]:
    """Split Annotated[T, ...] into (T, metadata)."""
    metadata: list[Any] = []
    while get_origin(tp) is Annotated:
        base, *meta = get_args(tp)
        metadata.extend(meta)
        tp = base
    return tp, metadata


def split_optional(tp: Any) -> tuple[Any, bool]:
    """Return (inner type, nullable) for Optional[T] / T | None."""
    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = get_args(tp)
        if type(None) in args:
            rest = tuple(arg for arg in args if arg is not type(None))
            if len(rest) == 1:
                return rest[0], True
            return Union[rest], True  # type: ignore[return-value]
    return tp, False


def is_alias(tp: Any) -> bool:
    """True for NewType objects and PEP 695 aliases."""
    if TypeAliasType is not None and isinstance(tp, TypeAliasType):  # type: ignore[arg-type]
        return True
    return isinstance(tp, typing.NewType)


def is_pydantic_model(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, BaseModel) and tp is not BaseModel


def is_struct(tp: Any) -> bool:
    """True when tp (or its generic origin) implements the field contract."""
    target = get_origin(tp) or tp
    if not isinstance(target, type):
        return False
    if dataclasses.is_dataclass(target) or typing.is_typeddict(target):
        return True
    return is_pydantic_model(target)


def is_enum(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, Enum)


def is_composite(tp: Any) -> bool:
    """True for every type that becomes a named declaration."""
    return is_alias(tp) or is_enum(tp) or is_struct(tp)


_RULE_BY_CONSTRAINT: tuple[tuple[type, str, str], ...] = (
    (annotated_types.MinLen, "min_length", "min"),
    (annotated_types.MaxLen, "max_length", "max"),
    (annotated_types.Gt, "gt", "gt"),
    (annotated_types.Ge, "ge", "gte"),
    (annotated_types.Lt, "lt", "lt"),
    (annotated_types.Le, "le", "lte"),
)


def rules_from_metadata(metadata: typing.Iterable[Any]) -> list[str]:
    """Translate annotated_types constraints into validate rules (min=3, lte=10...)."""
    rules: list[str] = []
    for item in metadata:
        for constraint_type, attribute, rule in _RULE_BY_CONSTRAINT:
            if isinstance(item, constraint_type):
                rules.append(f"{rule}={getattr(item, attribute)}")
    return rules


def _merge_rules(*parts: str | list[str]) -> str:
    """Join validate fragments, dropping empties."""
    merged: list[str] = []
    for part in parts:
        items = part.split(",") if isinstance(part, str) else part
        merged.extend(item.strip() for item in items if item and item.strip())
    return ",".join(merged)


def _class_doc(cls: type) -> str:
    """Return a class docstring, ignoring the signature dataclasses generate."""
    doc = cls.__dict__.get("__doc__") or ""
    if dataclasses.is_dataclass(cls) and doc.startswith(f"{cls.__name__}("):
        return ""
    if is_pydantic_model(cls) and doc == BaseModel.__doc__:
        return ""
    if is_enum(cls) and doc == "An enumeration.":
        return ""
    return typing.cast(str, doc).strip()


def _resolve_hints(cls: type) -> dict[str, Any]:
    """Evaluate a class's annotations in its defining module."""
    module = sys.modules.get(cls.__module__)
    try:
        return get_type_hints(cls, globalns=vars(module) if module else None, include_extras=True)
    except NameError as exc:
        raise ExtractionError(f"cannot resolve annotation on {cls.__qualname__}: {exc}") from exc


def substitute_typevars(tp: Any, mapping: dict[Any, Any]) -> Any:
    """Replace TypeVars inside an annotation with concrete arguments."""
    if isinstance(tp, TypeVar):
        return mapping.get(tp, tp)
    params = getattr(tp, "__parameters__", ())
    if params:
        return tp[tuple(mapping.get(param, param) for param in params)]
    return tp


# ============================================================
# describe()
# ============================================================

def describe(tp: Any, *, field_case: str = "preserve") -> TypeDescription:
    """Describe a composite type through the uniform descriptor contract."""
    if is_alias(tp):
        return _describe_alias(tp)
    if is_enum(tp):
        return _describe_enum(tp)
    if is_struct(tp):
        return _describe_struct(tp, field_case)
    raise ExtractionError(f"unsupported type {type_label(tp, qualified=True)}")


def _describe_alias(tp: Any) -> TypeDescription:
    if TypeAliasType is not None and isinstance(tp, TypeAliasType):  # type: ignore[arg-type]
        if getattr(tp, "__type_params__", ()):
            raise ExtractionError(f"generic type alias {tp.__name__} is not supported")
        target = tp.__value__  # type: ignore[attr-defined]
    else:
        target = tp.__supertype__
    return TypeDescription(
        kind=ALIAS,
        module=tp.__module__,
        key=tp.__name__,
        name=tp.__name__,
        target=target,
    )


def _describe_enum(cls: type[Enum]) -> TypeDescription:
    variants: list[EnumVariant] = []
    for member in cls:
        value = member.value
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ExtractionError(
                f"enum {cls.__qualname__}.{member.name} has unsupported value {value!r} (expected str, int or float)"
            )
        variants.append(EnumVariant(name=member.name, value=value))
    if not variants:
        raise ExtractionError(f"enum {cls.__qualname__} has no members")
    return TypeDescription(
        kind=ENUM,
        module=cls.__module__,
        key=cls.__qualname__,
        name=cls.__name__,
        variants=tuple(variants),
        doc=_class_doc(cls),
    )


def _describe_struct(tp: Any, field_case: str) -> TypeDescription:
    origin = get_origin(tp)
    cls = origin if origin is not None else tp
    if origin is not None:
        args = get_args(tp)
        key = f"{cls.__qualname__}[{', '.join(type_label(arg, qualified=True) for arg in args)}]"
        name = sanitize_type_name(f"{cls.__name__}[{', '.join(type_label(arg) for arg in args)}]")
        mapping = dict(zip(getattr(cls, "__parameters__", ()), args))
    else:
        key = cls.__qualname__
        name = sanitize_type_name(cls.__name__)
        mapping = {}

    if is_pydantic_model(cls):
        fields = _pydantic_fields(cls, field_case)
        metadata = getattr(cls, "__pydantic_generic_metadata__", None) or {}
        if metadata.get("origin") is not None:
            # pydantic builds a concrete subclass per instantiation
            base = metadata["origin"]
            key = f"{base.__qualname__}[{', '.join(type_label(arg, qualified=True) for arg in metadata['args'])}]"
    elif typing.is_typeddict(cls):
        fields = _typeddict_fields(cls, mapping)
    else:
        fields = _dataclass_fields(cls, field_case, mapping)

    return TypeDescription(
        kind=STRUCT,
        module=cls.__module__,
        key=key,
        name=name,
        fields=tuple(fields),
        doc=_class_doc(cls),
    )


def _dataclass_fields(cls: type, field_case: str, mapping: dict[Any, Any]) -> list[FieldDescriptor]:
    """Collect serializable dataclass fields in declaration order."""
    hints = _resolve_hints(cls)
    collected: list[FieldDescriptor] = []
    for dc_field in dataclasses.fields(cls):
        if dc_field.name.startswith("_"):
            continue
        meta = dc_field.metadata or {}
        override = meta.get("wire")
        if override == "-":
            continue
        annotation = substitute_typevars(hints.get(dc_field.name, Any), mapping)
        base, extras = strip_annotated(annotation)
        _, nullable = split_optional(base)
        collected.append(
            FieldDescriptor(
                attr=dc_field.name,
                wire_name=wire_name_for(dc_field.name, override, field_case),
                annotation=annotation,
                optional=bool(meta.get("omitempty", False)),
                nullable=nullable,
                validate=_merge_rules(meta.get("validate", ""), rules_from_metadata(extras)),
                doc=str(meta.get("doc", "")),
            )
        )
    return collected


def _pydantic_fields(cls: type[BaseModel], field_case: str) -> list[FieldDescriptor]:
    """Collect pydantic model fields in declaration order."""
    collected: list[FieldDescriptor] = []
    for attr, info in cls.model_fields.items():
        if info.exclude is True or attr.startswith("_"):
            continue
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
        annotation = info.annotation if info.annotation is not None else Any
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]  # type: ignore[valid-type]
        base, extras = strip_annotated(annotation)
        _, nullable = split_optional(base)
        collected.append(
            FieldDescriptor(
                attr=attr,
                wire_name=wire_name_for(attr, info.serialization_alias or info.alias, field_case),
                annotation=annotation,
                optional=bool(extra.get("omitempty", False)),
                nullable=nullable,
                validate=_merge_rules(str(extra.get("validate", "")), rules_from_metadata(extras)),
                doc=info.description or "",
            )
        )
    return collected


def _typeddict_fields(cls: type, mapping: dict[Any, Any]) -> list[FieldDescriptor]:
    """TypedDict keys are wire names already; NotRequired keys are optional."""
    hints = _resolve_hints(cls)
    optional_keys = getattr(cls, "__optional_keys__", frozenset())
    collected: list[FieldDescriptor] = []
    for key, annotation in hints.items():
        annotation = substitute_typevars(annotation, mapping)
        base, extras = strip_annotated(annotation)
        # Required[] / NotRequired[] wrappers survive include_extras
        while get_origin(base) in (typing.Required, typing.NotRequired):
            base = get_args(base)[0]
        _, nullable = split_optional(base)
        collected.append(
            FieldDescriptor(
                attr=key,
                wire_name=key,
                annotation=base if not extras else Annotated[(base, *extras)],  # type: ignore[valid-type]
                optional=key in optional_keys,
                nullable=nullable,
                validate=_merge_rules(rules_from_metadata(extras)),
            )
        )
    return collected
