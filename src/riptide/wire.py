"""Runtime wire codec: host values <-> JSON-ready payloads.

Field names come from `App.describe()`, the same descriptors the type
generator reads, so the encoder and the emitted declarations agree.
"""
from __future__ import annotations

import base64
import binascii
import collections.abc
import dataclasses
import datetime as dt
import json
import types
import typing
import uuid
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, TypeVar, Union, get_args, get_origin

from pydantic import BaseModel

from riptide.descriptors import (
    is_enum,
    is_pydantic_model,
    is_struct,
    split_optional,
    strip_annotated,
    type_label,
    unwrap_aliases,
)
from riptide.errors import ErrorCode, RpcError

if TYPE_CHECKING:
    from riptide.registry import App


_SEQUENCE_ORIGINS: tuple[Any, ...] = (
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.MutableSet,
    collections.abc.Iterable,
)
_SET_ORIGINS: tuple[Any, ...] = (set, collections.abc.Set, collections.abc.MutableSet)
_MAP_ORIGINS: tuple[Any, ...] = (dict, collections.abc.Mapping, collections.abc.MutableMapping)

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})


# ============================================================
# Envelopes
# ============================================================

def result_envelope(value: Any) -> dict[str, Any]:
    return {"result": value}


def error_envelope(error: RpcError) -> dict[str, Any]:
    return {"error": error.to_dict()}


def dumps(obj: Any) -> bytes:
    """Serialize an envelope to compact UTF-8 JSON."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# ============================================================
# Helpers
# ============================================================

def _invalid(path: str, reason: str) -> RpcError:
    field_path = path or "request"
    return RpcError(
        ErrorCode.INVALID_ARGUMENT.value,
        f"{field_path} {reason}",
        {"field": field_path, "reason": reason},
    )


def _join(path: str, part: str) -> str:
    return f"{path}.{part}" if path else part


def _is_union(tp: Any) -> bool:
    origin = get_origin(tp)
    return origin is Union or origin is types.UnionType


def _core_type(annotation: Any) -> tuple[Any, bool]:
    """Strip Annotated, named aliases and Optional; return (type, nullable)."""
    tp, _ = strip_annotated(annotation)
    tp = unwrap_aliases(tp)
    tp, nullable = split_optional(tp)
    tp, _ = strip_annotated(tp)
    return unwrap_aliases(tp), nullable


def is_empty(value: Any) -> bool:
    """Zero-value test used for omittable fields."""
    if value is None:
        return True
    if isinstance(value, bool):
        return value is False
    if isinstance(value, (int, float)) and not isinstance(value, Enum):
        return value == 0
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


# ============================================================
# Codec
# ============================================================

class WireCodec:
    """Encodes responses and decodes requests for one App."""

    def __init__(self, app: "App") -> None:
        self.app = app

    # ----- encoding -------------------------------------------------------

    def encode(self, value: Any, annotation: Any = Any) -> Any:
        if value is None:
            return None
        tp, _ = _core_type(annotation)
        if tp is Any or tp is object or isinstance(tp, TypeVar) or _is_union(tp):
            return self._encode_dynamic(value)
        if is_struct(tp):
            return self._encode_struct(value, tp)

        origin = get_origin(tp)
        args = get_args(tp)
        if origin in _MAP_ORIGINS:
            value_type = args[1] if len(args) == 2 else Any
            return {self._encode_key(key): self.encode(item, value_type) for key, item in value.items()}
        if origin is tuple:
            if len(args) == 2 and args[1] is Ellipsis:
                return [self.encode(item, args[0]) for item in value]
            if args:
                return [self.encode(item, item_type) for item, item_type in zip(value, args)]
            return [self._encode_dynamic(item) for item in value]
        if origin in _SEQUENCE_ORIGINS:
            item_type = args[0] if args else Any
            return [self.encode(item, item_type) for item in value]
        return self._encode_scalar(value)

    def _encode_struct(self, value: Any, tp: Any) -> dict[str, Any]:
        description = self.app.describe(tp)
        from_mapping = isinstance(value, dict)
        encoded: dict[str, Any] = {}
        for descriptor in description.fields:
            if from_mapping:
                if descriptor.attr not in value:
                    continue
                item = value[descriptor.attr]
            else:
                item = getattr(value, descriptor.attr)
            if descriptor.optional and is_empty(item):
                continue
            encoded[descriptor.wire_name] = self.encode(item, descriptor.annotation)
        return encoded

    def _encode_key(self, key: Any) -> str:
        if isinstance(key, Enum):
            key = key.value
        return str(key)

    def _encode_dynamic(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, BaseModel) or (dataclasses.is_dataclass(value) and not isinstance(value, type)):
            return self._encode_struct(value, type(value))
        if isinstance(value, dict):
            return {self._encode_key(key): self._encode_dynamic(item) for key, item in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._encode_dynamic(item) for item in value]
        return self._encode_scalar(value)

    def _encode_scalar(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        if isinstance(value, (dt.datetime, dt.date, dt.time)):
            return value.isoformat()
        if isinstance(value, dt.timedelta):
            return value.total_seconds()
        if isinstance(value, (bytes, bytearray)):
            return base64.b64encode(bytes(value)).decode("ascii")
        if isinstance(value, (uuid.UUID, Decimal)):
            return str(value)
        if isinstance(value, (BaseModel, dict, list, tuple, set, frozenset)) or dataclasses.is_dataclass(value):
            return self._encode_dynamic(value)
        raise TypeError(f"cannot encode value of type {type(value).__name__}")

    # ----- decoding -------------------------------------------------------

    def decode(self, payload: Any, annotation: Any, path: str = "") -> Any:
        """Decode a JSON payload into the annotated host type."""
        if annotation is None:
            return None
        tp, nullable = _core_type(annotation)
        if payload is None:
            if nullable or tp is Any or tp is object:
                return None
            raise _invalid(path, "must not be null")
        if tp is Any or tp is object or isinstance(tp, TypeVar):
            return payload
        if is_struct(tp):
            return self._decode_struct(payload, tp, path)
        if is_enum(tp):
            try:
                return tp(payload)
            except ValueError:
                raise _invalid(path, f"has invalid value {payload!r}") from None

        origin = get_origin(tp)
        args = get_args(tp)
        if origin is Literal:
            for allowed in args:
                if payload == allowed and type(payload) is type(allowed):
                    return payload
            raise _invalid(path, f"must be one of {', '.join(repr(arg) for arg in args)}")
        if _is_union(tp):
            for member in args:
                try:
                    return self.decode(payload, member, path)
                except RpcError:
                    continue
            raise _invalid(path, "does not match any allowed type")
        if origin in _MAP_ORIGINS:
            if not isinstance(payload, dict):
                raise _invalid(path, "must be an object")
            key_type = args[0] if args else str
            value_type = args[1] if len(args) == 2 else Any
            return {
                self._decode_key(key, key_type, path): self.decode(item, value_type, _join(path, str(key)))
                for key, item in payload.items()
            }
        if origin is tuple:
            if not isinstance(payload, list):
                raise _invalid(path, "must be an array")
            if len(args) == 2 and args[1] is Ellipsis:
                return tuple(self.decode(item, args[0], f"{path}[{index}]") for index, item in enumerate(payload))
            if args and len(args) != len(payload):
                raise _invalid(path, f"must have exactly {len(args)} items")
            item_types = args or (Any,) * len(payload)
            return tuple(
                self.decode(item, item_type, f"{path}[{index}]")
                for index, (item, item_type) in enumerate(zip(payload, item_types))
            )
        if origin in _SEQUENCE_ORIGINS:
            if not isinstance(payload, list):
                raise _invalid(path, "must be an array")
            item_type = args[0] if args else Any
            items = [self.decode(item, item_type, f"{path}[{index}]") for index, item in enumerate(payload)]
            if origin is frozenset:
                return frozenset(items)
            if origin in _SET_ORIGINS:
                return set(items)
            return items
        return self._decode_scalar(payload, tp, path)

    def _decode_key(self, key: str, key_type: Any, path: str) -> Any:
        core, _ = _core_type(key_type)
        if core is int:
            try:
                return int(key)
            except ValueError:
                raise _invalid(_join(path, key), "key must be an integer") from None
        if is_enum(core):
            for member in core:
                if str(member.value) == key:
                    return member
            raise _invalid(_join(path, key), "key is not a valid enum value")
        return key

    def _decode_struct(self, payload: Any, tp: Any, path: str) -> Any:
        if not isinstance(payload, dict):
            raise _invalid(path, "must be an object")
        description = self.app.describe(tp)
        cls = get_origin(tp) or tp

        values: dict[str, Any] = {}
        for descriptor in description.fields:
            if descriptor.wire_name in payload:
                values[descriptor.attr] = self.decode(
                    payload[descriptor.wire_name],
                    descriptor.annotation,
                    _join(path, descriptor.wire_name),
                )

        if typing.is_typeddict(cls):
            for descriptor in description.fields:
                if not descriptor.optional and descriptor.attr not in values:
                    raise _invalid(_join(path, descriptor.wire_name), "is required")
            return values

        if is_pydantic_model(cls):
            fields = cls.model_fields
            data: dict[str, Any] = {}
            for attr, value in values.items():
                info = fields[attr]
                key = info.validation_alias if isinstance(info.validation_alias, str) else (info.alias or attr)
                data[key] = value
            return cls.model_validate(data)

        by_attr = {descriptor.attr: descriptor for descriptor in description.fields}
        kwargs: dict[str, Any] = {}
        for dc_field in dataclasses.fields(cls):
            if not dc_field.init:
                continue
            if dc_field.name in values:
                kwargs[dc_field.name] = values[dc_field.name]
                continue
            if dc_field.default is not dataclasses.MISSING or dc_field.default_factory is not dataclasses.MISSING:
                continue
            descriptor = by_attr.get(dc_field.name)
            if descriptor is not None and descriptor.nullable:
                kwargs[dc_field.name] = None
                continue
            wire = descriptor.wire_name if descriptor is not None else dc_field.name
            raise _invalid(_join(path, wire), "is required")
        return cls(**kwargs)

    def _decode_scalar(self, payload: Any, tp: Any, path: str) -> Any:
        if tp is bool:
            if isinstance(payload, bool):
                return payload
            raise _invalid(path, "must be a boolean")
        if tp is int:
            if isinstance(payload, int) and not isinstance(payload, bool):
                return payload
            raise _invalid(path, "must be an integer")
        if tp is float:
            if isinstance(payload, (int, float)) and not isinstance(payload, bool):
                return float(payload)
            raise _invalid(path, "must be a number")
        if tp is str:
            if isinstance(payload, str):
                return payload
            raise _invalid(path, "must be a string")
        if tp is bytes:
            try:
                return base64.b64decode(payload, validate=True)
            except (binascii.Error, TypeError, ValueError):
                raise _invalid(path, "must be base64") from None
        if tp is dt.timedelta:
            if isinstance(payload, (int, float)) and not isinstance(payload, bool):
                return dt.timedelta(seconds=payload)
            raise _invalid(path, "must be a number of seconds")
        if tp in (dt.datetime, dt.date, dt.time):
            if not isinstance(payload, str):
                raise _invalid(path, "must be an ISO 8601 string")
            try:
                return tp.fromisoformat(payload)
            except ValueError:
                raise _invalid(path, "must be an ISO 8601 string") from None
        if tp is uuid.UUID:
            try:
                return uuid.UUID(str(payload))
            except ValueError:
                raise _invalid(path, "must be a UUID") from None
        if tp is Decimal:
            try:
                return Decimal(str(payload))
            except InvalidOperation:
                raise _invalid(path, "must be a decimal") from None
        raise _invalid(path, f"cannot be decoded into {type_label(tp)}")

    # ----- query strings --------------------------------------------------

    def decode_query(self, params: dict[str, Any], annotation: Any) -> Any:
        """Decode GET query parameters (str or list[str] values) into the request type."""
        if annotation is None:
            return None
        tp, _ = _core_type(annotation)
        if tp is Any or tp is object:
            return dict(params)
        if not is_struct(tp):
            raise _invalid("", "must be an object to be sent as query parameters")
        description = self.app.describe(tp)
        payload: dict[str, Any] = {}
        for descriptor in description.fields:
            if descriptor.wire_name in params:
                payload[descriptor.wire_name] = self._coerce_query(
                    params[descriptor.wire_name], descriptor.annotation, descriptor.wire_name
                )
        return self.decode(payload, annotation)

    def _coerce_query(self, raw: Any, annotation: Any, path: str) -> Any:
        tp, _ = _core_type(annotation)
        origin = get_origin(tp)
        args = get_args(tp)
        if origin in _SEQUENCE_ORIGINS or origin is tuple:
            items = raw if isinstance(raw, list) else [raw]
            item_type = args[0] if args else Any
            return [self._coerce_query(item, item_type, f"{path}[{index}]") for index, item in enumerate(items)]
        if isinstance(raw, list):
            raw = raw[-1] if raw else ""

        if tp is bool:
            lowered = raw.lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise _invalid(path, "must be a boolean")
        if tp is int:
            try:
                return int(raw)
            except ValueError:
                raise _invalid(path, "must be an integer") from None
        if tp in (float, dt.timedelta):
            try:
                return float(raw)
            except ValueError:
                raise _invalid(path, "must be a number") from None
        if is_enum(tp):
            for member in tp:
                if str(member.value) == raw:
                    return member.value
            return raw
        if origin is Literal:
            for allowed in args:
                if str(allowed) == raw and not isinstance(allowed, bool):
                    return allowed
                if isinstance(allowed, bool) and raw.lower() == str(allowed).lower():
                    return allowed
            return raw
        if is_struct(tp) or origin in _MAP_ORIGINS:
            try:
                return json.loads(raw)
            except ValueError:
                raise _invalid(path, "must be a JSON object") from None
        return raw
