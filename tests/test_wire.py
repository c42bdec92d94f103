"""
Unit tests for the runtime wire codec.

Tests cover:
- Encoding with wire names, omitempty and enums
- Decoding with required-field and type errors
- Query-string coercion for GET requests
- Envelope helpers
"""

import datetime as dt
from typing import Literal, Optional

import pytest

from riptide import RpcError
from riptide.wire import WireCodec, dumps, error_envelope, is_empty, result_envelope
from shop.api import GetWidgetRequest, Status, TreeNode, Widget
from shop.app import build_app


def _codec(field_case: str = "preserve") -> WireCodec:
    return WireCodec(build_app(field_case=field_case)[0])


def test_encode_struct_skips_hidden_and_empty_fields() -> None:
    """Test that wire '-' fields are dropped and omitempty fields skipped when empty."""
    encoded = _codec().encode(Widget(id=2, name="Gizmo", secret="s3cret"), Widget)

    assert encoded == {"id": 2, "name": "Gizmo", "status": "active", "price_cents": None}


def test_encode_uses_camel_case_when_configured() -> None:
    """Test that camel field case renames keys on the wire."""
    encoded = _codec("camel").encode(Widget(id=1, name="Sprocket", tags=["metal"], price_cents=150), Widget)

    assert encoded == {"id": 1, "name": "Sprocket", "status": "active", "tags": ["metal"], "priceCents": 150}


def test_encode_nested_structs() -> None:
    """Test that nested and recursive structs encode depth-first."""
    tree = TreeNode(label="root", children=[TreeNode(label="leaf")])

    assert _codec().encode(tree, TreeNode) == {
        "label": "root",
        "children": [{"label": "leaf", "children": []}],
    }


def test_encode_scalars() -> None:
    """Test that datetimes, bytes and maps have stable JSON shapes."""
    codec = _codec()

    assert codec.encode(dt.datetime(2024, 1, 2, 3, 4, 5), dt.datetime) == "2024-01-02T03:04:05"
    assert codec.encode(b"hi", bytes) == "aGk="
    assert codec.encode({Status.ACTIVE: 1}, dict[Status, int]) == {"active": 1}


def test_decode_struct() -> None:
    """Test that a JSON object decodes into the dataclass."""
    widget = _codec().decode({"id": 5, "name": "Bolt", "status": "archived", "tags": ["a"]}, Widget)

    assert widget == Widget(id=5, name="Bolt", status=Status.ARCHIVED, tags=["a"])


def test_decode_missing_required_field() -> None:
    """Test that a missing required field is an invalid_argument error naming it."""
    with pytest.raises(RpcError) as excinfo:
        _codec().decode({"id": 5}, Widget)

    error = excinfo.value
    assert error.code == "invalid_argument"
    assert error.message == "name is required"
    assert error.details == {"field": "name", "reason": "is required"}


def test_decode_reports_nested_paths() -> None:
    """Test that errors inside lists carry the element path."""
    with pytest.raises(RpcError) as excinfo:
        _codec().decode({"label": "root", "children": [{"label": 3}]}, TreeNode)

    assert excinfo.value.details["field"] == "children[0].label"


def test_decode_rejects_wrong_scalar_types() -> None:
    """Test that bools are not accepted as integers."""
    with pytest.raises(RpcError, match="id must be an integer"):
        _codec().decode({"id": True}, GetWidgetRequest)


def test_decode_optional_and_literal() -> None:
    """Test that Optional accepts null and Literal checks membership."""
    codec = _codec()

    assert codec.decode(None, Optional[int]) is None
    assert codec.decode("b", Literal["a", "b"]) == "b"
    with pytest.raises(RpcError, match="must be one of"):
        codec.decode("c", Literal["a", "b"])


def test_decode_invalid_enum_value() -> None:
    """Test that unknown enum values are rejected."""
    with pytest.raises(RpcError, match="status has invalid value 'deleted'"):
        _codec().decode({"id": 1, "name": "x", "status": "deleted"}, Widget)


def test_decode_query_coerces_strings() -> None:
    """Test that GET query strings are coerced to the declared field types."""
    codec = _codec()

    assert codec.decode_query({"id": "12"}, GetWidgetRequest) == GetWidgetRequest(id=12)
    widget = codec.decode_query({"id": "1", "name": "Nut", "tags": ["a", "b"], "status": "archived"}, Widget)
    assert widget.tags == ["a", "b"]
    assert widget.status is Status.ARCHIVED


def test_decode_query_reports_bad_numbers() -> None:
    """Test that a non-numeric query value is an invalid_argument error."""
    with pytest.raises(RpcError) as excinfo:
        _codec().decode_query({"id": "twelve"}, GetWidgetRequest)

    assert excinfo.value.details == {"field": "id", "reason": "must be an integer"}


def test_is_empty() -> None:
    """Test the zero-value rule used by omitempty."""
    assert is_empty(None)
    assert is_empty("")
    assert is_empty([])
    assert is_empty(0)
    assert not is_empty(Status.ACTIVE)
    assert not is_empty("x")


def test_envelopes() -> None:
    """Test that envelopes serialize to compact JSON."""
    assert dumps(result_envelope({"ok": True})) == b'{"result":{"ok":true}}'
    assert dumps(error_envelope(RpcError("not_found", "gone"))) == (
        b'{"error":{"code":"not_found","message":"gone","details":{}}}'
    )
