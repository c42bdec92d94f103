"""
Unit tests for schema extraction.

Tests cover:
- Reachability from registered methods
- Self-referential and mutually referential types
- Generic instantiations and type mappings
- Path-named extraction errors for unserializable fields
"""

import threading
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

import pytest

from riptide import App, ExtractionError, Query
from riptide.orchestrator.extract import extract_schema
from riptide.orchestrator.pipeline import GeneratorConfig, render
from riptide.orchestrator.schema import EMPTY, ListRef, MappedRef, NamedRef, PrimitiveRef
from shop.api import v1
from shop.app import build_app

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int


@dataclass
class Job:
    name: str
    callback: Callable[[], None]


@dataclass
class Handle:
    stop: threading.Event


class Opaque:
    pass


@dataclass
class Wrapper:
    inner: Opaque


@dataclass
class Grid:
    cells: dict[tuple[int, int], str]


@dataclass
class Author:
    name: str
    books: list["Book"]


@dataclass
class Book:
    title: str
    author: Optional[Author] = None


def _app_returning(response_type: object) -> App:
    def handler() -> None:
        return None

    app = App()
    app.service("Things").register("Get", Query(handler, response=response_type))
    return app


def test_reachable_types_are_collected() -> None:
    """Test that every type reachable from a method becomes a node."""
    app, _ = build_app()
    schema = extract_schema(app)

    assert sorted(schema.nodes) == [
        ("shop.api", "Counter"),
        ("shop.api", "GetWidgetRequest"),
        ("shop.api", "Status"),
        ("shop.api", "TreeNode"),
        ("shop.api", "Widget"),
        ("shop.api.v1", "User"),
        ("shop.api.v2", "User"),
    ]


def test_methods_without_request_use_empty_ref() -> None:
    """Test that methods with no request parameter get the empty reference."""
    app, _ = build_app()
    methods = {method.key: method for method in extract_schema(app).methods}

    assert methods["Widgets.Tree"].request == EMPTY
    assert methods["Widgets.Live"].request == EMPTY
    assert methods["Widgets.Get"].request == NamedRef(("shop.api", "GetWidgetRequest"))


def test_self_referential_type_is_one_node() -> None:
    """Test that a recursive type is visited once and references itself."""
    app, _ = build_app()
    node = extract_schema(app).nodes[("shop.api", "TreeNode")]
    children = {field.attr: field.type for field in node.fields}["children"]

    assert children == ListRef(NamedRef(("shop.api", "TreeNode")))
    assert node.references() == {("shop.api", "TreeNode")}


def test_mutually_referential_types_are_two_nodes() -> None:
    """Test that A -> B -> A terminates with exactly one node per type."""
    schema = extract_schema(_app_returning(Author))
    author = schema.nodes[("test_extract", "Author")]
    book = schema.nodes[("test_extract", "Book")]

    assert sorted(schema.nodes) == [("test_extract", "Author"), ("test_extract", "Book")]
    assert {field.attr: field.type for field in author.fields}["books"] == ListRef(NamedRef(("test_extract", "Book")))
    assert {field.attr: field.type for field in book.fields}["author"] == NamedRef(("test_extract", "Author"))


def test_forward_reference_is_lazy_in_zod() -> None:
    """Test that a schema referring to a later declaration wraps it in z.lazy."""
    config = GeneratorConfig(out_dir="out", strip_prefix="test_extract", flavors=("zod",))
    schemas = render(_app_returning(Author), config).files["schemas.zod.ts"]

    assert "  books: z.array(z.lazy(() => BookSchema))," in schemas
    assert "  author: AuthorSchema.nullable()," in schemas
    assert schemas.index("export const AuthorSchema") < schemas.index("export const BookSchema")


def test_nullable_field_is_flagged_not_wrapped() -> None:
    """Test that Optional fields carry nullable=True with the inner reference."""
    app, _ = build_app()
    node = extract_schema(app).nodes[("shop.api", "Widget")]
    price = {field.attr: field for field in node.fields}["price_cents"]

    assert price.nullable is True
    assert price.type == PrimitiveRef("number", "int")


def test_generic_instantiation_becomes_named_node() -> None:
    """Test that Page[User] is extracted with its argument type."""
    schema = extract_schema(_app_returning(Page[v1.User]))
    node = schema.nodes[("test_extract", "Page[shop.api.v1.User]")]

    assert node.name == "Page_User"
    assert ("shop.api.v1", "User") in schema.nodes


def test_type_mapping_replaces_named_type() -> None:
    """Test that a mapped host type is rendered verbatim and not extracted."""
    schema = extract_schema(
        _app_returning(Page[v1.User]),
        type_mappings={"shop.api.v1.User": "ExternalUser"},
    )
    node = schema.nodes[("test_extract", "Page[shop.api.v1.User]")]
    items = {field.attr: field.type for field in node.fields}["items"]

    assert items == ListRef(MappedRef("ExternalUser"))
    assert ("shop.api.v1", "User") not in schema.nodes


def test_callable_field_error_names_its_path() -> None:
    """Test that a function-typed field fails with the full field path."""
    with pytest.raises(ExtractionError) as excinfo:
        extract_schema(_app_returning(Job))

    assert excinfo.value.field_path == "Things.Get.response.callback"
    assert "functions cannot be serialized" in str(excinfo.value)


def test_concurrency_primitive_is_rejected() -> None:
    """Test that threading primitives are reported as unserializable."""
    with pytest.raises(ExtractionError, match="concurrency primitive") as excinfo:
        extract_schema(_app_returning(Handle))

    assert excinfo.value.field_path == "Things.Get.response.stop"


def test_opaque_class_is_rejected() -> None:
    """Test that a class without a field contract is reported with its name."""
    with pytest.raises(ExtractionError, match="opaque type test_extract.Opaque"):
        extract_schema(_app_returning(Wrapper))


def test_unresolved_type_variable_is_rejected() -> None:
    """Test that a bare generic class leaves its TypeVar unresolved and fails."""
    with pytest.raises(ExtractionError, match="unresolved type variable T") as excinfo:
        extract_schema(_app_returning(Page))

    assert excinfo.value.field_path == "Things.Get.response.items[]"


def test_map_keys_must_be_strings_ints_or_enums() -> None:
    """Test that tuple-keyed maps are rejected."""
    with pytest.raises(ExtractionError, match="map keys must be"):
        extract_schema(_app_returning(Grid))
