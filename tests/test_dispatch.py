"""
Unit tests for HTTP dispatch of registered methods.

Tests cover:
- Routing, verb checks and error envelopes
- GET query and POST body decoding
- Interceptors seeing request headers
- Server-sent event streams for Stream() and Atom methods
- Devtools status agreeing with the generated discovery document
- Empty-object results, cache headers and per-method limits
- SSE event ids and Last-Event-ID resume
"""

import json
from typing import Any, Iterator

from riptide import CacheControl, Context, ErrorCode, Event, Exec, Query, Stream, rpc_error
from riptide.devtools import register_devtools
from riptide.orchestrator.pipeline import GeneratorConfig, render
from riptide.routing.endpoints import HEARTBEAT, SSE_CONTENT_TYPE, Dispatcher, RpcResponse, ServerOptions
from shop.api import Counter, GetWidgetRequest
from shop.app import build_app, create_widget, get_widget


def _json(response: RpcResponse) -> Any:
    return json.loads(response.body)


def _event(chunk: bytes) -> Any:
    assert chunk.startswith(b"data: ") and chunk.endswith(b"\n\n")
    return json.loads(chunk[len(b"data: "):])


def test_query_decodes_parameters() -> None:
    """Test that GET methods read their request from the query string."""
    response = Dispatcher(build_app()[0]).dispatch("GET", "/Widgets/Get", query={"id": "1"})

    assert response.status == 200
    assert response.content_type.startswith("application/json")
    assert _json(response) == {
        "result": {"id": 1, "name": "Sprocket", "status": "active", "tags": ["metal"], "price_cents": None}
    }


def test_handler_errors_use_error_envelope() -> None:
    """Test that an RpcError raised by a handler keeps its code and details."""
    response = Dispatcher(build_app()[0]).dispatch("GET", "/Widgets/Get", query={"id": "99"})

    assert response.status == 404
    assert _json(response) == {"error": {"code": "not_found", "message": "widget not found", "details": {"id": 99}}}


def test_unknown_route_is_not_found() -> None:
    """Test that unknown services, methods and malformed paths are 404."""
    dispatcher = Dispatcher(build_app()[0])

    for path in ("/Nope/Get", "/Widgets/Nope", "/Widgets", "/"):
        response = dispatcher.dispatch("GET", path)
        assert response.status == 404
        assert _json(response)["error"]["message"] == "route not found"


def test_wrong_verb_is_method_not_allowed() -> None:
    """Test that a POST to a query method is rejected with an Allow header."""
    response = Dispatcher(build_app()[0]).dispatch("POST", "/Widgets/Get", body=b'{"id":1}')

    assert response.status == 405
    assert response.headers == {"Allow": "GET"}
    assert _json(response)["error"]["code"] == "method_not_allowed"


def test_exec_decodes_json_body() -> None:
    """Test that POST methods decode their JSON body."""
    response = Dispatcher(build_app()[0]).dispatch(
        "POST", "/Widgets/Create", body=b'{"id":3,"name":"Washer","tags":["zinc"]}'
    )

    assert response.status == 200
    assert _json(response)["result"] == {
        "id": 3,
        "name": "Washer",
        "status": "active",
        "tags": ["zinc"],
        "price_cents": None,
    }


def test_missing_field_is_invalid_argument() -> None:
    """Test that a missing required field is reported as invalid_argument."""
    response = Dispatcher(build_app()[0]).dispatch("POST", "/Widgets/Create", body=b'{"id":3}')

    assert response.status == 400
    assert _json(response) == {
        "error": {
            "code": "invalid_argument",
            "message": "name is required",
            "details": {"field": "name", "reason": "is required"},
        }
    }


def test_invalid_json_body() -> None:
    """Test that a malformed body is invalid_argument."""
    response = Dispatcher(build_app()[0]).dispatch("POST", "/Widgets/Create", body=b"{nope")

    assert response.status == 400
    assert _json(response)["error"]["message"].startswith("invalid JSON body")


def test_oversized_body_is_rejected() -> None:
    """Test that bodies over the configured limit are refused."""
    dispatcher = Dispatcher(build_app()[0], ServerOptions(max_request_body=8))
    response = dispatcher.dispatch("POST", "/Widgets/Create", body=b'{"id":3,"name":"Washer"}')

    assert response.status == 400
    assert _json(response)["error"] == {
        "code": "invalid_argument",
        "message": "request body too large",
        "details": {"limit": 8},
    }


def test_method_without_request() -> None:
    """Test that a method with no request parameter ignores the query."""
    response = Dispatcher(build_app()[0]).dispatch("GET", "/Widgets/Tree", query={"junk": "1"})

    assert _json(response)["result"]["children"] == [{"label": "leaf", "children": []}]


def test_interceptor_sees_headers() -> None:
    """Test that interceptors can reject calls based on request headers."""
    app, _ = build_app()

    def require_token(ctx: Context, request: object, call_next):  # type: ignore[no-untyped-def]
        if ctx.headers.get("Authorization") != "Bearer ok":
            raise rpc_error(ErrorCode.UNAUTHENTICATED, "missing token")
        return call_next(ctx, request)

    app.add_interceptor(require_token)
    dispatcher = Dispatcher(app)

    denied = dispatcher.dispatch("GET", "/Widgets/Get", query={"id": "1"})
    allowed = dispatcher.dispatch("GET", "/Widgets/Get", query={"id": "1"}, headers={"Authorization": "Bearer ok"})

    assert denied.status == 401
    assert allowed.status == 200


def test_internal_errors_are_masked_when_configured() -> None:
    """Test that unexpected handler exceptions are hidden behind a generic message."""
    app, _ = build_app()

    def explode(ctx: Context, request: object, call_next):  # type: ignore[no-untyped-def]
        raise RuntimeError("secret detail")

    app.add_interceptor(explode)
    response = Dispatcher(app, ServerOptions(mask_internal_errors=True)).dispatch("GET", "/Widgets/Tree")

    assert response.status == 500
    assert _json(response)["error"]["message"] == "internal server error"


def test_stream_emits_each_value() -> None:
    """Test that a Stream() method sends one SSE event per yielded value, then ends."""
    response = Dispatcher(build_app()[0]).dispatch("POST", "/Widgets/CountTo", body=b'{"id":3}')

    assert response.status == 200
    assert response.content_type == SSE_CONTENT_TYPE
    assert response.stream is not None
    events = [_event(chunk) for chunk in response.stream]
    assert events == [{"result": {"count": 1}}, {"result": {"count": 2}}, {"result": {"count": 3}}]


def test_atom_stream_replays_then_follows_updates() -> None:
    """Test that an Atom stream sends the current value, each update and heartbeats."""
    app, counter = build_app()
    counter.set(Counter(count=4))
    dispatcher = Dispatcher(app, ServerOptions(stream_heartbeat=0.05))

    response = dispatcher.dispatch("GET", "/Widgets/Live")
    assert response.stream is not None
    stream = iter(response.stream)

    assert _event(next(stream)) == {"result": {"count": 4}}
    assert counter.subscriber_count == 1

    counter.update(lambda current: Counter(count=current.count + 1))
    assert _event(next(stream)) == {"result": {"count": 5}}
    assert next(stream) == HEARTBEAT

    response.stream.close()  # type: ignore[attr-defined]
    assert counter.subscriber_count == 0


def test_devtools_status_matches_discovery() -> None:
    """Test that Devtools.Status lists the same methods as discovery.json."""
    app, _ = build_app()
    register_devtools(app)
    dispatcher = Dispatcher(app)
    status = _json(dispatcher.dispatch("GET", "/Devtools/Status"))["result"]
    discovery = json.loads(
        render(app, GeneratorConfig(out_dir="out", strip_prefix="shop.api", emit_discovery=True)).files[
            "discovery.json"
        ]
    )

    listed = {
        f"{service['name']}.{method['name']}": (method["kind"], method["http_method"], method["path"])
        for service in status["services"]
        for method in service["methods"]
    }
    expected = {key: (entry["kind"], entry["method"], entry["path"]) for key, entry in discovery["methods"].items()}
    assert listed == expected
    assert _json(dispatcher.dispatch("GET", "/Devtools/Ping")) == {"result": {"ok": True}}


def test_method_without_response_returns_empty_object() -> None:
    """Test that a handler returning None answers with the declared empty object."""
    app, _ = build_app()

    def ping() -> None:
        return None

    app.service("Health").register("Ping", Exec(ping))
    response = Dispatcher(app).dispatch("POST", "/Health/Ping")

    assert response.status == 200
    assert _json(response) == {"result": {}}


def test_query_cache_control_header() -> None:
    """Test that a query registered with cache directives sends Cache-Control."""
    app, _ = build_app()
    app.service("Widgets").register("Cached", Query(get_widget, cache=CacheControl(max_age=300, public=True)))
    dispatcher = Dispatcher(app)

    cached = dispatcher.dispatch("GET", "/Widgets/Cached", query={"id": "1"})
    plain = dispatcher.dispatch("GET", "/Widgets/Get", query={"id": "1"})
    missing = dispatcher.dispatch("GET", "/Widgets/Cached", query={"id": "99"})

    assert cached.headers == {"Cache-Control": "public, max-age=300"}
    assert "Cache-Control" not in plain.headers
    assert missing.status == 404
    assert "Cache-Control" not in missing.headers


def test_per_method_body_limit_overrides_server_limit() -> None:
    """Test that a method's own body limit wins over the server default, and 0 lifts it."""
    app, _ = build_app()
    widgets = app.service("Widgets")
    widgets.register("CreateSmall", Exec(create_widget, max_request_body=8))
    widgets.register("CreateAny", Exec(create_widget, max_request_body=0))
    dispatcher = Dispatcher(app, ServerOptions(max_request_body=16))
    body = b'{"id":3,"name":"Washer","tags":["zinc"]}'

    small = dispatcher.dispatch("POST", "/Widgets/CreateSmall", body=body)
    default = dispatcher.dispatch("POST", "/Widgets/Create", body=body)
    unlimited = dispatcher.dispatch("POST", "/Widgets/CreateAny", body=body)

    assert _json(small)["error"]["details"] == {"limit": 8}
    assert _json(default)["error"]["details"] == {"limit": 16}
    assert unlimited.status == 200


def test_per_method_heartbeat_overrides_server_interval() -> None:
    """Test that a live method registered with its own heartbeat uses it."""
    app, counter = build_app()
    app.service("Widgets").register("Pulse", counter.handler(heartbeat=0.05))
    response = Dispatcher(app).dispatch("GET", "/Widgets/Pulse")
    assert response.stream is not None
    stream = iter(response.stream)

    assert _event(next(stream)) == {"result": {"count": 0}}
    assert next(stream) == HEARTBEAT
    response.stream.close()  # type: ignore[attr-defined]


def test_stream_events_carry_ids_and_resume() -> None:
    """Test that Event values send an SSE id and handlers see Last-Event-ID."""
    app, _ = build_app()

    def replay(ctx: Context, req: GetWidgetRequest) -> Iterator[Event[Counter]]:
        start = int(ctx.last_event_id or 0)
        for value in range(start + 1, req.id + 1):
            yield Event(Counter(count=value), id=str(value))

    app.service("Widgets").register("Replay", Stream(replay))
    dispatcher = Dispatcher(app)

    response = dispatcher.dispatch("POST", "/Widgets/Replay", body=b'{"id":4}', headers={"Last-Event-Id": "2"})
    assert response.stream is not None
    chunks = list(response.stream)

    assert chunks == [
        b'id: 3\ndata: {"result":{"count":3}}\n\n',
        b'id: 4\ndata: {"result":{"count":4}}\n\n',
    ]
