"""RPC dispatch for registered methods and its CherryPy adapter."""
from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator

import cherrypy

from riptide.atom import Subscription, SubscriptionClosed
from riptide.errors import ErrorCode, ErrorTransformer, RpcError, transform_error
from riptide.registry import Context, Event, MethodDescriptor
from riptide.wire import WireCodec, dumps, error_envelope, result_envelope

if TYPE_CHECKING:
    from riptide.registry import App

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
SSE_CONTENT_TYPE = "text/event-stream"
HEARTBEAT = b": heartbeat\n\n"


@dataclass(frozen=True)
class ServerOptions:
    max_request_body: int = 1 << 20
    mask_internal_errors: bool = False
    stream_heartbeat: float = 30.0
    stream_write_timeout: float = 30.0
    error_transformer: ErrorTransformer | None = None


@dataclass
class RpcResponse:
    """Transport-neutral result of dispatching one request."""
    status: int
    body: bytes = b""
    content_type: str = JSON_CONTENT_TYPE
    headers: dict[str, str] = field(default_factory=dict)
    stream: Iterator[bytes] | None = None


def sse_event(envelope: dict[str, Any], event_id: str = "") -> bytes:
    prefix = f"id: {event_id}\n".encode("utf-8") if event_id else b""
    return prefix + b"data: " + dumps(envelope) + b"\n\n"


# ============================================================
# Iterator feed for Stream() handlers
# ============================================================

class _IteratorFeed:
    """Runs a handler's iterator on a worker thread so the writer can send heartbeats."""

    def __init__(self, iterator: Iterator[Any], done: threading.Event, maxsize: int = 16) -> None:
        self._queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize)
        self._done = done
        self._thread = threading.Thread(target=self._pump, args=(iterator,), name="riptide-stream", daemon=True)
        self._thread.start()

    def _offer(self, item: tuple[str, Any]) -> bool:
        while not self._done.is_set():
            try:
                self._queue.put(item, timeout=0.25)
                return True
            except queue.Full:
                continue
        return False

    def _pump(self, iterator: Iterator[Any]) -> None:
        try:
            for value in iterator:
                if not self._offer(("value", value)):
                    return
            self._offer(("end", None))
        except Exception as exc:
            self._offer(("error", exc))
        finally:
            close = getattr(iterator, "close", None)
            if callable(close):
                close()

    def get(self, timeout: float | None = None) -> Any:
        try:
            kind, value = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no value within timeout") from None
        if kind == "end":
            raise SubscriptionClosed("stream finished")
        if kind == "error":
            raise value
        return value

    def close(self) -> None:
        self._done.set()


# ============================================================
# Dispatcher
# ============================================================

class Dispatcher:
    """Maps (HTTP method, /Service/Method) onto registered handlers."""

    def __init__(self, app: "App", options: ServerOptions | None = None) -> None:
        app.freeze()
        self.app = app
        self.options = options or ServerOptions()
        self.codec = WireCodec(app)

    def _error(self, error: RpcError) -> RpcResponse:
        return RpcResponse(status=error.http_status, body=dumps(error_envelope(error)))

    def _transform(self, exc: BaseException) -> RpcError:
        return transform_error(
            exc,
            self.options.error_transformer,
            mask_internal=self.options.mask_internal_errors,
        )

    def route(self, path: str) -> MethodDescriptor | None:
        segments = [segment for segment in path.strip("/").split("/") if segment]
        return self.app.lookup(*segments) if len(segments) == 2 else None

    def dispatch(
        self,
        http_method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> RpcResponse:
        method = self.route(path)
        if method is None:
            return self._error(RpcError(ErrorCode.NOT_FOUND.value, "route not found"))

        verb = (http_method or "GET").upper()
        if verb != method.http_method:
            return RpcResponse(
                status=405,
                body=dumps(error_envelope(RpcError(
                    ErrorCode.METHOD_NOT_ALLOWED.value,
                    f"method {verb} not allowed, expected {method.http_method}",
                ))),
                headers={"Allow": method.http_method},
            )

        ctx = Context(service=method.service, method=method.name, http_method=verb, headers=dict(headers or {}))
        try:
            request = self._decode(method, query or {}, body)
        except Exception as exc:
            return self._error(self._transform(exc))

        if method.streaming:
            return self._open_stream(method, ctx, request)

        try:
            result = self.app.invoke(method, ctx, request)
            payload = result_envelope(self._encode_result(method, result))
        except Exception as exc:
            return self._error(self._transform(exc))
        response_headers: dict[str, str] = {}
        if method.cache_control is not None:
            response_headers["Cache-Control"] = method.cache_control.header()
        return RpcResponse(status=200, body=dumps(payload), headers=response_headers)

    def body_limit(self, method: MethodDescriptor) -> int:
        """Largest accepted body for a method; 0 means no limit."""
        if method.max_request_body is not None:
            return method.max_request_body
        return self.options.max_request_body

    def heartbeat(self, method: MethodDescriptor) -> float | None:
        """Seconds between SSE heartbeats for a method, or None when disabled."""
        interval = method.heartbeat if method.heartbeat is not None else self.options.stream_heartbeat
        return interval if interval > 0 else None

    def _encode_result(self, method: MethodDescriptor, value: Any) -> Any:
        # methods without a response type are declared as the empty object
        if method.response is None:
            return {}
        return self.codec.encode(value, method.response)

    def _decode(self, method: MethodDescriptor, query: dict[str, Any], body: bytes) -> Any:
        if method.request is None:
            return None
        if method.http_method == "GET":
            return self.codec.decode_query(query, method.request)
        limit = self.body_limit(method)
        if limit and len(body) > limit:
            raise RpcError(ErrorCode.INVALID_ARGUMENT.value, "request body too large", {"limit": limit})
        if not body.strip():
            payload: Any = {}
        else:
            try:
                payload = json.loads(body)
            except ValueError as exc:
                raise RpcError(ErrorCode.INVALID_ARGUMENT.value, f"invalid JSON body: {exc}") from None
        return self.codec.decode(payload, method.request)

    # ----- streaming ------------------------------------------------------

    def _open_stream(self, method: MethodDescriptor, ctx: Context, request: Any) -> RpcResponse:
        try:
            source = self.app.invoke(method, ctx, request)
        except Exception as exc:
            return self._error(self._transform(exc))
        return RpcResponse(
            status=200,
            content_type=SSE_CONTENT_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            stream=self._events(method, ctx, source),
        )

    def _events(self, method: MethodDescriptor, ctx: Context, source: Any) -> Iterator[bytes]:
        feed = source if isinstance(source, Subscription) else _IteratorFeed(iter(source), ctx.done)
        interval = self.heartbeat(method)
        try:
            while not ctx.done.is_set():
                try:
                    value = feed.get(timeout=interval)
                except TimeoutError:
                    yield HEARTBEAT
                    continue
                except SubscriptionClosed:
                    return
                except Exception as exc:
                    yield sse_event(error_envelope(self._transform(exc)))
                    return
                event_id = ""
                if isinstance(value, Event):
                    value, event_id = value.value, value.id
                try:
                    encoded = self._encode_result(method, value)
                except Exception as exc:
                    yield sse_event(error_envelope(self._transform(exc)))
                    return
                yield sse_event(result_envelope(encoded), event_id)
        finally:
            ctx.done.set()
            feed.close()
            logger.debug("stream %s closed", method.key)


# ============================================================
# CherryPy adapter
# ============================================================

class RpcRouter:
    """Mounted with cherrypy.tree.mount; every path goes through default()."""

    _cp_config = {"tools.encode.on": False}

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher

    def _respond(self, vpath: tuple[str, ...], params: dict[str, Any]) -> Any:
        request = cherrypy.request
        path = "/" + "/".join(vpath)
        body = b""
        if request.method not in ("GET", "HEAD") and request.body is not None:
            method = self.dispatcher.route(path)
            if method is not None:
                limit = self.dispatcher.body_limit(method)
            else:
                limit = self.dispatcher.options.max_request_body
            body = request.body.read(limit + 1 if limit else None) or b""

        result = self.dispatcher.dispatch(
            request.method,
            path,
            query=params,
            body=body,
            headers=dict(request.headers),
        )
        cherrypy.response.status = result.status
        cherrypy.response.headers["Content-Type"] = result.content_type
        for name, value in result.headers.items():
            cherrypy.response.headers[name] = value
        if result.stream is not None:
            cherrypy.response.stream = True
            return result.stream
        return result.body

    @cherrypy.expose
    def index(self, **params: Any) -> Any:
        return self._respond((), params)

    @cherrypy.expose
    def default(self, *vpath: str, **params: Any) -> Any:
        return self._respond(vpath, params)


def mount_rpc(app: "App", *, mount_path: str = "/", options: ServerOptions | None = None) -> RpcRouter:
    """Freeze the app and mount its router on the CherryPy tree."""
    router = RpcRouter(Dispatcher(app, options))
    path = "/" + mount_path.strip("/")
    cherrypy.tree.mount(router, "" if path == "/" else path)
    return router
