"""Explicit method registry: apps, services, handlers and method descriptors."""
from __future__ import annotations

import collections.abc
import inspect
import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Iterator, TypeVar, get_args, get_origin, get_type_hints

from riptide.descriptors import FIELD_CASES, TypeDescription, describe
from riptide.errors import ConfigurationError, RegistrationError

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_UNSET: Any = object()

T = TypeVar("T")


class MethodKind(str, Enum):
    """How a method is invoked and delivered."""
    QUERY = "query"
    EXEC = "exec"
    STREAM = "stream"
    ATOM = "atom"


_HTTP_METHOD_BY_KIND: dict[MethodKind, str] = {
    MethodKind.QUERY: "GET",
    MethodKind.EXEC: "POST",
    MethodKind.STREAM: "POST",
    MethodKind.ATOM: "GET",
}

STREAMING_KINDS = frozenset({MethodKind.STREAM, MethodKind.ATOM})


@dataclass
class Context:
    """Per-call context handed to interceptors and handlers."""
    service: str
    method: str
    http_method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    done: threading.Event = field(default_factory=threading.Event)

    @property
    def key(self) -> str:
        return f"{self.service}.{self.method}"

    def header(self, name: str, default: str = "") -> str:
        """Case-insensitive request header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @property
    def last_event_id(self) -> str:
        """The Last-Event-ID a reconnecting stream client sent, or ""."""
        return self.header("Last-Event-ID")


@dataclass(frozen=True)
class CacheControl:
    """HTTP cache directives for a Query method, in seconds."""
    max_age: int = 0
    s_max_age: int = 0
    stale_while_revalidate: int = 0
    stale_if_error: int = 0
    public: bool = False
    must_revalidate: bool = False
    immutable: bool = False

    def header(self) -> str:
        parts = ["public" if self.public else "private"]
        if self.max_age > 0:
            parts.append(f"max-age={self.max_age}")
        if self.s_max_age > 0:
            parts.append(f"s-maxage={self.s_max_age}")
        if self.stale_while_revalidate > 0:
            parts.append(f"stale-while-revalidate={self.stale_while_revalidate}")
        if self.stale_if_error > 0:
            parts.append(f"stale-if-error={self.stale_if_error}")
        if self.must_revalidate:
            parts.append("must-revalidate")
        if self.immutable:
            parts.append("immutable")
        return ", ".join(parts)


@dataclass(frozen=True)
class Event(Generic[T]):
    """A streamed value tagged with an SSE event id, for Last-Event-ID resume."""
    value: T
    id: str = ""

    def __post_init__(self) -> None:
        if "\n" in self.id or "\r" in self.id:
            raise ValueError("event id must not contain line breaks")


CallNext = Callable[[Context, Any], Any]
Interceptor = Callable[[Context, Any, CallNext], Any]


# ============================================================
# Handlers
# ============================================================

def _is_context_param(param: inspect.Parameter, hints: dict[str, Any]) -> bool:
    annotation = hints.get(param.name)
    if annotation is Context:
        return True
    return annotation is None and param.name in {"ctx", "context"}


def _check_option(name: str, value: float | None) -> None:
    if value is not None and value < 0:
        raise RegistrationError(f"{name} must not be negative, got {value!r}")


class Handler:
    """Wraps a plain callable and records its request/response types."""
    kind: MethodKind = MethodKind.EXEC
    cache_control: CacheControl | None = None
    max_request_body: int | None = None
    heartbeat: float | None = None

    def __init__(self, fn: Callable[..., Any], *, request: Any = _UNSET, response: Any = _UNSET) -> None:
        if not callable(fn):
            raise RegistrationError(f"handler must be callable, got {type(fn).__name__}")
        self.fn = fn
        self._roles: list[str] = []

        name = getattr(fn, "__qualname__", repr(fn))
        try:
            hints = get_type_hints(fn, include_extras=True)
        except NameError as exc:
            raise RegistrationError(f"cannot resolve annotations of {name}: {exc}") from exc

        inferred_request: Any = None
        positional = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        for param in inspect.signature(fn).parameters.values():
            if param.kind not in positional:
                continue
            if _is_context_param(param, hints):
                self._roles.append("ctx")
                continue
            if "request" in self._roles:
                raise RegistrationError(f"{name} takes more than one request parameter")
            self._roles.append("request")
            inferred_request = hints.get(param.name, Any)

        if request is _UNSET:
            request = inferred_request
        if response is _UNSET:
            if "return" not in hints:
                raise RegistrationError(f"{name} needs a return annotation (or an explicit response=)")
            response = self._response_from_return(hints["return"], name)

        self.request_type: Any = request
        self.response_type: Any = response

    def _response_from_return(self, annotation: Any, name: str) -> Any:
        return None if annotation is type(None) else annotation

    def __call__(self, ctx: Context, request: Any) -> Any:
        args = [ctx if role == "ctx" else request for role in self._roles]
        return self.fn(*args)


class Query(Handler):
    """Read-only unary method served over GET."""
    kind = MethodKind.QUERY

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        request: Any = _UNSET,
        response: Any = _UNSET,
        cache: CacheControl | None = None,
    ) -> None:
        super().__init__(fn, request=request, response=response)
        self.cache_control = cache


class Exec(Handler):
    """Mutating unary method served over POST."""
    kind = MethodKind.EXEC

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        request: Any = _UNSET,
        response: Any = _UNSET,
        max_request_body: int | None = None,
    ) -> None:
        _check_option("max_request_body", max_request_body)
        super().__init__(fn, request=request, response=response)
        self.max_request_body = max_request_body


_ITERATOR_ORIGINS = (
    collections.abc.Iterator,
    collections.abc.Iterable,
    collections.abc.Generator,
)


class Stream(Handler):
    """Server-streaming method: the callable yields response values (or Event[T] for ids)."""
    kind = MethodKind.STREAM

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        request: Any = _UNSET,
        response: Any = _UNSET,
        max_request_body: int | None = None,
        heartbeat: float | None = None,
    ) -> None:
        _check_option("max_request_body", max_request_body)
        _check_option("heartbeat", heartbeat)
        super().__init__(fn, request=request, response=response)
        self.max_request_body = max_request_body
        self.heartbeat = heartbeat

    def _response_from_return(self, annotation: Any, name: str) -> Any:
        if get_origin(annotation) in _ITERATOR_ORIGINS and get_args(annotation):
            item = get_args(annotation)[0]
            if get_origin(item) is Event and get_args(item):
                return get_args(item)[0]
            return item
        raise RegistrationError(f"{name} must be annotated as returning Iterator[T]")

    def __call__(self, ctx: Context, request: Any) -> Iterator[Any]:
        return iter(super().__call__(ctx, request))


# ============================================================
# Method descriptors
# ============================================================

@dataclass(frozen=True)
class MethodDescriptor:
    """An immutable registered method."""
    service: str
    name: str
    kind: MethodKind
    request: Any
    response: Any
    handler: Handler = field(repr=False, compare=False)

    @property
    def key(self) -> str:
        return f"{self.service}.{self.name}"

    @property
    def path(self) -> str:
        return f"/{self.service}/{self.name}"

    @property
    def http_method(self) -> str:
        return _HTTP_METHOD_BY_KIND[self.kind]

    @property
    def streaming(self) -> bool:
        return self.kind in STREAMING_KINDS

    @property
    def cache_control(self) -> CacheControl | None:
        return self.handler.cache_control

    @property
    def max_request_body(self) -> int | None:
        return self.handler.max_request_body

    @property
    def heartbeat(self) -> float | None:
        return self.handler.heartbeat


def _check_name(kind: str, name: str) -> None:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise RegistrationError(f"invalid {kind} name {name!r}: use letters, digits and underscores")


class Service:
    """A named group of methods inside an App."""

    def __init__(self, app: "App", name: str) -> None:
        self.app = app
        self.name = name
        self.interceptors: list[Interceptor] = []
        self._methods: dict[str, MethodDescriptor] = {}

    def register(self, name: str, handler: Handler) -> MethodDescriptor:
        """Add a method; duplicate names and registration after freeze() are errors."""
        _check_name("method", name)
        if not isinstance(handler, Handler):
            raise RegistrationError(
                f"{self.name}.{name}: handler must be created with Query(), Exec(), Stream() or Atom.handler()"
            )
        self.app._ensure_open(f"{self.name}.{name}")
        if name in self._methods:
            raise RegistrationError(f"duplicate method {self.name}.{name}")
        descriptor = MethodDescriptor(
            service=self.name,
            name=name,
            kind=handler.kind,
            request=handler.request_type,
            response=handler.response_type,
            handler=handler,
        )
        self._methods[name] = descriptor
        logger.debug("registered %s (%s)", descriptor.key, descriptor.kind.value)
        return descriptor

    def add_interceptor(self, interceptor: Interceptor) -> None:
        self.app._ensure_open(f"{self.name} interceptor")
        self.interceptors.append(interceptor)

    @property
    def methods(self) -> list[MethodDescriptor]:
        return list(self._methods.values())

    def get(self, name: str) -> MethodDescriptor | None:
        return self._methods.get(name)


class App:
    """Registry of services; frozen once generation or serving begins."""

    def __init__(self, *, field_case: str = "preserve") -> None:
        if field_case not in FIELD_CASES:
            raise ConfigurationError(f"field_case must be one of {sorted(FIELD_CASES)}, got {field_case!r}")
        self.field_case = field_case
        self.interceptors: list[Interceptor] = []
        self._services: dict[str, Service] = {}
        self._frozen = False
        self._descriptions: dict[Any, TypeDescription] = {}

    def _ensure_open(self, what: str) -> None:
        if self._frozen:
            raise RegistrationError(f"cannot register {what}: registry is frozen")

    def service(self, name: str) -> Service:
        """Return the named service, creating it on first use."""
        existing = self._services.get(name)
        if existing is not None:
            return existing
        _check_name("service", name)
        self._ensure_open(f"service {name}")
        created = Service(self, name)
        self._services[name] = created
        return created

    def add_interceptor(self, interceptor: Interceptor) -> None:
        self._ensure_open("app interceptor")
        self.interceptors.append(interceptor)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def services(self) -> list[Service]:
        return list(self._services.values())

    def methods(self) -> list[MethodDescriptor]:
        """Every registered method, sorted by key."""
        collected = [method for svc in self._services.values() for method in svc.methods]
        return sorted(collected, key=lambda method: method.key)

    def lookup(self, service: str, method: str) -> MethodDescriptor | None:
        svc = self._services.get(service)
        return svc.get(method) if svc is not None else None

    def describe(self, tp: Any) -> TypeDescription:
        """Describe a composite type using this app's field case (cached)."""
        try:
            cached = self._descriptions.get(tp)
        except TypeError:
            return describe(tp, field_case=self.field_case)
        if cached is None:
            cached = describe(tp, field_case=self.field_case)
            self._descriptions[tp] = cached
        return cached

    def invoke(self, method: MethodDescriptor, ctx: Context, request: Any) -> Any:
        """Run a method through app interceptors, then service interceptors, then the handler."""
        chain: list[Interceptor] = list(self.interceptors)
        svc = self._services.get(method.service)
        if svc is not None:
            chain.extend(svc.interceptors)

        def call_at(index: int) -> CallNext:
            if index == len(chain):
                return method.handler
            interceptor = chain[index]
            next_call = call_at(index + 1)
            return lambda call_ctx, call_request: interceptor(call_ctx, call_request, next_call)

        return call_at(0)(ctx, request)
