"""Error types shared by the generator, the registry and the runtime server."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

logger = logging.getLogger(__name__)


# ============================================================
# Generation / registration errors
# ============================================================

class RiptideError(Exception):
    """Base class for every error raised by riptide itself."""


class RegistrationError(RiptideError):
    """A method could not be added to the registry."""


class ConfigurationError(RiptideError):
    """An invalid generator or server configuration was supplied."""


class ExtractionError(RiptideError):
    """A type reachable from a registered method cannot be described."""

    def __init__(self, message: str, *, field_path: str = "") -> None:
        self.field_path = field_path
        self.reason = message
        if field_path:
            message = f"{field_path}: {message}"
        super().__init__(message)


class CollisionError(RiptideError):
    """Two distinct origin types resolved to the same emitted name."""

    def __init__(self, name: str, first_origin: str, second_origin: str) -> None:
        self.name = name
        self.origins = (first_origin, second_origin)
        super().__init__(
            "Type name collision detected.\n"
            f"Both types resolve to the emitted name: {name}\n"
            f" - {first_origin}\n"
            f" - {second_origin}\n"
            "Set a strip prefix that tells the modules apart, or rename one of the types."
        )


# ============================================================
# Runtime call errors
# ============================================================

class ErrorCode(str, Enum):
    """Machine-readable error codes carried on the wire."""
    INVALID_ARGUMENT = "invalid_argument"
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    UNAVAILABLE = "unavailable"
    CANCELED = "canceled"
    INTERNAL = "internal"


_HTTP_STATUS_BY_CODE: dict[str, int] = {
    ErrorCode.INVALID_ARGUMENT.value: 400,
    ErrorCode.UNAUTHENTICATED.value: 401,
    ErrorCode.PERMISSION_DENIED.value: 403,
    ErrorCode.NOT_FOUND.value: 404,
    ErrorCode.METHOD_NOT_ALLOWED.value: 405,
    ErrorCode.UNAVAILABLE.value: 503,
    # nginx "client closed request"
    ErrorCode.CANCELED.value: 499,
    ErrorCode.INTERNAL.value: 500,
}


def http_status_for(code: ErrorCode | str) -> int:
    """Map an error code to its HTTP status (unknown codes are 500)."""
    key = code.value if isinstance(code, ErrorCode) else str(code)
    return _HTTP_STATUS_BY_CODE.get(key, 500)


@dataclass(eq=False)
class RpcError(RiptideError):
    """Structured call error: code, message and optional details."""
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.code, ErrorCode):
            self.code = self.code.value
        if self.details is None:
            self.details = {}
        super().__init__(f"{self.code}: {self.message}")

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @property
    def http_status(self) -> int:
        return http_status_for(self.code)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: {code, message, details}."""
        return {"code": self.code, "message": self.message, "details": dict(self.details)}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RpcError":
        """Rebuild an error from its wire shape, tolerating missing keys."""
        details = payload.get("details") or {}
        if not isinstance(details, dict):
            details = {"value": details}
        return cls(
            code=str(payload.get("code") or "unknown"),
            message=str(payload.get("message") or "Unknown error"),
            details=details,
        )


def rpc_error(code: ErrorCode, message: str, **details: Any) -> RpcError:
    """Shorthand constructor used by handlers."""
    return RpcError(code.value, message, dict(details))


ErrorTransformer = Callable[[BaseException], "RpcError | None"]


def _validation_details(exc: Any) -> dict[str, Any]:
    """Flatten pydantic validation errors into {field.path: message}."""
    details: dict[str, Any] = {}
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        details[location] = item.get("msg", "invalid")
    return details


def default_error_transformer(exc: BaseException) -> RpcError:
    """Map an arbitrary exception raised by a handler onto an RpcError."""
    if isinstance(exc, RpcError):
        return exc
    if isinstance(exc, ValidationError):
        return RpcError(ErrorCode.INVALID_ARGUMENT.value, "validation failed", _validation_details(exc))
    if isinstance(exc, TimeoutError):
        return RpcError(ErrorCode.UNAVAILABLE.value, "deadline exceeded")
    if isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        first = default_error_transformer(exc.exceptions[0])
        message = "; ".join(str(inner) for inner in exc.exceptions)
        return RpcError(first.code, message, dict(first.details))
    return RpcError(ErrorCode.INTERNAL.value, str(exc) or exc.__class__.__name__)


def transform_error(
    exc: BaseException,
    transformer: ErrorTransformer | None = None,
    *,
    mask_internal: bool = False,
) -> RpcError:
    """Apply a custom transformer first, then the default mapping."""
    mapped: RpcError | None = None
    if transformer is not None:
        mapped = transformer(exc)
    if mapped is None:
        mapped = default_error_transformer(exc)
    if mapped.code == ErrorCode.INTERNAL.value:
        logger.error("internal error: %s", exc, exc_info=exc)
        if mask_internal:
            mapped = RpcError(mapped.code, "internal server error")
    return mapped
