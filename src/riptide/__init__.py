"""riptide: typed RPC services with generated TypeScript clients."""
from riptide.atom import Atom, Overflow, Subscription
from riptide.errors import (
    CollisionError,
    ConfigurationError,
    ErrorCode,
    ExtractionError,
    RegistrationError,
    RiptideError,
    RpcError,
    rpc_error,
)
from riptide.registry import (
    App,
    CacheControl,
    Context,
    Event,
    Exec,
    MethodDescriptor,
    MethodKind,
    Query,
    Service,
    Stream,
)

__version__ = "0.1.0"

__all__ = [
    "App",
    "Atom",
    "CacheControl",
    "CollisionError",
    "ConfigurationError",
    "Context",
    "ErrorCode",
    "Event",
    "Exec",
    "ExtractionError",
    "MethodDescriptor",
    "MethodKind",
    "Overflow",
    "Query",
    "RegistrationError",
    "RiptideError",
    "RpcError",
    "Service",
    "Stream",
    "Subscription",
    "rpc_error",
]
