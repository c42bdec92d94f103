"""Diagnostic `Devtools` service: Ping, Info and Status."""
from __future__ import annotations

import gc
import os
import platform
import resource
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from riptide.registry import Query, Service

if TYPE_CHECKING:
    from riptide.registry import App

SERVICE_NAME = "Devtools"
_STARTED = time.monotonic()


@dataclass
class PingResponse:
    ok: bool = True


@dataclass
class MemoryStats:
    max_rss_kb: int
    gc_objects: int
    gc_collections: list[int] = field(default_factory=list)


@dataclass
class InfoResponse:
    """Process metrics for the running server."""
    port: int
    python_version: str
    implementation: str
    pid: int
    thread_count: int
    cpu_count: int
    uptime_seconds: float
    memory: MemoryStats


@dataclass
class MethodInfo:
    name: str
    kind: str
    http_method: str
    path: str


@dataclass
class ServiceInfo:
    name: str
    methods: list[MethodInfo]


@dataclass
class StatusResponse:
    """Every registered method, grouped by service."""
    ok: bool
    port: int
    services: list[ServiceInfo]


def _memory_stats() -> MemoryStats:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    max_rss = usage.ru_maxrss // 1024 if sys.platform == "darwin" else usage.ru_maxrss
    return MemoryStats(
        max_rss_kb=int(max_rss),
        gc_objects=len(gc.get_objects()),
        gc_collections=[generation["collections"] for generation in gc.get_stats()],
    )


def collect_status(app: "App", port: int = 0) -> StatusResponse:
    grouped: dict[str, list[MethodInfo]] = {}
    for method in app.methods():
        grouped.setdefault(method.service, []).append(
            MethodInfo(
                name=method.name,
                kind=method.kind.value,
                http_method=method.http_method,
                path=method.path,
            )
        )
    return StatusResponse(
        ok=True,
        port=port,
        services=[ServiceInfo(name=name, methods=grouped[name]) for name in sorted(grouped)],
    )


def register_devtools(app: "App", *, port: int = 0) -> Service:
    """Register Devtools.Ping / Devtools.Info / Devtools.Status on the app."""
    service = app.service(SERVICE_NAME)

    def ping() -> PingResponse:
        return PingResponse(ok=True)

    def info() -> InfoResponse:
        return InfoResponse(
            port=port,
            python_version=platform.python_version(),
            implementation=platform.python_implementation(),
            pid=os.getpid(),
            thread_count=threading.active_count(),
            cpu_count=os.cpu_count() or 1,
            uptime_seconds=round(time.monotonic() - _STARTED, 3),
            memory=_memory_stats(),
        )

    def status() -> StatusResponse:
        return collect_status(app, port)

    service.register("Ping", Query(ping))
    service.register("Info", Query(info))
    service.register("Status", Query(status))
    return service
