"""CherryPy server entrypoint for a riptide App."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import cherrypy

from riptide.config import Settings
from riptide.devtools import register_devtools
from riptide.errors import ErrorTransformer
from riptide.routing.endpoints import RpcRouter, ServerOptions, mount_rpc

if TYPE_CHECKING:
    from riptide.registry import App

logger = logging.getLogger(__name__)


def server_options(settings: Settings, error_transformer: ErrorTransformer | None = None) -> ServerOptions:
    return ServerOptions(
        max_request_body=settings.max_request_body,
        mask_internal_errors=settings.mask_internal_errors,
        stream_heartbeat=settings.stream_heartbeat,
        stream_write_timeout=settings.stream_write_timeout,
        error_transformer=error_transformer,
    )


def configure(
    app: "App",
    settings: Settings | None = None,
    *,
    devtools: bool = False,
    error_transformer: ErrorTransformer | None = None,
) -> RpcRouter:
    """Apply CherryPy config and mount the app; the app is frozen afterwards."""
    settings = settings or Settings()
    if devtools:
        register_devtools(app, port=settings.port)

    cherrypy.config.update({
        "server.socket_host": settings.host,
        "server.socket_port": settings.port,
        # cheroot applies the socket timeout to writes too (slow SSE readers)
        "server.socket_timeout": settings.stream_write_timeout,
        "server.max_request_body_size": 0,
        "tools.trailing_slash.on": False,
        "engine.autoreload.on": False,
        "log.screen": settings.env == "dev",
    })
    return mount_rpc(app, mount_path=settings.mount_path, options=server_options(settings, error_transformer))


def serve(
    app: "App",
    settings: Settings | None = None,
    *,
    devtools: bool = False,
    error_transformer: ErrorTransformer | None = None,
) -> None:
    """Configure, start and block until the CherryPy engine exits."""
    settings = settings or Settings()
    configure(app, settings, devtools=devtools, error_transformer=error_transformer)
    logger.info("serving %d methods on %s:%d", len(app.methods()), settings.host, settings.port)
    cherrypy.engine.start()
    cherrypy.engine.block()
