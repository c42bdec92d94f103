"""
Unit tests for settings and server wiring.

Tests cover:
- Environment variables and env files feeding Settings
- Derived probe host and base URL
- ServerOptions built from Settings
- CherryPy configuration and mounting
"""

import cherrypy

from riptide.config import Settings
from riptide.routing.server import configure, server_options
from shop.app import build_app


def test_settings_defaults(monkeypatch, tmp_path) -> None:  # type: ignore[no-untyped-def]
    """Test that Settings has usable defaults without any environment."""
    monkeypatch.chdir(tmp_path)
    settings = Settings()

    assert settings.port == 8080
    assert settings.stream_heartbeat == 30.0
    assert settings.max_request_body == 1 << 20
    assert settings.base_url == "http://127.0.0.1:8080"


def test_settings_read_environment(monkeypatch, tmp_path) -> None:  # type: ignore[no-untyped-def]
    """Test that RIPTIDE_* variables override defaults."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RIPTIDE_HOST", "0.0.0.0")
    monkeypatch.setenv("RIPTIDE_PORT", "9000")
    monkeypatch.setenv("RIPTIDE_MOUNT_PATH", "/rpc/")
    monkeypatch.setenv("RIPTIDE_MASK_INTERNAL_ERRORS", "true")
    settings = Settings()

    assert settings.probe_host == "127.0.0.1"
    assert settings.base_url == "http://127.0.0.1:9000/rpc"
    assert settings.mask_internal_errors is True


def test_settings_read_env_file(monkeypatch, tmp_path) -> None:  # type: ignore[no-untyped-def]
    """Test that riptide.env in the working directory is loaded."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "riptide.env").write_text("RIPTIDE_OUT_DIR=web/rpc\nRIPTIDE_STRIP_PREFIX=shop.api\n", encoding="utf-8")
    settings = Settings()

    assert settings.out_dir == "web/rpc"
    assert settings.strip_prefix == "shop.api"


def test_server_options_follow_settings(monkeypatch, tmp_path) -> None:  # type: ignore[no-untyped-def]
    """Test that stream and body limits flow into ServerOptions."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RIPTIDE_STREAM_HEARTBEAT", "5")
    monkeypatch.setenv("RIPTIDE_MAX_REQUEST_BODY", "1024")
    options = server_options(Settings())

    assert options.stream_heartbeat == 5.0
    assert options.max_request_body == 1024
    assert options.error_transformer is None


def test_configure_mounts_app(monkeypatch, tmp_path) -> None:  # type: ignore[no-untyped-def]
    """Test that configure() sets CherryPy options, mounts the router and freezes the app."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RIPTIDE_PORT", "9123")
    monkeypatch.setenv("RIPTIDE_MOUNT_PATH", "/rpc")
    app, _ = build_app()

    router = configure(app, Settings(), devtools=True)
    try:
        assert app.frozen
        assert app.lookup("Devtools", "Ping") is not None
        assert cherrypy.config["server.socket_port"] == 9123
        assert cherrypy.tree.apps["/rpc"].root is router
    finally:
        cherrypy.tree.apps.pop("/rpc", None)
