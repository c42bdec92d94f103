"""
Unit tests for the riptide command line.

Tests cover:
- `routes` text and JSON output
- `gen` writing files, honouring settings and reporting stale output
- Error reporting for bad targets
"""

import json

from riptide.cli.main import main


def test_routes_lists_methods(capsys) -> None:  # type: ignore[no-untyped-def]
    """Test that `routes` prints each service and its methods."""
    assert main(["routes", "shop.app:make_app"]) == 0

    out = capsys.readouterr().out
    assert out.splitlines()[0] == "Users"
    assert "/Widgets/Get" in out
    assert "atom" in out


def test_routes_json(capsys) -> None:  # type: ignore[no-untyped-def]
    """Test that `routes --json` prints one row per method."""
    assert main(["routes", "shop.app:make_app", "--json"]) == 0

    rows = json.loads(capsys.readouterr().out)
    assert {"key": "Widgets.Live", "kind": "atom", "method": "GET", "path": "/Widgets/Live"} in rows
    assert len(rows) == 7


def test_gen_writes_and_checks(tmp_path, capsys) -> None:  # type: ignore[no-untyped-def]
    """Test that `gen` writes files and `gen --check` detects drift."""
    out_dir = tmp_path / "rpc"
    base = ["gen", "shop.app:make_app", "-o", str(out_dir), "--strip-prefix", "shop.api", "--flavor", "zod"]

    assert main(base) == 0
    assert sorted(path.name for path in out_dir.iterdir()) == ["client.ts", "manifest.ts", "schemas.zod.ts", "types.ts"]
    assert "wrote 4 files" in capsys.readouterr().out

    assert main([*base, "--check"]) == 0
    assert "up to date" in capsys.readouterr().out

    (out_dir / "types.ts").write_text("// stale\n", encoding="utf-8")
    assert main([*base, "--check"]) == 1
    assert "  - types.ts" in capsys.readouterr().err


def test_gen_uses_settings_defaults(tmp_path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    """Test that RIPTIDE_OUT_DIR and RIPTIDE_STRIP_PREFIX apply when flags are absent."""
    monkeypatch.setenv("RIPTIDE_OUT_DIR", str(tmp_path / "web"))
    monkeypatch.setenv("RIPTIDE_STRIP_PREFIX", "shop.api")

    assert main(["gen", "shop.app:make_app", "--no-client"]) == 0
    assert "export interface v1_User {" in (tmp_path / "web" / "types.ts").read_text(encoding="utf-8")
    assert not (tmp_path / "web" / "client.ts").exists()


def test_gen_reports_bad_target(tmp_path, capsys) -> None:  # type: ignore[no-untyped-def]
    """Test that a missing app attribute is reported and exits 1."""
    assert main(["gen", "shop.app:missing", "-o", str(tmp_path)]) == 1
    assert "riptide: shop.app has no attribute 'missing'" in capsys.readouterr().err


def test_gen_rejects_bad_type_mapping(tmp_path, capsys) -> None:  # type: ignore[no-untyped-def]
    """Test that a malformed --type-map value is reported."""
    assert main(["gen", "shop.app:make_app", "-o", str(tmp_path), "--type-map", "nonsense"]) == 1
    assert "--type-map expects" in capsys.readouterr().err
