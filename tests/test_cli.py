from __future__ import annotations

from pathlib import Path

import yaml
from typer.testing import CliRunner

from srcpatch.cli import app
from srcpatch.runtime.bootstrap import PTH_FILENAME, PTH_LINE

runner = CliRunner()


def _write_catalog(path: Path, units: list[dict]) -> Path:
    path.write_text(yaml.safe_dump({"units": units}, sort_keys=False), encoding="utf-8")
    return path


def _literal_unit(unit_id: str, target: str, old: str, new: str, marker: str) -> dict:
    return {
        "id": unit_id,
        "title": f"unit {unit_id}",
        "marker": marker,
        "targets": [{"path": target, "edits": [{"alternatives": [{"literal": old, "template": new}]}]}],
    }


def _three_unit_catalog(config_dir: Path) -> Path:
    return _write_catalog(
        config_dir / "catalog.yaml",
        [
            _literal_unit("A", "a.js", "alpha", "alpha /*A*/", "/*A*/"),
            _literal_unit("B", "b.js", "beta", "beta /*B*/", "/*B*/"),
            _literal_unit("C", "c.js", "gamma", "gamma /*C*/", "/*C*/"),
        ],
    )


def test_phase_exit_code_is_failure_count(isolated_config: Path, target_tree) -> None:
    catalog = _three_unit_catalog(isolated_config.parent)
    target_tree.write("a.js", "alpha\n")
    target_tree.write("b.js", "drifted\n")
    target_tree.write("c.js", "gamma\n")

    result = runner.invoke(app, ["dist", str(target_tree.root), "--catalog", str(catalog)])

    assert result.exit_code == 1, result.output
    assert "[OK] A: patched a.js" in result.output
    assert "[FAIL] B:" in result.output
    assert "[OK] C: patched c.js" in result.output
    assert "Applied: 2  Skipped: 0  Failed: 1" in result.output
    assert target_tree.read("c.js") == "gamma /*C*/\n"


def test_second_run_reports_everything_skipped(isolated_config: Path, target_tree) -> None:
    catalog = _three_unit_catalog(isolated_config.parent)
    for name, word in (("a.js", "alpha"), ("b.js", "beta"), ("c.js", "gamma")):
        target_tree.write(name, f"{word}\n")

    first = runner.invoke(app, ["source", str(target_tree.root), "--catalog", str(catalog)])
    second = runner.invoke(app, ["source", str(target_tree.root), "--catalog", str(catalog)])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert second.output.count("[SKIP]") == 3
    assert "Applied: 0  Skipped: 3  Failed: 0" in second.output


def test_dry_run_writes_nothing(isolated_config: Path, target_tree) -> None:
    catalog = _three_unit_catalog(isolated_config.parent)
    target_tree.write("a.js", "alpha\n")
    before = target_tree.snapshot()

    result = runner.invoke(
        app,
        ["run", "extensions", str(target_tree.root), "--catalog", str(catalog), "--unit", "A", "--dry-run"],
    )

    assert result.exit_code == 0, result.output
    assert "[OK] A:" in result.output
    assert "Dry run: no files were written." in result.output
    assert target_tree.snapshot() == before
    assert not (isolated_config.parent / ".srcpatch" / "last-run.json").exists()


def test_unknown_unit_and_phase_are_reported(isolated_config: Path, target_tree) -> None:
    catalog = _three_unit_catalog(isolated_config.parent)

    unknown_unit = runner.invoke(app, ["dist", str(target_tree.root), "--catalog", str(catalog), "-u", "Z"])
    unknown_phase = runner.invoke(app, ["run", "nightly", str(target_tree.root)])

    assert unknown_unit.exit_code == 1
    assert "Unknown unit id(s)" in unknown_unit.output
    assert unknown_phase.exit_code == 1
    assert "Unknown phase 'nightly'" in unknown_phase.output


def test_missing_root_is_rejected(isolated_config: Path, tmp_path: Path) -> None:
    result = runner.invoke(app, ["dist", str(tmp_path / "nowhere")])

    assert result.exit_code != 0
    assert "Target root not found" in result.output


def test_status_shows_last_run(isolated_config: Path, target_tree) -> None:
    catalog = _three_unit_catalog(isolated_config.parent)
    target_tree.write("a.js", "alpha\n")
    target_tree.write("b.js", "drifted\n")

    empty = runner.invoke(app, ["status"])
    runner.invoke(app, ["dist", str(target_tree.root), "--catalog", str(catalog), "-u", "A", "-u", "B"])
    result = runner.invoke(app, ["status"])

    assert "No runs recorded yet" in empty.output
    assert result.exit_code == 0, result.output
    assert "dist: Applied: 1  Skipped: 0  Failed: 1" in result.output
    assert "[failed] B:" in result.output
    assert "[applied] A:" not in result.output
    assert "[applied] A:" in runner.invoke(app, ["status", "-v"]).output


def test_init_writes_default_config(isolated_config: Path) -> None:
    first = runner.invoke(app, ["init"])
    again = runner.invoke(app, ["init"])
    forced = runner.invoke(app, ["init", "--force"])

    assert first.exit_code == 0, first.output
    assert "Created configuration at srcpatch.yaml." in first.output
    assert again.exit_code != 0
    assert "already exists" in again.output
    assert forced.exit_code == 0
    assert "Updated configuration" in forced.output
    data = yaml.safe_load(isolated_config.read_text(encoding="utf-8"))
    assert list(data["phases"]) == ["source", "dist", "extensions"]


def test_list_shows_builtin_units(isolated_config: Path) -> None:
    result = runner.invoke(app, ["list", "source"])

    assert result.exit_code == 0, result.output
    assert "- FIX-A1:" in result.output
    assert "- FIX-A3:" in result.output
    assert "requires FIX-A1" in result.output
    assert "files: src/gateway/probe.ts" in result.output


def test_all_runs_configured_phases_in_order(isolated_config: Path, target_tree) -> None:
    first = _write_catalog(
        isolated_config.parent / "first.yaml",
        [_literal_unit("A", "a.js", "alpha", "alpha /*A*/", "/*A*/")],
    )
    second = _write_catalog(
        isolated_config.parent / "second.yaml",
        [_literal_unit("B", "b.js", "beta", "beta /*B*/", "/*B*/")],
    )
    isolated_config.write_text(
        yaml.safe_dump(
            {
                "phases": {
                    "source": None,
                    "dist": None,
                    "extensions": None,
                    "first": {"catalog": "first.yaml"},
                    "second": {"catalog": "second.yaml", "precondition": "writable"},
                }
            },
            sort_keys=False,
        ),
        encoding="utf-8",
    )
    target_tree.write("a.js", "alpha\n")
    target_tree.write("b.js", "drifted\n")

    result = runner.invoke(app, ["all", str(target_tree.root)])

    assert result.exit_code == 1, result.output
    assert result.output.index("-- first summary --") < result.output.index("-- second summary --")
    assert "-- Overall --" in result.output
    assert "Phases: 2/2  Applied: 1  Skipped: 0  Failed: 1" in result.output


def test_all_counts_unloadable_catalog_and_keeps_going(isolated_config: Path, target_tree) -> None:
    _write_catalog(
        isolated_config.parent / "one.yaml",
        [
            _literal_unit("A", "a.js", "alpha", "alpha /*A*/", "/*A*/"),
            _literal_unit("B", "b.js", "beta", "beta /*B*/", "/*B*/"),
        ],
    )
    isolated_config.write_text(
        yaml.safe_dump(
            {
                "phases": {
                    "source": None,
                    "dist": None,
                    "extensions": None,
                    "one": {"catalog": "one.yaml"},
                    "two": {"catalog": "missing.yaml"},
                }
            },
            sort_keys=False,
        ),
        encoding="utf-8",
    )
    target_tree.write("a.js", "drifted\n")
    target_tree.write("b.js", "drifted\n")

    result = runner.invoke(app, ["all", str(target_tree.root)])

    assert result.exit_code == 3, result.output
    assert "-- one summary --" in result.output
    assert "Failed to load catalog for phase 'two'" in result.output
    assert "-- Overall --" in result.output
    assert "Phases: 1/2  Applied: 0  Skipped: 0  Failed: 3" in result.output


def test_rollback_restores_backed_up_files(isolated_config: Path, target_tree) -> None:
    unit = _literal_unit("A", "a.js", "alpha", "alpha /*A*/", "/*A*/")
    unit["backup"] = True
    catalog = _write_catalog(isolated_config.parent / "catalog.yaml", [unit])
    target_tree.write("a.js", "alpha\n")

    runner.invoke(app, ["dist", str(target_tree.root), "--catalog", str(catalog)])
    assert target_tree.read("a.js") == "alpha /*A*/\n"

    result = runner.invoke(app, ["rollback", "dist", str(target_tree.root)])

    assert result.exit_code == 0, result.output
    assert "Restored 1 file(s):" in result.output
    assert target_tree.read("a.js") == "alpha\n"


def test_bad_config_exits_with_error(isolated_config: Path, target_tree) -> None:
    isolated_config.write_text("install:\n  timeout: -5\n", encoding="utf-8")

    result = runner.invoke(app, ["dist", str(target_tree.root)])

    assert result.exit_code == 1
    assert "Failed to load configuration" in result.output


def test_runtime_install_hook_writes_pth(tmp_path: Path) -> None:
    site_dir = tmp_path / "site-packages"
    site_dir.mkdir()

    result = runner.invoke(app, ["runtime", "install-hook", str(site_dir)])
    missing = runner.invoke(app, ["runtime", "install-hook", str(tmp_path / "absent")])

    assert result.exit_code == 0, result.output
    assert (site_dir / PTH_FILENAME).read_text(encoding="utf-8") == PTH_LINE
    assert missing.exit_code == 1
    assert "Failed to write startup hook" in missing.output


def test_runtime_rules_lists_registered_rules(isolated_config: Path, tmp_path: Path) -> None:
    host_config = tmp_path / "host.yaml"
    host_config.write_text("gateway:\n  tls:\n    enabled: true\n", encoding="utf-8")
    isolated_config.write_text(
        yaml.safe_dump({"runtime": {"host_config": str(host_config)}}),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["runtime", "rules"])

    assert result.exit_code == 0, result.output
    assert "- tls_probe: websocket.create_connection [pending]" in result.output
    assert "- assistant_turn: openclaw.agents.turns.assess_last_assistant_message [pending]" in result.output
    assert "Loaded 3/3 rules (0 failed)" in result.output
