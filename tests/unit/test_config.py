from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from srcpatch.config import (
    DEFAULT_CONFIG_TEMPLATE,
    ConfigError,
    copy_config_template,
    load_settings,
    resolve_config_path,
    write_config,
)


def test_defaults_without_config_file(isolated_config: Path) -> None:
    settings = load_settings()

    assert settings.config_path is None
    assert list(settings.phases) == ["source", "dist", "extensions"]
    assert settings.phase("dist").precondition == "writable"
    assert settings.phase("source").catalog == "builtin:source"
    assert settings.report_path == isolated_config.parent.resolve() / ".srcpatch" / "last-run.json"
    assert settings.runtime.rules == ("tls_probe", "stream_recovery", "assistant_turn")
    assert settings.log_level == "WARNING"


def test_copy_is_independent_of_template() -> None:
    data = copy_config_template()
    data["phases"]["dist"]["catalog"] = "changed"

    assert DEFAULT_CONFIG_TEMPLATE["phases"]["dist"]["catalog"] == "builtin:dist"
    assert set(data["paths"]) == {"report", "backups"}


def test_config_file_is_merged_over_defaults(isolated_config: Path) -> None:
    write_config(
        isolated_config,
        {
            "paths": {"report": "state/report.json"},
            "phases": {"dist": {"catalog": "catalogs/dist.yaml"}, "extensions": None, "local": "local.yaml"},
            "install": {"timeout": 30},
            "logging": {"level": "debug"},
            "runtime": {"modules": {"tls_probe": "websockets.sync.client"}},
        },
    )

    settings = load_settings()

    assert settings.config_path == isolated_config
    assert list(settings.phases) == ["dist", "local", "source"]
    assert settings.phase("dist").catalog == "catalogs/dist.yaml"
    assert settings.phase("dist").precondition == "writable"
    assert settings.phase("local").catalog == "local.yaml"
    assert settings.report_path == isolated_config.parent.resolve() / "state" / "report.json"
    assert settings.backup_dir == isolated_config.parent.resolve() / ".srcpatch" / "backups"
    assert settings.install_timeout == 30.0
    assert settings.log_level == "DEBUG"
    assert settings.runtime.module_for("tls_probe", "websocket") == "websockets.sync.client"
    assert settings.runtime.module_for("assistant_turn", "openclaw.agents.turns") == "openclaw.agents.turns"


def test_config_file_sets_phase_order(isolated_config: Path) -> None:
    write_config(
        isolated_config,
        {"phases": {"extensions": {"description": "Bundled extensions first."}, "dist": {}, "source": {}}},
    )

    settings = load_settings()

    assert list(settings.phases) == ["extensions", "dist", "source"]
    assert settings.phase("dist").precondition == "writable"
    assert settings.phase("source").catalog == "builtin:source"
    assert settings.phase("extensions").description == "Bundled extensions first."


def test_config_lookup_order(isolated_config: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_config_path() is None

    isolated_config.write_text("{}\n", encoding="utf-8")
    assert resolve_config_path() == Path.cwd() / "srcpatch.yaml"

    env_config = tmp_path / "env.yaml"
    monkeypatch.setenv("SRCPATCH_CONFIG", str(env_config))
    assert resolve_config_path() == env_config
    assert resolve_config_path(tmp_path / "explicit.yaml") == tmp_path / "explicit.yaml"


def test_install_timeout_env_override(isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SRCPATCH_INSTALL_TIMEOUT", "12.5")

    assert load_settings().install_timeout == 12.5


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"install": {"timeout": 0}}, "must be positive"),
        ({"install": {"timeout": "soon"}}, "must be a number"),
        ({"phases": {"dist": {"precondition": "root"}}}, "unknown precondition"),
        ({"phases": {"nightly": {"description": "no catalog"}}}, "needs a 'catalog'"),
        ({"paths": {"report": ""}}, "paths.report"),
        ({"runtime": {"modules": ["websocket"]}}, "runtime.modules"),
    ],
)
def test_invalid_settings_raise_config_error(isolated_config: Path, payload: dict, message: str) -> None:
    isolated_config.write_text(yaml.safe_dump(payload), encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        load_settings()


def test_missing_or_malformed_file(isolated_config: Path, tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_settings(tmp_path / "absent.yaml")

    isolated_config.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_settings()

    isolated_config.write_text("phases: [\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_settings()


def test_unknown_phase_lists_configured_ones(isolated_config: Path) -> None:
    with pytest.raises(ConfigError, match="configured: source, dist, extensions"):
        load_settings().phase("nightly")
