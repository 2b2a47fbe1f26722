"""YAML configuration for phases, paths, install limits and runtime rules."""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .engine.install import DEFAULT_INSTALL_TIMEOUT
from .orchestrator import PRECONDITIONS

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "srcpatch.yaml"
CONFIG_ENV_VAR = "SRCPATCH_CONFIG"
INSTALL_TIMEOUT_ENV_VAR = "SRCPATCH_INSTALL_TIMEOUT"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "paths": {
        "report": ".srcpatch/last-run.json",
        "backups": ".srcpatch/backups",
    },
    "phases": {
        "source": {
            "catalog": "builtin:source",
            "description": "Patch TypeScript sources before the build.",
        },
        "dist": {
            "catalog": "builtin:dist",
            "precondition": "writable",
            "description": "Patch the compiled bundle of an installed package.",
        },
        "extensions": {
            "catalog": "builtin:extensions",
            "description": "Patch bundled extensions.",
        },
    },
    "install": {
        "timeout": DEFAULT_INSTALL_TIMEOUT,
    },
    "logging": {
        "level": "WARNING",
    },
    "runtime": {
        "rules": ["tls_probe", "stream_recovery", "assistant_turn"],
        "host_config": "~/.openclaw/config.yaml",
        "modules": {},
    },
}


class ConfigError(ValueError):
    """Raised when the configuration file is missing or malformed."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            base[key] = _merge(current, value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _in_file_order(merged: Dict[str, Any], listed: Mapping[str, Any]) -> Dict[str, Any]:
    """Phases named in the config file run first, in file order; other defaults follow."""
    ordered = {name: merged[name] for name in listed}
    ordered.update((name, entry) for name, entry in merged.items() if name not in ordered)
    return ordered


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return data


def resolve_config_path(config: Optional[str | Path] = None) -> Optional[Path]:
    """Pick the explicit path, then ``$SRCPATCH_CONFIG``, then ``./srcpatch.yaml``."""
    if config:
        return Path(config).expanduser()
    env_value = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_value:
        return Path(env_value).expanduser()
    candidate = Path.cwd() / DEFAULT_CONFIG_NAME
    return candidate if candidate.exists() else None


@dataclass(frozen=True, slots=True)
class PhaseSettings:
    """One named phase and the catalog it runs."""

    name: str
    catalog: str
    precondition: Optional[str] = None
    description: str = ""


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    """Configuration consumed by the runtime interceptor rules."""

    rules: tuple[str, ...] = ()
    host_config: Optional[Path] = None
    modules: Dict[str, str] = field(default_factory=dict)

    def module_for(self, rule_id: str, default: str) -> str:
        return self.modules.get(rule_id) or default


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration with paths anchored to the config directory."""

    base_dir: Path
    report_path: Path
    backup_dir: Path
    phases: Dict[str, PhaseSettings]
    install_timeout: float
    log_level: str
    runtime: RuntimeSettings
    config_path: Optional[Path] = None

    def phase(self, name: str) -> PhaseSettings:
        try:
            return self.phases[name]
        except KeyError:
            known = ", ".join(self.phases) or "none"
            raise ConfigError(f"Unknown phase '{name}' (configured: {known})") from None

    @classmethod
    def from_config(cls, data: Mapping[str, Any], *, config_path: Optional[Path] = None) -> "Settings":
        base_dir = (config_path.parent if config_path is not None else Path.cwd()).resolve()

        def anchored(value: Any, label: str) -> Path:
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"'{label}' must be a non-empty path string")
            candidate = Path(value.strip()).expanduser()
            return candidate if candidate.is_absolute() else base_dir / candidate

        paths_cfg = data.get("paths") or {}
        phases_cfg = data.get("phases") or {}
        if not isinstance(phases_cfg, Mapping):
            raise ConfigError("'phases' must be a mapping of phase name to settings")

        phases: Dict[str, PhaseSettings] = {}
        for name, entry in phases_cfg.items():
            if entry is None:
                continue
            if isinstance(entry, str):
                entry = {"catalog": entry}
            if not isinstance(entry, Mapping) or not entry.get("catalog"):
                raise ConfigError(f"Phase '{name}' needs a 'catalog' reference")
            precondition = entry.get("precondition") or None
            if precondition is not None and precondition not in PRECONDITIONS:
                raise ConfigError(
                    f"Phase '{name}' has unknown precondition '{precondition}' "
                    f"(expected one of: {', '.join(PRECONDITIONS)})"
                )
            phases[str(name)] = PhaseSettings(
                name=str(name),
                catalog=str(entry["catalog"]),
                precondition=precondition,
                description=str(entry.get("description") or ""),
            )

        install_cfg = data.get("install") or {}
        timeout_value = os.environ.get(INSTALL_TIMEOUT_ENV_VAR) or install_cfg.get("timeout")
        try:
            install_timeout = float(timeout_value if timeout_value is not None else DEFAULT_INSTALL_TIMEOUT)
        except (TypeError, ValueError) as error:
            raise ConfigError(f"Install timeout must be a number, got {timeout_value!r}") from error
        if install_timeout <= 0:
            raise ConfigError("Install timeout must be positive")

        logging_cfg = data.get("logging") or {}
        log_level = str(logging_cfg.get("level") or "WARNING").upper()

        runtime_cfg = data.get("runtime") or {}
        host_config = runtime_cfg.get("host_config")
        modules = runtime_cfg.get("modules") or {}
        if not isinstance(modules, Mapping):
            raise ConfigError("'runtime.modules' must map rule ids to module names")
        runtime = RuntimeSettings(
            rules=tuple(str(rule) for rule in runtime_cfg.get("rules") or ()),
            host_config=Path(str(host_config)).expanduser() if host_config else None,
            modules={str(key): str(value) for key, value in modules.items()},
        )

        return cls(
            base_dir=base_dir,
            report_path=anchored(paths_cfg.get("report"), "paths.report"),
            backup_dir=anchored(paths_cfg.get("backups"), "paths.backups"),
            phases=phases,
            install_timeout=install_timeout,
            log_level=log_level,
            runtime=runtime,
            config_path=config_path,
        )


def load_settings(config: Optional[str | Path] = None) -> Settings:
    """Merge the config file (when one is found) over the defaults."""
    data = copy_config_template()
    config_path = resolve_config_path(config)
    if config_path is not None:
        file_data = read_config_file(config_path)
        _merge(data, file_data)
        listed = file_data.get("phases")
        if isinstance(listed, Mapping) and isinstance(data.get("phases"), dict):
            data["phases"] = _in_file_order(data["phases"], listed)
        LOGGER.debug("Loaded configuration from %s", config_path)
    return Settings.from_config(data, config_path=config_path)


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "INSTALL_TIMEOUT_ENV_VAR",
    "PhaseSettings",
    "RuntimeSettings",
    "Settings",
    "copy_config_template",
    "load_settings",
    "read_config_file",
    "resolve_config_path",
    "write_config",
]
