"""Load the interceptor rules into a host interpreter."""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from ..config import ConfigError, RuntimeSettings, load_settings
from .interceptor import LOG_PREFIX, PROCESS_REGISTRY, InstallRegistry, RuntimeInterceptor

LOGGER = logging.getLogger(__name__)

RULES_PACKAGE = "srcpatch.runtime.rules"
RULE_MODULES: tuple[str, ...] = ("tls_probe", "stream_recovery", "assistant_turn")
PTH_FILENAME = "srcpatch-runtime.pth"
PTH_LINE = "import srcpatch.runtime.bootstrap as _srcpatch_rt; _srcpatch_rt.install_from_environment()\n"


@dataclass(slots=True)
class BootstrapReport:
    """Which rule modules were loaded, skipped or failed."""

    loaded: list[str] = field(default_factory=list)
    inactive: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.loaded) + len(self.inactive) + len(self.missing) + len(self.failed)


def install(
    *,
    registry: Optional[InstallRegistry] = None,
    settings: Optional[RuntimeSettings] = None,
    interceptor: Optional[RuntimeInterceptor] = None,
    rule_modules: Optional[Sequence[str]] = None,
    activate: bool = True,
) -> tuple[RuntimeInterceptor, BootstrapReport]:
    """Import each rule module in order and let it register its rules.

    A missing rule module is skipped and a failing one is logged; neither
    prevents the remaining rules from loading.
    """
    interceptor = interceptor or RuntimeInterceptor(registry if registry is not None else PROCESS_REGISTRY)
    settings = settings or RuntimeSettings(rules=RULE_MODULES)
    names = tuple(rule_modules) if rule_modules is not None else (settings.rules or RULE_MODULES)
    report = BootstrapReport()

    for name in names:
        module_name = f"{RULES_PACKAGE}.{name}"
        try:
            module = importlib.import_module(module_name)
        except ModuleNotFoundError as error:
            if error.name != module_name:
                LOGGER.error("%s FAILED: %s (%s)", LOG_PREFIX, name, error)
                report.failed.append(name)
            else:
                LOGGER.warning("%s SKIP (not found): %s", LOG_PREFIX, name)
                report.missing.append(name)
            continue
        except Exception as error:  # noqa: BLE001 - one broken rule must not block the rest
            LOGGER.error("%s FAILED: %s (%s)", LOG_PREFIX, name, error)
            report.failed.append(name)
            continue

        try:
            active = module.register(interceptor, settings)
        except Exception as error:  # noqa: BLE001 - one broken rule must not block the rest
            LOGGER.error("%s FAILED: %s (%s)", LOG_PREFIX, name, error)
            report.failed.append(name)
            continue
        (report.loaded if active else report.inactive).append(name)

    if activate:
        interceptor.install()
    LOGGER.info(
        "%s Loaded %d/%d rules (%d failed)",
        LOG_PREFIX,
        len(report.loaded),
        report.total,
        len(report.failed),
    )
    return interceptor, report


def install_from_environment(config: Optional[str | Path] = None) -> Optional[RuntimeInterceptor]:
    """Entry point used by the ``.pth`` startup hook."""
    try:
        settings = load_settings(config).runtime
    except ConfigError as error:
        LOGGER.warning("%s configuration unavailable (%s); using defaults", LOG_PREFIX, error)
        settings = RuntimeSettings(rules=RULE_MODULES, host_config=Path("~/.openclaw/config.yaml").expanduser())
    interceptor, _report = install(settings=settings)
    return interceptor


def write_startup_hook(site_dir: Path) -> Path:
    """Write a ``.pth`` file so every interpreter using ``site_dir`` loads the rules."""
    target_dir = Path(site_dir)
    if not target_dir.is_dir():
        raise FileNotFoundError(f"Site directory not found: {target_dir}")
    hook_path = target_dir / PTH_FILENAME
    hook_path.write_text(PTH_LINE, encoding="utf-8")
    return hook_path


__all__ = [
    "BootstrapReport",
    "PTH_FILENAME",
    "RULE_MODULES",
    "install",
    "install_from_environment",
    "write_startup_hook",
]
