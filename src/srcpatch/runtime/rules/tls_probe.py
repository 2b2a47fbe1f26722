"""Upgrade loopback ``ws://`` connections to ``wss://`` when the host serves TLS."""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from ...config import RuntimeSettings
from ..interceptor import LOG_PREFIX, Capability, InterceptorRule, RuntimeInterceptor

LOGGER = logging.getLogger(__name__)

RULE_ID = "tls_probe"
DEFAULT_MODULE = "websocket"
EXPORT = "create_connection"
LOOPBACK_PREFIXES = ("ws://127.0.0.1:", "ws://localhost:")


def tls_enabled(config_path: Optional[Path]) -> bool:
    """Return True when the host YAML config has ``gateway.tls.enabled: true``."""
    if config_path is None or not Path(config_path).is_file():
        return False
    try:
        data = yaml.safe_load(Path(config_path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as error:
        LOGGER.debug("Cannot read host config %s: %s", config_path, error)
        return False
    gateway = data.get("gateway") if isinstance(data, dict) else None
    tls = gateway.get("tls") if isinstance(gateway, dict) else None
    return isinstance(tls, dict) and tls.get("enabled") is True


def upgrade_url(url: Any) -> Any:
    if isinstance(url, str) and url.startswith(LOOPBACK_PREFIXES):
        return "wss://" + url[len("ws://") :]
    return url


def rebind(original: Any) -> Any:
    @functools.wraps(original)
    def create_connection(url: Any, *args: Any, **kwargs: Any) -> Any:
        return original(upgrade_url(url), *args, **kwargs)

    return create_connection


def register(interceptor: RuntimeInterceptor, settings: RuntimeSettings) -> bool:
    if not interceptor.registry.claim(f"register:{RULE_ID}"):
        return False
    if not tls_enabled(settings.host_config):
        LOGGER.info("%s %s: skipped (TLS not enabled)", LOG_PREFIX, RULE_ID)
        return False
    interceptor.add_rule(
        InterceptorRule(
            id=RULE_ID,
            module=settings.module_for(RULE_ID, DEFAULT_MODULE),
            export=EXPORT,
            rebind=rebind,
            capability=Capability(parameters=("url",)),
            description="ws:// -> wss:// for localhost gateway connections",
        )
    )
    LOGGER.info("%s %s: active (TLS enabled, ws->wss for localhost)", LOG_PREFIX, RULE_ID)
    return True
