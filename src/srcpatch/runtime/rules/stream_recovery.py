"""Neutralise the streaming recovery wrapper that swallows partial responses."""

from __future__ import annotations

import logging
from typing import Any

from ...config import RuntimeSettings
from ..interceptor import LOG_PREFIX, Capability, InterceptorRule, RuntimeInterceptor

LOGGER = logging.getLogger(__name__)

RULE_ID = "stream_recovery"
DEFAULT_MODULE = "openclaw.agents.streaming"
EXPORT = "wrap_stream_with_recovery"


def passthrough(stream: Any, *args: Any, **kwargs: Any) -> Any:
    return stream


def rebind(original: Any) -> Any:
    return passthrough


def register(interceptor: RuntimeInterceptor, settings: RuntimeSettings) -> bool:
    if not interceptor.registry.claim(f"register:{RULE_ID}"):
        return False
    interceptor.add_rule(
        InterceptorRule(
            id=RULE_ID,
            module=settings.module_for(RULE_ID, DEFAULT_MODULE),
            export=EXPORT,
            rebind=rebind,
            capability=Capability(),
            description="stream recovery wrapper returns the stream unchanged",
        )
    )
    LOGGER.info("%s %s: interceptor active", LOG_PREFIX, RULE_ID)
    return True
