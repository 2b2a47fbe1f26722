"""Stop thinking-only assessments from discarding turns that carry real content.

The host classifies a final assistant message as ``incomplete-thinking`` when
it contains a thinking block, even if text or tool-use blocks follow.  The
wrapper downgrades that verdict to ``ok`` whenever a non-thinking block is
present.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Mapping, Sequence

from ...config import RuntimeSettings
from ..interceptor import LOG_PREFIX, Capability, InterceptorRule, RuntimeInterceptor

LOGGER = logging.getLogger(__name__)

RULE_ID = "assistant_turn"
DEFAULT_MODULE = "openclaw.agents.turns"
EXPORT = "assess_last_assistant_message"
THINKING_TYPES = frozenset({"thinking", "redacted_thinking"})


def _block_type(block: Any) -> Any:
    if isinstance(block, Mapping):
        return block.get("type")
    return getattr(block, "type", None)


def has_non_thinking_content(messages: Sequence[Any]) -> bool:
    if not messages:
        return False
    last = messages[-1]
    content = last.get("content") if isinstance(last, Mapping) else getattr(last, "content", None)
    if not isinstance(content, (list, tuple)):
        return False
    return any(_block_type(block) not in THINKING_TYPES for block in content)


def rebind(original: Any) -> Any:
    @functools.wraps(original)
    def assess_last_assistant_message(messages: Sequence[Any], *args: Any, **kwargs: Any) -> Any:
        verdict = original(messages, *args, **kwargs)
        if verdict == "incomplete-thinking" and has_non_thinking_content(messages):
            return "ok"
        return verdict

    return assess_last_assistant_message


def register(interceptor: RuntimeInterceptor, settings: RuntimeSettings) -> bool:
    if not interceptor.registry.claim(f"register:{RULE_ID}"):
        return False
    interceptor.add_rule(
        InterceptorRule(
            id=RULE_ID,
            module=settings.module_for(RULE_ID, DEFAULT_MODULE),
            export=EXPORT,
            rebind=rebind,
            capability=Capability(parameters=("messages",)),
            description="thinking-only verdict ignores turns with text or tool blocks",
        )
    )
    LOGGER.info("%s %s: interceptor active", LOG_PREFIX, RULE_ID)
    return True
