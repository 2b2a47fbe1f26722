"""Import-time rebinding of module exports inside a host interpreter.

A :class:`RuntimeInterceptor` puts a finder at the front of ``sys.meta_path``.
For every watched module it wraps the real loader so that, right after the
module body executes and before the importer receives the module, each rule
for that module gets to replace one export.  Rules fail closed: when the
export is missing or does not have the expected shape, the module is left
untouched and a warning is logged.
"""

from __future__ import annotations

import inspect
import logging
import sys
import threading
from dataclasses import dataclass
from enum import Enum
from importlib.abc import Loader, MetaPathFinder
from importlib.machinery import ModuleSpec
from types import ModuleType
from typing import Any, Callable, Dict, Literal, Optional, Sequence

LOGGER = logging.getLogger(__name__)

LOG_PREFIX = "[runtime-patch]"

_MISSING = object()


class RuleState(str, Enum):
    """Lifecycle of a rule within one process."""

    PENDING = "pending"
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class Capability:
    """Shape an export must have before a rule may replace it."""

    kind: Literal["callable", "class", "any"] = "callable"
    parameters: tuple[str, ...] = ()

    def check(self, value: Any) -> Optional[str]:
        """Return a problem description, or ``None`` when ``value`` fits."""
        if self.kind == "callable" and not callable(value):
            return f"expected a callable, found {type(value).__name__}"
        if self.kind == "class" and not inspect.isclass(value):
            return f"expected a class, found {type(value).__name__}"
        if not self.parameters:
            return None
        try:
            signature = inspect.signature(value)
        except (TypeError, ValueError):
            return "signature is not introspectable"
        accepts_kwargs = any(
            parameter.kind is inspect.Parameter.VAR_KEYWORD for parameter in signature.parameters.values()
        )
        missing = [name for name in self.parameters if name not in signature.parameters]
        if missing and not accepts_kwargs:
            return f"missing parameter(s): {', '.join(missing)}"
        return None


@dataclass(frozen=True, slots=True)
class InterceptorRule:
    """Replace ``module.export`` with ``rebind(original)`` when it loads."""

    id: str
    module: str
    export: str
    rebind: Callable[[Any], Any]
    capability: Optional[Capability] = Capability()
    description: str = ""


class InstallRegistry:
    """Per-process record of which rules were registered and applied.

    Rule modules claim a key before registering so importing them twice is
    harmless, and the interceptor consults the rule state so a module that is
    imported again (or reloaded) is never wrapped a second time.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._states: Dict[str, RuleState] = {}
        self._claims: set[str] = set()

    def claim(self, key: str) -> bool:
        """Return True the first time ``key`` is claimed."""
        with self._lock:
            if key in self._claims:
                return False
            self._claims.add(key)
            return True

    def state(self, rule_id: str) -> RuleState:
        with self._lock:
            return self._states.get(rule_id, RuleState.PENDING)

    def mark(self, rule_id: str, state: RuleState) -> None:
        with self._lock:
            self._states[rule_id] = state

    def reset(self) -> None:
        with self._lock:
            self._states.clear()
            self._claims.clear()

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return {rule_id: state.value for rule_id, state in self._states.items()}


PROCESS_REGISTRY = InstallRegistry()


class _InterceptingLoader(Loader):
    """Delegating loader that runs the rules after the module body."""

    def __init__(self, wrapped: Loader, interceptor: "RuntimeInterceptor", fullname: str) -> None:
        self._wrapped = wrapped
        self._interceptor = interceptor
        self._fullname = fullname

    def create_module(self, spec: ModuleSpec) -> Optional[ModuleType]:
        return self._wrapped.create_module(spec)

    def exec_module(self, module: ModuleType) -> None:
        self._wrapped.exec_module(module)
        self._interceptor.apply_rules(self._fullname, module)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._wrapped, name)


class _InterceptingFinder(MetaPathFinder):
    """Finds watched modules through the remaining finders and wraps their loader."""

    def __init__(self, interceptor: "RuntimeInterceptor") -> None:
        self._interceptor = interceptor

    def find_spec(
        self,
        fullname: str,
        path: Optional[Sequence[str]],
        target: Optional[ModuleType] = None,
    ) -> Optional[ModuleSpec]:
        if not self._interceptor.watches(fullname):
            return None
        spec = None
        for finder in list(sys.meta_path):
            if finder is self or isinstance(finder, _InterceptingFinder):
                continue
            find = getattr(finder, "find_spec", None)
            if find is None:
                continue
            spec = find(fullname, path, target)
            if spec is not None:
                break
        if spec is None or spec.loader is None or not hasattr(spec.loader, "exec_module"):
            return spec
        if not isinstance(spec.loader, _InterceptingLoader):
            spec.loader = _InterceptingLoader(spec.loader, self._interceptor, fullname)
        return spec


class RuntimeInterceptor:
    """Holds rules and applies them as their modules are imported."""

    def __init__(self, registry: Optional[InstallRegistry] = None) -> None:
        self.registry = registry if registry is not None else PROCESS_REGISTRY
        self._rules: Dict[str, InterceptorRule] = {}
        self._replacements: Dict[str, Any] = {}
        self._finder: Optional[_InterceptingFinder] = None

    @property
    def rules(self) -> list[InterceptorRule]:
        return list(self._rules.values())

    @property
    def installed(self) -> bool:
        return self._finder is not None and self._finder in sys.meta_path

    def add_rule(self, rule: InterceptorRule) -> None:
        if rule.id in self._rules:
            raise ValueError(f"Rule '{rule.id}' is already registered")
        self._rules[rule.id] = rule
        if self.installed and rule.module in sys.modules:
            self._apply(rule, sys.modules[rule.module])

    def watches(self, fullname: str) -> bool:
        return any(rule.module == fullname for rule in self._rules.values())

    def state(self, rule_id: str) -> RuleState:
        return self.registry.state(rule_id)

    def install(self) -> None:
        """Activate the import hook and patch watched modules already loaded."""
        if not self.installed:
            self._finder = _InterceptingFinder(self)
            sys.meta_path.insert(0, self._finder)
        for module_name in {rule.module for rule in self._rules.values()}:
            module = sys.modules.get(module_name)
            if module is not None:
                self.apply_rules(module_name, module)

    def uninstall(self) -> None:
        if self._finder is not None and self._finder in sys.meta_path:
            sys.meta_path.remove(self._finder)
        self._finder = None

    def apply_rules(self, fullname: str, module: ModuleType) -> None:
        for rule in list(self._rules.values()):
            if rule.module == fullname:
                self._apply(rule, module)

    def _apply(self, rule: InterceptorRule, module: ModuleType) -> RuleState:
        state = self.registry.state(rule.id)
        if state is RuleState.APPLIED:
            replacement = self._replacements.get(rule.id)
            # A reload re-executes the module body and restores the original export.
            if replacement is not None and getattr(module, rule.export, None) is not replacement:
                setattr(module, rule.export, replacement)
            return state
        if state is RuleState.REJECTED:
            return state

        original = getattr(module, rule.export, _MISSING)
        if original is _MISSING:
            LOGGER.warning("%s %s: %s.%s not found; leaving module untouched", LOG_PREFIX, rule.id, rule.module, rule.export)
            self.registry.mark(rule.id, RuleState.REJECTED)
            return RuleState.REJECTED

        problem = rule.capability.check(original) if rule.capability is not None else None
        if problem:
            LOGGER.warning(
                "%s %s: %s.%s rejected (%s); leaving module untouched",
                LOG_PREFIX,
                rule.id,
                rule.module,
                rule.export,
                problem,
            )
            self.registry.mark(rule.id, RuleState.REJECTED)
            return RuleState.REJECTED

        try:
            replacement = rule.rebind(original)
        except Exception:  # noqa: BLE001 - a broken rule must not break the host import
            LOGGER.exception("%s %s: rebinder failed; leaving module untouched", LOG_PREFIX, rule.id)
            self.registry.mark(rule.id, RuleState.REJECTED)
            return RuleState.REJECTED

        setattr(module, rule.export, replacement)
        self._replacements[rule.id] = replacement
        self.registry.mark(rule.id, RuleState.APPLIED)
        LOGGER.info("%s %s: %s.%s patched", LOG_PREFIX, rule.id, rule.module, rule.export)
        return RuleState.APPLIED


__all__ = [
    "Capability",
    "InstallRegistry",
    "InterceptorRule",
    "LOG_PREFIX",
    "PROCESS_REGISTRY",
    "RuleState",
    "RuntimeInterceptor",
]
