"""Runtime interception of module exports inside a host interpreter."""

from .interceptor import (
    PROCESS_REGISTRY,
    Capability,
    InstallRegistry,
    InterceptorRule,
    RuleState,
    RuntimeInterceptor,
)

__all__ = [
    "Capability",
    "InstallRegistry",
    "InterceptorRule",
    "PROCESS_REGISTRY",
    "RuleState",
    "RuntimeInterceptor",
]
