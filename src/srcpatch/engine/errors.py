"""Exception taxonomy raised inside the patch engine."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class OutcomeReason(str, Enum):
    """Why a unit ended in its terminal state."""

    APPLIED = "applied"
    TARGET_MISSING = "target_missing"
    ALREADY_APPLIED = "already_applied"
    DISABLED = "disabled"
    PREREQUISITE = "prerequisite"
    NO_PATTERN_MATCH = "no_pattern_match"
    WRITE_FAILED = "write_failed"
    BAD_TEMPLATE = "bad_template"
    VERIFY_FAILED = "verify_failed"
    EXTERNAL_PROCESS = "external_process"
    INTERRUPTED = "interrupted"


class PatchError(RuntimeError):
    """Raised when a unit cannot be applied to the target."""

    reason: OutcomeReason = OutcomeReason.WRITE_FAILED

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class NoPatternMatch(PatchError):
    """None of an edit's alternatives matched the current file shape."""

    reason = OutcomeReason.NO_PATTERN_MATCH


class TargetReadError(PatchError):
    """The target file exists but could not be read."""

    reason = OutcomeReason.WRITE_FAILED


class WriteError(PatchError):
    """Writing or renaming the mutated file failed."""

    reason = OutcomeReason.WRITE_FAILED


class TemplateError(PatchError):
    """A replacement template could not be expanded against its match."""

    reason = OutcomeReason.BAD_TEMPLATE


class VerifyError(PatchError):
    """The written file does not carry the expected success marker."""

    reason = OutcomeReason.VERIFY_FAILED


class ExternalProcessError(PatchError):
    """An auxiliary install/build command exited nonzero or timed out."""

    reason = OutcomeReason.EXTERNAL_PROCESS


__all__ = [
    "ExternalProcessError",
    "NoPatternMatch",
    "OutcomeReason",
    "PatchError",
    "TargetReadError",
    "TemplateError",
    "VerifyError",
    "WriteError",
]
