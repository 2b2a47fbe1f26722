"""Per-unit patch engine: matching, gating, mutation, verification."""

from .backup import BackupStore
from .errors import (
    ExternalProcessError,
    NoPatternMatch,
    OutcomeReason,
    PatchError,
    TargetReadError,
    TemplateError,
    VerifyError,
    WriteError,
)
from .gate import AllOf, MarkerPredicate, Predicate, SpecPredicate, all_of, already_applied
from .install import DEFAULT_INSTALL_TIMEOUT, InstallResult, InstallStep, run_install
from .matcher import (
    Alternative,
    AnchoredLineSpec,
    BlockSpec,
    LiteralSpec,
    MatchKind,
    MatchResult,
    MatchSpec,
    RegexSpec,
    describe_fallback,
    find_match,
)
from .mutator import Edit, EditResult, FileMutator, atomic_write_text, read_text, transform_text
from .unit import FileResult, OutcomeStatus, PatchOutcome, PatchUnit, Target, UnitState, run_unit
from .verifier import Verifier, verify

__all__ = [
    "AllOf",
    "Alternative",
    "AnchoredLineSpec",
    "BackupStore",
    "BlockSpec",
    "DEFAULT_INSTALL_TIMEOUT",
    "Edit",
    "EditResult",
    "ExternalProcessError",
    "FileMutator",
    "FileResult",
    "InstallResult",
    "InstallStep",
    "LiteralSpec",
    "MarkerPredicate",
    "MatchKind",
    "MatchResult",
    "MatchSpec",
    "NoPatternMatch",
    "OutcomeReason",
    "OutcomeStatus",
    "PatchError",
    "PatchOutcome",
    "PatchUnit",
    "Predicate",
    "RegexSpec",
    "SpecPredicate",
    "Target",
    "TargetReadError",
    "TemplateError",
    "UnitState",
    "Verifier",
    "VerifyError",
    "WriteError",
    "all_of",
    "already_applied",
    "atomic_write_text",
    "describe_fallback",
    "find_match",
    "read_text",
    "run_install",
    "run_unit",
    "transform_text",
    "verify",
]
