"""Patch units: one named, independently runnable change with a tri-state outcome."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .backup import BackupStore
from .errors import NoPatternMatch, OutcomeReason, PatchError, VerifyError, WriteError
from .gate import Predicate, already_applied
from .install import DEFAULT_INSTALL_TIMEOUT, InstallStep, run_install
from .matcher import describe_fallback
from .mutator import Edit, FileMutator
from .telemetry import emit_patch_event
from .verifier import Verifier

LOGGER = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    """Terminal status of a unit for one root."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class UnitState(str, Enum):
    """States a unit passes through while it runs."""

    NOT_STARTED = "not_started"
    DISABLED = "disabled"
    PREREQUISITE_MISSING = "prerequisite_missing"
    TARGET_MISSING = "target_missing"
    ALREADY_APPLIED = "already_applied"
    MATCHING = "matching"
    MATCH_FOUND = "match_found"
    NO_MATCH = "no_match"
    MUTATING = "mutating"
    VERIFY_OK = "verify_ok"
    VERIFY_FAIL = "verify_fail"
    INSTALLING = "installing"
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Target:
    """Glob patterns naming candidate files plus the edits applied to each."""

    patterns: tuple[str, ...]
    edits: tuple[Edit, ...]
    marker: Predicate | None = None

    def resolve(self, root: Path) -> list[Path]:
        """Return existing files matching any pattern, in pattern then name order."""
        base = Path(root)
        seen: set[Path] = set()
        resolved: list[Path] = []
        for pattern in self.patterns:
            for candidate in sorted(base.glob(pattern)):
                if candidate.is_file() and candidate not in seen:
                    seen.add(candidate)
                    resolved.append(candidate)
        return resolved


@dataclass(frozen=True, slots=True)
class PatchUnit:
    """Immutable catalog entry describing one human-meaningful change."""

    id: str
    title: str = ""
    targets: tuple[Target, ...] = ()
    marker: Predicate | None = None
    install: InstallStep | None = None
    requires: tuple[str, ...] = ()
    backup: bool = False
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.targets and self.install is None:
            raise ValueError(f"Unit {self.id} has neither targets nor an install step")
        for target in self.targets:
            if target.marker is None and self.marker is None:
                raise ValueError(f"Unit {self.id} needs a marker for {', '.join(target.patterns)}")

    def marker_for(self, target: Target) -> Predicate:
        marker = target.marker or self.marker
        if marker is None:
            raise ValueError(f"Unit {self.id} has no marker for {', '.join(target.patterns)}")
        return marker


@dataclass(slots=True)
class FileResult:
    """Per-file result inside a unit outcome."""

    path: str
    status: OutcomeStatus
    reason: OutcomeReason
    detail: str = ""
    fallback: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status.value,
            "reason": self.reason.value,
            "detail": self.detail,
            "fallback": self.fallback,
        }


@dataclass(slots=True)
class PatchOutcome:
    """Result of evaluating one unit against one target root."""

    unit_id: str
    status: OutcomeStatus
    reason: OutcomeReason
    detail: str
    title: str = ""
    files: list[FileResult] = field(default_factory=list)
    trace: list[UnitState] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def applied(self) -> bool:
        return self.status is OutcomeStatus.APPLIED

    @property
    def skipped(self) -> bool:
        return self.status is OutcomeStatus.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @property
    def satisfies_dependents(self) -> bool:
        """True when later units may rely on this unit's effect being present."""
        return self.applied or self.reason is OutcomeReason.ALREADY_APPLIED

    def line(self) -> str:
        return f"{self.unit_id}: {self.detail}" if self.detail else self.unit_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": self.unit_id,
            "title": self.title,
            "status": self.status.value,
            "reason": self.reason.value,
            "detail": self.detail,
            "files": [entry.to_dict() for entry in self.files],
            "elapsed_seconds": round(self.elapsed, 4),
        }


def _relative(path: Path, root: Path) -> str:
    try:
        return Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        return Path(path).as_posix()


class _UnitRun:
    """Drives one unit through its state machine."""

    def __init__(
        self,
        unit: PatchUnit,
        root: Path,
        *,
        mutator: FileMutator,
        backups: BackupStore | None,
        install_timeout: float | None,
    ) -> None:
        self.unit = unit
        self.root = Path(root)
        self.mutator = mutator
        self.verifier = Verifier(mutator)
        self.backups = backups
        self.install_timeout = install_timeout
        self.trace: list[UnitState] = [UnitState.NOT_STARTED]
        self.files: list[FileResult] = []
        self.notes: list[str] = []

    def enter(self, state: UnitState) -> None:
        self.trace.append(state)

    def patch_file(self, target: Target, path: Path) -> FileResult:
        relative = _relative(path, self.root)
        marker = self.unit.marker_for(target)
        text = self.mutator.read(path)
        if already_applied(text, marker):
            self.enter(UnitState.ALREADY_APPLIED)
            return FileResult(relative, OutcomeStatus.SKIPPED, OutcomeReason.ALREADY_APPLIED, "already applied")

        self.enter(UnitState.MATCHING)
        if self.unit.backup and self.backups is not None and not self.mutator.dry_run:
            self.backups.ensure(self.unit.id, self.root, path)

        changed = False
        fallback: int | None = None
        missed: list[str] = []
        for position, edit in enumerate(target.edits, start=1):
            label = edit.label or f"edit #{position}"
            try:
                result = self.mutator.apply_edit(path, edit)
            except NoPatternMatch as error:
                if edit.optional:
                    missed.append(label)
                    continue
                self.enter(UnitState.NO_MATCH)
                raise NoPatternMatch(
                    f"{label}: none of {len(edit.alternatives)} alternative(s) matched in {relative}",
                    details=error.details,
                ) from error
            if result.skipped:
                continue
            self.enter(UnitState.MATCH_FOUND)
            self.enter(UnitState.MUTATING)
            changed = changed or result.changed
            if result.match is not None and result.match.via_fallback:
                fallback = max(fallback or 0, result.match.index)
                self.notes.append(f"{label} {describe_fallback(result.match.index)}")

        if not changed and missed and len(missed) == len(target.edits):
            self.enter(UnitState.NO_MATCH)
            raise NoPatternMatch(f"no edit matched in {relative} (tried {', '.join(missed)})")

        if not self.verifier.verify_path(path, marker):
            self.enter(UnitState.VERIFY_FAIL)
            raise VerifyError(
                f"{relative} written but {marker.describe()} is missing",
                details={"path": relative},
            )
        self.enter(UnitState.VERIFY_OK)

        detail = f"patched {relative}"
        if fallback is not None:
            detail += f" ({describe_fallback(fallback)})"
        if missed:
            detail += f"; optional edit(s) not found: {', '.join(missed)}"
        return FileResult(relative, OutcomeStatus.APPLIED, OutcomeReason.APPLIED, detail, fallback)

    def run_targets(self) -> bool:
        """Patch every resolved file; return False when no target file exists."""
        found_any = False
        for target in self.unit.targets:
            paths = target.resolve(self.root)
            if not paths:
                self.notes.append(f"no file matches {', '.join(target.patterns)}")
                continue
            found_any = True
            for path in paths:
                try:
                    self.files.append(self.patch_file(target, path))
                except PatchError as error:
                    self.files.append(self._failed_file(path, error.reason, str(error)))
                except OSError as error:
                    self.files.append(self._failed_file(path, OutcomeReason.WRITE_FAILED, f"I/O error: {error}"))
        return found_any

    def _failed_file(self, path: Path, reason: OutcomeReason, message: str) -> FileResult:
        self.enter(UnitState.FAILED)
        return FileResult(_relative(path, self.root), OutcomeStatus.FAILED, reason, message)

    def run_install(self, step: InstallStep) -> FileResult:
        label = f"install:{step.creates}"
        if not step.working_dir(self.root).is_dir():
            return FileResult(label, OutcomeStatus.SKIPPED, OutcomeReason.TARGET_MISSING, f"{step.cwd} not found")
        self.enter(UnitState.INSTALLING)
        try:
            result = run_install(
                step,
                self.root,
                default_timeout=self.install_timeout,
                dry_run=self.mutator.dry_run,
            )
        except PatchError as error:
            self.enter(UnitState.FAILED)
            return FileResult(label, OutcomeStatus.FAILED, error.reason, str(error))
        if result.skipped:
            self.enter(UnitState.ALREADY_APPLIED)
            return FileResult(label, OutcomeStatus.SKIPPED, OutcomeReason.ALREADY_APPLIED, f"{step.creates} present")
        self.enter(UnitState.VERIFY_OK)
        verb = "would install" if result.dry_run else "installed"
        return FileResult(label, OutcomeStatus.APPLIED, OutcomeReason.APPLIED, f"{verb} {step.creates}")


def _aggregate(run: _UnitRun) -> tuple[OutcomeStatus, OutcomeReason, str]:
    failed = [entry for entry in run.files if entry.status is OutcomeStatus.FAILED]
    applied = [entry for entry in run.files if entry.status is OutcomeStatus.APPLIED]
    if failed:
        detail = "; ".join(entry.detail for entry in failed)
        if applied:
            detail += f" (also {'; '.join(entry.detail for entry in applied)})"
        return OutcomeStatus.FAILED, failed[0].reason, detail
    if applied:
        return OutcomeStatus.APPLIED, OutcomeReason.APPLIED, "; ".join(entry.detail for entry in applied)
    if run.files and all(entry.reason is OutcomeReason.TARGET_MISSING for entry in run.files):
        return OutcomeStatus.SKIPPED, OutcomeReason.TARGET_MISSING, "; ".join(entry.detail for entry in run.files)
    return OutcomeStatus.SKIPPED, OutcomeReason.ALREADY_APPLIED, "already applied"


def unmet_prerequisites(unit: PatchUnit, completed: Mapping[str, PatchOutcome]) -> list[str]:
    """Return prerequisite ids whose effect is not present in this run."""
    unmet: list[str] = []
    for requirement in unit.requires:
        outcome = completed.get(requirement)
        if outcome is None or not outcome.satisfies_dependents:
            unmet.append(requirement)
    return unmet


def run_unit(
    unit: PatchUnit,
    root: Path | str,
    *,
    mutator: FileMutator | None = None,
    backups: BackupStore | None = None,
    install_timeout: float | None = DEFAULT_INSTALL_TIMEOUT,
    completed: Mapping[str, PatchOutcome] | None = None,
) -> PatchOutcome:
    """Evaluate ``unit`` against ``root`` and return exactly one outcome.

    Every engine failure is converted into a ``failed`` outcome here; nothing
    raised by matching, writing, verifying or installing escapes.
    """
    started = time.monotonic()
    run = _UnitRun(
        unit,
        Path(root),
        mutator=mutator or FileMutator(),
        backups=backups,
        install_timeout=install_timeout,
    )

    def finish(status: OutcomeStatus, reason: OutcomeReason, detail: str) -> PatchOutcome:
        run.enter(UnitState(status.value))
        outcome = PatchOutcome(
            unit_id=unit.id,
            status=status,
            reason=reason,
            detail=detail,
            title=unit.title,
            files=run.files,
            trace=run.trace,
            elapsed=time.monotonic() - started,
        )
        emit_patch_event(
            "unit_finished",
            unit=unit.id,
            status=status,
            reason=reason,
            detail=detail,
            files=[entry.to_dict() for entry in run.files],
            dry_run=run.mutator.dry_run,
        )
        return outcome

    if not unit.enabled:
        run.enter(UnitState.DISABLED)
        return finish(OutcomeStatus.SKIPPED, OutcomeReason.DISABLED, "disabled in catalog")

    unmet = unmet_prerequisites(unit, completed or {})
    if unmet:
        run.enter(UnitState.PREREQUISITE_MISSING)
        return finish(
            OutcomeStatus.SKIPPED,
            OutcomeReason.PREREQUISITE,
            f"prerequisite {', '.join(unmet)} not applied",
        )

    try:
        found_any = run.run_targets()
        if unit.install is not None:
            install_result = run.run_install(unit.install)
            run.files.append(install_result)
            found_any = found_any or install_result.reason is not OutcomeReason.TARGET_MISSING
    except (PatchError, OSError) as error:
        # Failures outside a single file, such as an unreadable root.
        LOGGER.debug("Unit %s aborted: %s", unit.id, error)
        reason = error.reason if isinstance(error, PatchError) else WriteError.reason
        return finish(OutcomeStatus.FAILED, reason, str(error))

    if not found_any:
        run.enter(UnitState.TARGET_MISSING)
        return finish(OutcomeStatus.SKIPPED, OutcomeReason.TARGET_MISSING, "; ".join(run.notes) or "target missing")

    status, reason, detail = _aggregate(run)
    fallback_notes = [note for note in run.notes if "fallback" in note]
    if fallback_notes and status is OutcomeStatus.APPLIED:
        LOGGER.info("Unit %s drifted: %s", unit.id, "; ".join(fallback_notes))
    return finish(status, reason, detail)


__all__ = [
    "FileResult",
    "OutcomeStatus",
    "PatchOutcome",
    "PatchUnit",
    "Target",
    "UnitState",
    "run_unit",
    "unmet_prerequisites",
]
