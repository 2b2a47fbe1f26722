"""Fail-open sequencing of patch units and run aggregation."""

from __future__ import annotations

import json
import logging
import os
import signal
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence

from .engine.backup import BackupStore
from .engine.errors import OutcomeReason, PatchError
from .engine.install import DEFAULT_INSTALL_TIMEOUT
from .engine.mutator import FileMutator, atomic_write_text
from .engine.telemetry import emit_patch_event
from .engine.unit import OutcomeStatus, PatchOutcome, PatchUnit, UnitState, run_unit

LOGGER = logging.getLogger(__name__)

Reporter = Callable[[PatchOutcome], None]

PRECONDITIONS: tuple[str, ...] = ("writable",)


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class OrchestrationRun:
    """Ordered outcomes of one phase against one root."""

    phase: str
    root: Path
    outcomes: list[PatchOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    duration: float = 0.0
    dry_run: bool = False
    interrupted: bool = False

    @property
    def counts(self) -> dict[str, int]:
        tally = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes:
            tally[outcome.status.value] += 1
        return tally

    @property
    def applied(self) -> int:
        return self.counts[OutcomeStatus.APPLIED.value]

    @property
    def skipped(self) -> int:
        return self.counts[OutcomeStatus.SKIPPED.value]

    @property
    def failed(self) -> int:
        return self.counts[OutcomeStatus.FAILED.value]

    @property
    def exit_status(self) -> int:
        """Number of failed units; zero means every unit is in place."""
        return self.failed

    def summary_line(self) -> str:
        return f"Applied: {self.applied}  Skipped: {self.skipped}  Failed: {self.failed}"

    def outcome_for(self, unit_id: str) -> PatchOutcome | None:
        for outcome in self.outcomes:
            if outcome.unit_id == unit_id:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "root": Path(self.root).as_posix(),
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration, 4),
            "dry_run": self.dry_run,
            "interrupted": self.interrupted,
            "counts": self.counts,
            "exit_status": self.exit_status,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def check_precondition(name: str | None, root: Path) -> str | None:
    """Return a problem description when ``root`` violates precondition ``name``."""
    if not name:
        return None
    if name == "writable":
        target = Path(root)
        if not target.is_dir():
            return f"{target} is not a directory"
        if not os.access(target, os.W_OK):
            return f"{target} is not writable by the current user; re-run with sufficient privileges"
        return None
    raise ValueError(f"Unknown precondition '{name}' (expected one of: {', '.join(PRECONDITIONS)})")


class Orchestrator:
    """Runs units in catalog order and never stops on a failed unit.

    Each outcome is streamed through ``reporter`` as soon as it is known.
    A SIGINT/SIGTERM lets the current unit finish; the units that did not
    start are recorded as failed with reason ``interrupted``.
    """

    def __init__(
        self,
        *,
        reporter: Reporter | None = None,
        dry_run: bool = False,
        backups: BackupStore | None = None,
        install_timeout: float | None = DEFAULT_INSTALL_TIMEOUT,
        report_path: Path | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.reporter = reporter
        self.dry_run = dry_run
        self.backups = backups
        self.install_timeout = install_timeout
        self.report_path = Path(report_path) if report_path is not None else None
        self.handle_signals = handle_signals
        self._stop_requested = False

    def request_stop(self) -> None:
        """Stop before the next unit starts."""
        self._stop_requested = True

    @contextmanager
    def _signal_guard(self) -> Iterator[None]:
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            yield
            return

        def _handler(signum: int, _frame: Any) -> None:
            LOGGER.warning("Received signal %s; finishing current unit before stopping.", signum)
            self.request_stop()

        previous = {
            signum: signal.signal(signum, _handler) for signum in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

    def run(self, units: Sequence[PatchUnit], root: Path | str, *, phase: str = "default") -> OrchestrationRun:
        """Evaluate every unit against ``root`` and aggregate the outcomes."""
        root_path = Path(root)
        run = OrchestrationRun(phase=phase, root=root_path, dry_run=self.dry_run)
        mutator = FileMutator(dry_run=self.dry_run)
        completed: dict[str, PatchOutcome] = {}
        started = time.monotonic()
        self._stop_requested = False

        with self._signal_guard():
            for unit in units:
                if self._stop_requested:
                    outcome = PatchOutcome(
                        unit_id=unit.id,
                        status=OutcomeStatus.FAILED,
                        reason=OutcomeReason.INTERRUPTED,
                        detail="run interrupted before this unit started",
                        title=unit.title,
                        trace=[UnitState.NOT_STARTED, UnitState.FAILED],
                    )
                    run.interrupted = True
                else:
                    outcome = self._run_one(unit, root_path, mutator, completed)
                completed[unit.id] = outcome
                run.outcomes.append(outcome)
                if self.reporter is not None:
                    self.reporter(outcome)

        run.duration = time.monotonic() - started
        emit_patch_event(
            "run_finished",
            phase=phase,
            root=root_path,
            counts=run.counts,
            dry_run=self.dry_run,
            interrupted=run.interrupted,
        )
        if self.report_path is not None:
            try:
                write_run_report(self.report_path, run)
            except (OSError, PatchError) as error:
                LOGGER.warning("Failed to write run report %s: %s", self.report_path, error)
        return run

    def _run_one(
        self,
        unit: PatchUnit,
        root: Path,
        mutator: FileMutator,
        completed: Mapping[str, PatchOutcome],
    ) -> PatchOutcome:
        try:
            return run_unit(
                unit,
                root,
                mutator=mutator,
                backups=self.backups,
                install_timeout=self.install_timeout,
                completed=completed,
            )
        except Exception as error:  # noqa: BLE001 - a broken unit must not stop the run
            LOGGER.exception("Unit %s crashed", unit.id)
            return PatchOutcome(
                unit_id=unit.id,
                status=OutcomeStatus.FAILED,
                reason=OutcomeReason.WRITE_FAILED,
                detail=f"unexpected error: {error}",
                title=unit.title,
                trace=[UnitState.NOT_STARTED, UnitState.FAILED],
            )

    def run_phases(
        self,
        phases: Sequence[tuple[str, Sequence[PatchUnit]]],
        root: Path | str,
    ) -> list[OrchestrationRun]:
        """Run several phases in order; later phases still run after failures."""
        runs: list[OrchestrationRun] = []
        for phase, units in phases:
            if self._stop_requested:
                break
            runs.append(self.run(units, root, phase=phase))
        return runs


def load_run_report(path: Path) -> dict[str, Any]:
    """Return the stored per-phase run reports, or an empty mapping."""
    report_path = Path(path)
    if not report_path.exists():
        return {}
    try:
        data = json.loads(report_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        LOGGER.warning("Ignoring unreadable run report %s: %s", report_path, error)
        return {}
    if not isinstance(data, dict):
        return {}
    phases = data.get("phases")
    return phases if isinstance(phases, dict) else {}


def write_run_report(path: Path, run: OrchestrationRun) -> Path:
    """Merge ``run`` into the report file, keeping the last run of each phase."""
    report_path = Path(path)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    phases = load_run_report(report_path)
    phases[run.phase] = run.to_dict()
    payload = {"updated_at": utc_now().isoformat(), "phases": phases}
    atomic_write_text(report_path, json.dumps(payload, indent=2, sort_keys=True) + "\n")
    return report_path


def total_failures(runs: Sequence[OrchestrationRun]) -> int:
    return sum(run.exit_status for run in runs)


__all__ = [
    "OrchestrationRun",
    "Orchestrator",
    "PRECONDITIONS",
    "Reporter",
    "check_precondition",
    "load_run_report",
    "total_failures",
    "write_run_report",
]
