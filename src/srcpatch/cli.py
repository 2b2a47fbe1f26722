"""CLI commands for applying patch catalogs and managing the runtime hook."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .catalog import Catalog, CatalogError, load_catalog
from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    Settings,
    copy_config_template,
    load_settings,
    write_config,
)
from .engine.backup import BackupStore
from .engine.errors import PatchError
from .engine.unit import OutcomeStatus, PatchOutcome
from .orchestrator import OrchestrationRun, Orchestrator, check_precondition, load_run_report, total_failures
from .runtime import InstallRegistry
from .runtime.bootstrap import install as install_runtime
from .runtime.bootstrap import write_startup_hook

APP_HELP = "Apply versioned source patches to a third-party install, idempotently."
MAX_EXIT_CODE = 255

_STATUS_LABELS = {
    OutcomeStatus.APPLIED: ("[OK]", typer.colors.GREEN),
    OutcomeStatus.SKIPPED: ("[SKIP]", typer.colors.YELLOW),
    OutcomeStatus.FAILED: ("[FAIL]", typer.colors.RED),
}

app = typer.Typer(help=APP_HELP)
runtime_app = typer.Typer(help="Inspect and install the runtime import interceptor.")
app.add_typer(runtime_app, name="runtime")


def _load_settings(config: Optional[str]) -> Settings:
    try:
        return load_settings(config)
    except ConfigError as error:
        typer.echo(f"Failed to load configuration: {error}")
        raise typer.Exit(code=1) from error


def _configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)


def _resolve_root(root: Path) -> Path:
    resolved = root.expanduser()
    if not resolved.is_dir():
        raise typer.BadParameter(f"Target root not found: {root}")
    return resolved.resolve()


def _load_phase_catalog(
    settings: Settings,
    phase: str,
    catalog_override: Optional[str],
    only: Optional[List[str]],
) -> Catalog:
    try:
        reference = catalog_override or settings.phase(phase).catalog
        catalog = load_catalog(reference, base_dir=settings.base_dir)
        if only:
            catalog = catalog.select(only)
    except (ConfigError, CatalogError) as error:
        typer.echo(f"Failed to load catalog for phase '{phase}': {error}")
        raise typer.Exit(code=1) from error
    return catalog


def _echo_outcome(outcome: PatchOutcome) -> None:
    label, colour = _STATUS_LABELS[outcome.status]
    typer.echo(f"{typer.style(label, fg=colour)} {outcome.line()}")


def _echo_summary(run: OrchestrationRun) -> None:
    typer.echo(f"-- {run.phase} summary --")
    typer.echo(f"   {run.summary_line()}")
    if run.dry_run:
        typer.echo("   Dry run: no files were written.")
    if run.interrupted:
        typer.echo("   Run interrupted: remaining units were not started.")


def _build_orchestrator(settings: Settings, phase: str, *, dry_run: bool) -> Orchestrator:
    return Orchestrator(
        reporter=_echo_outcome,
        dry_run=dry_run,
        backups=BackupStore(settings.backup_dir / phase),
        install_timeout=settings.install_timeout,
        report_path=None if dry_run else settings.report_path,
    )


def _check_phase_precondition(settings: Settings, phase: str, root: Path) -> None:
    phase_settings = settings.phases.get(phase)
    problem = check_precondition(phase_settings.precondition if phase_settings else None, root)
    if problem:
        typer.echo(f"{typer.style('[FAIL]', fg=typer.colors.RED)} {phase}: {problem}")
        raise typer.Exit(code=1)


def _exit_with_failures(failed: int) -> None:
    if failed:
        raise typer.Exit(code=min(failed, MAX_EXIT_CODE))


def _run_phase(
    phase: str,
    root: Path,
    *,
    config: Optional[str],
    catalog: Optional[str],
    only: Optional[List[str]],
    dry_run: bool,
    verbose: bool,
) -> None:
    settings = _load_settings(config)
    _configure_logging(settings, verbose)
    root_path = _resolve_root(root)
    _check_phase_precondition(settings, phase, root_path)
    loaded = _load_phase_catalog(settings, phase, catalog, only)

    typer.echo(f"srcpatch {phase} -> {root_path}")
    run = _build_orchestrator(settings, phase, dry_run=dry_run).run(loaded.units, root_path, phase=phase)
    _echo_summary(run)
    _exit_with_failures(run.exit_status)


ROOT_ARGUMENT = typer.Argument(..., help="Directory of the install or checkout to patch.")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help=f"Path to the configuration file (default: ./{DEFAULT_CONFIG_NAME}).")
CATALOG_OPTION = typer.Option(None, "--catalog", help="Catalog file (or builtin:<name>) overriding the configured one.")
UNIT_OPTION = typer.Option(None, "--unit", "-u", help="Only run the given unit id (repeatable).")
DRY_RUN_OPTION = typer.Option(False, "--dry-run", help="Evaluate every unit without writing files.")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging and telemetry events.")


@app.command()
def dist(
    root: Path = ROOT_ARGUMENT,
    config: Optional[str] = CONFIG_OPTION,
    catalog: Optional[str] = CATALOG_OPTION,
    unit: Optional[List[str]] = UNIT_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Patch the compiled bundle of an installed package."""
    _run_phase("dist", root, config=config, catalog=catalog, only=unit, dry_run=dry_run, verbose=verbose)


@app.command()
def source(
    root: Path = ROOT_ARGUMENT,
    config: Optional[str] = CONFIG_OPTION,
    catalog: Optional[str] = CATALOG_OPTION,
    unit: Optional[List[str]] = UNIT_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Patch a source checkout before it is rebuilt."""
    _run_phase("source", root, config=config, catalog=catalog, only=unit, dry_run=dry_run, verbose=verbose)


@app.command()
def extensions(
    root: Path = ROOT_ARGUMENT,
    config: Optional[str] = CONFIG_OPTION,
    catalog: Optional[str] = CATALOG_OPTION,
    unit: Optional[List[str]] = UNIT_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Patch bundled extensions of an installed package."""
    _run_phase("extensions", root, config=config, catalog=catalog, only=unit, dry_run=dry_run, verbose=verbose)


@app.command("run")
def run_phase(
    phase: str = typer.Argument(..., help="Name of a phase from the configuration."),
    root: Path = ROOT_ARGUMENT,
    config: Optional[str] = CONFIG_OPTION,
    catalog: Optional[str] = CATALOG_OPTION,
    unit: Optional[List[str]] = UNIT_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run any configured phase by name."""
    _run_phase(phase, root, config=config, catalog=catalog, only=unit, dry_run=dry_run, verbose=verbose)


@app.command("all")
def run_all(
    root: Path = ROOT_ARGUMENT,
    config: Optional[str] = CONFIG_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run every configured phase in order; exit code is the total failure count."""
    settings = _load_settings(config)
    _configure_logging(settings, verbose)
    root_path = _resolve_root(root)

    runs: list[OrchestrationRun] = []
    blocked = 0
    for name in settings.phases:
        typer.echo(f"srcpatch {name} -> {root_path}")
        try:
            _check_phase_precondition(settings, name, root_path)
            loaded = _load_phase_catalog(settings, name, None, None)
        except typer.Exit:
            blocked += 1
            continue
        orchestrator = _build_orchestrator(settings, name, dry_run=dry_run)
        run = orchestrator.run(loaded.units, root_path, phase=name)
        _echo_summary(run)
        runs.append(run)
        if run.interrupted:
            break

    failed = total_failures(runs) + blocked
    typer.echo("-- Overall --")
    typer.echo(
        f"   Phases: {len(runs)}/{len(settings.phases)}  "
        f"Applied: {sum(run.applied for run in runs)}  "
        f"Skipped: {sum(run.skipped for run in runs)}  "
        f"Failed: {failed}"
    )
    _exit_with_failures(failed)


@app.command("list")
def list_units(
    phase: str = typer.Argument(..., help="Phase whose catalog should be listed."),
    config: Optional[str] = CONFIG_OPTION,
    catalog: Optional[str] = CATALOG_OPTION,
) -> None:
    """List the units of a phase catalog in execution order."""
    settings = _load_settings(config)
    loaded = _load_phase_catalog(settings, phase, catalog, None)
    typer.echo(f"{phase}: {len(loaded.units)} unit(s) from {loaded.source}")
    for entry in loaded.units:
        flags = []
        if not entry.enabled:
            flags.append("disabled")
        if entry.requires:
            flags.append(f"requires {', '.join(entry.requires)}")
        if entry.backup:
            flags.append("backup")
        suffix = f" [{'; '.join(flags)}]" if flags else ""
        typer.echo(f"- {entry.id}: {entry.title or '(untitled)'}{suffix}")
        for target in entry.targets:
            typer.echo(f"    files: {', '.join(target.patterns)}")
        if entry.install is not None:
            typer.echo(f"    install: {' '.join(entry.install.command)} (creates {entry.install.creates})")


@app.command()
def status(
    config: Optional[str] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every unit outcome."),
) -> None:
    """Report the last recorded run of each phase."""
    settings = _load_settings(config)
    phases = load_run_report(settings.report_path)
    if not phases:
        typer.echo(f"No runs recorded yet ({settings.report_path}).")
        return

    for name, report in phases.items():
        counts = report.get("counts") or {}
        typer.echo(
            f"{name}: Applied: {counts.get('applied', 0)}  "
            f"Skipped: {counts.get('skipped', 0)}  Failed: {counts.get('failed', 0)}"
        )
        typer.echo(f"    root: {report.get('root', '?')}  at: {report.get('started_at', '?')}")
        if report.get("interrupted"):
            typer.echo("    interrupted")
        for outcome in report.get("outcomes") or []:
            if verbose or outcome.get("status") == OutcomeStatus.FAILED.value:
                typer.echo(f"    - [{outcome.get('status')}] {outcome.get('unit')}: {outcome.get('detail', '')}")


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path of the configuration file to create.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        raise typer.BadParameter(f"Config file already exists: {config_path} (use --force to overwrite)")
    action = "Updated" if config_path.exists() else "Created"
    write_config(config_path, copy_config_template())
    typer.echo(f"{action} configuration at {config_path}.")


@app.command()
def rollback(
    phase: str = typer.Argument(..., help="Phase whose backups should be restored."),
    root: Path = ROOT_ARGUMENT,
    config: Optional[str] = CONFIG_OPTION,
    unit: Optional[str] = typer.Option(None, "--unit", "-u", help="Only restore backups of this unit."),
) -> None:
    """Restore files saved by units that take backups."""
    settings = _load_settings(config)
    root_path = _resolve_root(root)
    store = BackupStore(settings.backup_dir / phase)
    try:
        restored = store.restore(root_path, unit)
    except (OSError, PatchError) as error:
        typer.echo(f"Rollback failed: {error}")
        raise typer.Exit(code=1) from error
    if not restored:
        typer.echo("No backups found.")
        return
    typer.echo(f"Restored {len(restored)} file(s):")
    for path in restored:
        typer.echo(f"- {path.as_posix()}")


@runtime_app.command("rules")
def runtime_rules(config: Optional[str] = CONFIG_OPTION) -> None:
    """List interceptor rules that the bootstrap would register."""
    settings = _load_settings(config)
    interceptor, report = install_runtime(
        registry=InstallRegistry(),
        settings=settings.runtime,
        activate=False,
    )
    for rule in interceptor.rules:
        typer.echo(f"- {rule.id}: {rule.module}.{rule.export} [{interceptor.state(rule.id).value}]")
        if rule.description:
            typer.echo(f"    {rule.description}")
    for name in report.inactive:
        typer.echo(f"- {name}: inactive")
    for name in report.missing:
        typer.echo(f"- {name}: not found")
    for name in report.failed:
        typer.echo(f"- {name}: failed to load")
    typer.echo(f"Loaded {len(report.loaded)}/{report.total} rules ({len(report.failed)} failed)")


@runtime_app.command("install-hook")
def runtime_install_hook(
    site_dir: Path = typer.Argument(..., help="site-packages directory of the host interpreter."),
) -> None:
    """Write a .pth file that loads the interceptor at interpreter startup."""
    try:
        hook_path = write_startup_hook(site_dir)
    except OSError as error:
        typer.echo(f"Failed to write startup hook: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Wrote startup hook to {hook_path}.")


if __name__ == "__main__":
    app()
