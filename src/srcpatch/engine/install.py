"""Bounded external-process steps (dependency installation and the like)."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import ExternalProcessError

LOGGER = logging.getLogger(__name__)

DEFAULT_INSTALL_TIMEOUT = 300.0
_OUTPUT_TAIL = 400


@dataclass(frozen=True, slots=True)
class InstallStep:
    """Command whose effect is the existence of ``creates`` under the root."""

    command: tuple[str, ...]
    creates: str
    cwd: str = "."
    timeout: float | None = None

    def working_dir(self, root: Path) -> Path:
        return (Path(root) / self.cwd).resolve()

    def marker_path(self, root: Path) -> Path:
        return Path(root) / self.creates

    def render_command(self, root: Path) -> tuple[str, ...]:
        root_text = str(Path(root).resolve())
        return tuple(part.replace("{root}", root_text) for part in self.command)


@dataclass(slots=True)
class InstallResult:
    """Summary of an install step invocation."""

    command: tuple[str, ...]
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    skipped: bool = False
    dry_run: bool = False


def _tail(text: str) -> str:
    cleaned = (text or "").strip()
    if len(cleaned) > _OUTPUT_TAIL:
        return "..." + cleaned[-_OUTPUT_TAIL:]
    return cleaned


def run_install(
    step: InstallStep,
    root: Path,
    *,
    default_timeout: float | None = DEFAULT_INSTALL_TIMEOUT,
    dry_run: bool = False,
) -> InstallResult:
    """Run ``step`` synchronously unless its ``creates`` path already exists.

    A nonzero exit, a timeout, or a missing ``creates`` path afterwards is
    raised as :class:`ExternalProcessError`.
    """
    command = step.render_command(root)
    if step.marker_path(root).exists():
        return InstallResult(command=command, skipped=True)
    if dry_run:
        return InstallResult(command=command, dry_run=True)

    timeout = step.timeout if step.timeout is not None else default_timeout
    LOGGER.debug("Running install step %s in %s (timeout=%s)", command, step.working_dir(root), timeout)
    try:
        process = subprocess.run(
            list(command),
            cwd=step.working_dir(root),
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        raise ExternalProcessError(
            f"`{' '.join(command)}` timed out after {timeout}s",
            details={"command": list(command), "timeout": timeout},
        ) from error
    except OSError as error:
        raise ExternalProcessError(
            f"`{' '.join(command)}` could not start: {error}",
            details={"command": list(command)},
        ) from error

    result = InstallResult(
        command=command,
        returncode=process.returncode,
        stdout=process.stdout or "",
        stderr=process.stderr or "",
    )
    if process.returncode != 0:
        message = _tail(result.stderr) or _tail(result.stdout) or "no output"
        raise ExternalProcessError(
            f"`{' '.join(command)}` exited {process.returncode}: {message}",
            details={"command": list(command), "returncode": process.returncode},
        )
    if not step.marker_path(root).exists():
        raise ExternalProcessError(
            f"`{' '.join(command)}` succeeded but did not create {step.creates}",
            details={"command": list(command), "creates": step.creates},
        )
    return result


__all__ = ["DEFAULT_INSTALL_TIMEOUT", "InstallResult", "InstallStep", "run_install"]
