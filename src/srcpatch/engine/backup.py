"""Copy-once backups of target files taken before their first modification."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..utils import slugify
from .errors import WriteError
from .mutator import atomic_write_text, read_text

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BackupStore:
    """Keeps pristine copies under ``<directory>/<unit-slug>/<relative path>``.

    A backup is only written when none exists yet, so repeated runs keep the
    copy of the file as it looked before any unit touched it.
    """

    directory: Path

    def __post_init__(self) -> None:
        self.directory = Path(self.directory)

    def backup_path(self, unit_id: str, root: Path, path: Path) -> Path:
        relative = Path(path).resolve().relative_to(Path(root).resolve())
        return self.directory / slugify(unit_id) / relative

    def ensure(self, unit_id: str, root: Path, path: Path) -> Path | None:
        """Copy ``path`` once; return the new backup path or ``None`` if it existed."""
        destination = self.backup_path(unit_id, root, path)
        if destination.exists():
            return None
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, destination)
        except OSError as error:
            raise WriteError(
                f"Failed to back up {path} to {destination}: {error}",
                details={"path": str(path), "backup": destination.as_posix()},
            ) from error
        LOGGER.debug("Backed up %s to %s", path, destination)
        return destination

    def list_backups(self, unit_id: str | None = None) -> list[tuple[str, Path]]:
        """Return ``(unit_slug, relative_path)`` for every stored backup."""
        if not self.directory.is_dir():
            return []
        if unit_id is not None:
            unit_dirs = [self.directory / slugify(unit_id)]
        else:
            unit_dirs = sorted(entry for entry in self.directory.iterdir() if entry.is_dir())
        entries: list[tuple[str, Path]] = []
        for unit_dir in unit_dirs:
            if not unit_dir.is_dir():
                continue
            for candidate in sorted(unit_dir.rglob("*")):
                if candidate.is_file():
                    entries.append((unit_dir.name, candidate.relative_to(unit_dir)))
        return entries

    def restore(self, root: Path, unit_id: str | None = None) -> list[Path]:
        """Write stored backups back over the target files under ``root``."""
        restored: list[Path] = []
        for unit_slug, relative in self.list_backups(unit_id):
            source = self.directory / unit_slug / relative
            destination = Path(root) / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(destination, read_text(source))
            restored.append(relative)
        return restored


__all__ = ["BackupStore"]
