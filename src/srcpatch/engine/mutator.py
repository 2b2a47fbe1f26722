"""Single-edit text transformation with crash-safe write-back."""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import NoPatternMatch, TargetReadError, TemplateError, WriteError
from .gate import Predicate
from .matcher import Alternative, EditPosition, MatchResult, SpecMatch, describe_fallback, find_match
from .telemetry import emit_patch_event

LOGGER = logging.getLogger(__name__)

_TEMP_SUFFIX = ".srcpatch-tmp"


@dataclass(frozen=True, slots=True)
class Edit:
    """One substitution within a target file.

    ``alternatives`` are tried in order; ``position`` decides whether the
    rendered template replaces the hit or is inserted before/after it.
    ``skip_if`` lets a chained edit recognise that it already landed during
    an earlier, partially successful run.
    """

    alternatives: tuple[Alternative, ...]
    position: EditPosition = "replace"
    replace_all: bool = False
    skip_if: Predicate | None = None
    optional: bool = False
    label: str = ""


@dataclass(slots=True)
class EditResult:
    """Outcome of one mutator call."""

    path: Path
    changed: bool
    match: MatchResult | None = None
    occurrences: int = 0
    skipped: bool = False

    @property
    def note(self) -> str:
        if self.skipped:
            return "edit already present"
        if self.match is None:
            return "no match"
        note = describe_fallback(self.match.index)
        if self.occurrences > 1:
            note += f", {self.occurrences} occurrences"
        return note


def _positioned(found: SpecMatch, rendered: str, position: EditPosition) -> str:
    if position == "before":
        return rendered + found.text
    if position == "after":
        return found.text + rendered
    return rendered


def transform_text(text: str, edit: Edit) -> tuple[str, MatchResult, int]:
    """Apply ``edit`` to ``text`` in memory.

    Returns the new text, the winning alternative and the number of
    occurrences rewritten.  Raises :class:`NoPatternMatch` when no
    alternative matches and :class:`TemplateError` when the winning
    template references groups or escapes its pattern cannot supply.
    """
    match = find_match(text, edit.alternatives)
    if match is None:
        raise NoPatternMatch(
            f"No alternative matched{f' for {edit.label}' if edit.label else ''}",
            details={
                "label": edit.label,
                "alternatives": [alternative.spec.describe() for alternative in edit.alternatives],
            },
        )

    try:
        return _render(text, edit, match)
    except re.error as error:
        raise TemplateError(
            f"Template of alternative #{match.index + 1}"
            f"{f' for {edit.label}' if edit.label else ''} cannot be expanded: {error}",
            details={
                "label": edit.label,
                "alternative": match.alternative.spec.describe(),
                "template": match.alternative.template,
            },
        ) from error


def _render(text: str, edit: Edit, match: MatchResult) -> tuple[str, MatchResult, int]:
    if not edit.replace_all:
        found = match.found
        rendered = _positioned(found, match.replacement, edit.position)
        return text[: found.start] + rendered + text[found.end :], match, 1

    spec = match.alternative.spec
    template = match.alternative.template
    pieces: list[str] = []
    cursor = 0
    count = 0
    for found in spec.find_all(text):
        pieces.append(text[cursor : found.start])
        pieces.append(_positioned(found, spec.render(found, template), edit.position))
        cursor = found.end
        count += 1
    pieces.append(text[cursor:])
    return "".join(pieces), match, count


def read_text(path: Path, *, encoding: str = "utf-8") -> str:
    """Read a whole source file, preserving its line endings."""
    try:
        return Path(path).read_bytes().decode(encoding)
    except (OSError, UnicodeDecodeError) as error:
        raise TargetReadError(f"Cannot read {path}: {error}", details={"path": str(path)}) from error


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write ``content`` via a same-directory temp file and ``os.replace``.

    The original file is untouched until the final rename, so an interrupted
    write leaves either the old or the new content on disk, never a mix.
    """
    target = Path(path)
    temp_path: Path | None = None
    try:
        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=_TEMP_SUFFIX, dir=target.parent)
        temp_path = Path(temp_name)
        with os.fdopen(fd, "wb") as handle:
            handle.write(content.encode(encoding))
            handle.flush()
            os.fsync(handle.fileno())
        if target.exists():
            shutil.copymode(target, temp_path)
        os.replace(temp_path, target)
    except OSError as error:
        raise WriteError(f"Failed to write {target}: {error}", details={"path": target.as_posix()}) from error
    finally:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)


class FileMutator:
    """Reads, transforms and atomically rewrites target files.

    Every :meth:`apply_edit` call re-reads the current content, so chained
    edits observe each other.  With ``dry_run`` the results are kept in an
    in-memory overlay and nothing touches the disk.
    """

    def __init__(self, *, dry_run: bool = False, encoding: str = "utf-8") -> None:
        self.dry_run = dry_run
        self.encoding = encoding
        self._overlay: dict[Path, str] = {}

    def read(self, path: Path) -> str:
        key = Path(path)
        if key in self._overlay:
            return self._overlay[key]
        return read_text(key, encoding=self.encoding)

    def write(self, path: Path, content: str) -> None:
        key = Path(path)
        if self.dry_run:
            self._overlay[key] = content
            return
        atomic_write_text(key, content, encoding=self.encoding)

    def apply_edit(self, path: Path, edit: Edit) -> EditResult:
        """Perform exactly one edit against the current content of ``path``."""
        target = Path(path)
        text = self.read(target)
        if edit.skip_if is not None and edit.skip_if.holds(text):
            return EditResult(path=target, changed=False, skipped=True)

        new_text, match, occurrences = transform_text(text, edit)
        changed = new_text != text
        if changed:
            self.write(target, new_text)
        LOGGER.debug("Edit %s on %s: %s", edit.label or "<unnamed>", target, describe_fallback(match.index))
        emit_patch_event(
            "edit_applied",
            path=target,
            label=edit.label,
            alternative=match.index,
            occurrences=occurrences,
            changed=changed,
            dry_run=self.dry_run,
        )
        return EditResult(path=target, changed=changed, match=match, occurrences=occurrences)


__all__ = [
    "Edit",
    "EditResult",
    "FileMutator",
    "atomic_write_text",
    "read_text",
    "transform_text",
]
