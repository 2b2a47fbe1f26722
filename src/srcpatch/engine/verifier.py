"""Post-write verification of a unit's success marker."""

from __future__ import annotations

from pathlib import Path

from .gate import Predicate
from .mutator import FileMutator


def verify(text: str, predicate: Predicate) -> bool:
    """Return True when ``text`` carries the expected post-condition."""
    return predicate.holds(text)


class Verifier:
    """Re-reads a mutated file and checks its success marker."""

    def __init__(self, mutator: FileMutator) -> None:
        self._mutator = mutator

    def verify_path(self, path: Path, predicate: Predicate) -> bool:
        # Reads through the mutator so dry runs check the in-memory overlay.
        return verify(self._mutator.read(Path(path)), predicate)


__all__ = ["Verifier", "verify"]
