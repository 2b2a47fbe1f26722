"""Structural idempotency predicates.

Whether a unit already landed is always re-derived from the current file
content.  The same predicate doubles as the verifier's post-condition, so a
patch author picks one marker that is absent before the edit and present
after it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from .matcher import MatchSpec


class Predicate(ABC):
    """Boolean check over file text."""

    __slots__ = ()

    @abstractmethod
    def holds(self, text: str) -> bool:
        """Return True when ``text`` satisfies the predicate."""

    @abstractmethod
    def describe(self) -> str:
        """Short label used in outcome details."""


@dataclass(frozen=True, slots=True)
class MarkerPredicate(Predicate):
    """Literal marker that must occur at least ``min_count`` times."""

    marker: str
    min_count: int = 1

    def holds(self, text: str) -> bool:
        if not self.marker:
            return False
        if self.min_count <= 1:
            return self.marker in text
        return text.count(self.marker) >= self.min_count

    def describe(self) -> str:
        if self.min_count > 1:
            return f"marker {self.marker!r} x{self.min_count}"
        return f"marker {self.marker!r}"


@dataclass(frozen=True, slots=True)
class SpecPredicate(Predicate):
    """Structural marker expressed as a match spec."""

    spec: MatchSpec

    def holds(self, text: str) -> bool:
        return self.spec.contains(text)

    def describe(self) -> str:
        return f"shape {self.spec.describe()}"


@dataclass(frozen=True, slots=True)
class AllOf(Predicate):
    """Every nested predicate must hold."""

    predicates: tuple[Predicate, ...]

    def holds(self, text: str) -> bool:
        return bool(self.predicates) and all(item.holds(text) for item in self.predicates)

    def describe(self) -> str:
        return " and ".join(item.describe() for item in self.predicates)


def all_of(predicates: Sequence[Predicate]) -> Predicate:
    """Collapse ``predicates`` into a single predicate."""
    items = tuple(predicates)
    if len(items) == 1:
        return items[0]
    return AllOf(items)


def already_applied(text: str, predicate: Predicate) -> bool:
    """Return True when ``text`` already reflects the unit's effect."""
    return predicate.holds(text)


__all__ = [
    "AllOf",
    "MarkerPredicate",
    "Predicate",
    "SpecPredicate",
    "all_of",
    "already_applied",
]
