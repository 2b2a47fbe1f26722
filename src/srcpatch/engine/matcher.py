"""Ordered, first-match-wins text matching over several candidate shapes.

Each :class:`MatchSpec` strategy knows how to locate one shape of the text an
edit targets and how to render the replacement for a hit.  An :class:`Edit`
lists :class:`Alternative` entries in author-confidence order: the most
specific/most recent upstream shape first and the most generic fallback last.
:func:`find_match` never looks for the *best* match; the first alternative
that hits wins.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import ClassVar, Iterator, Literal, Sequence

EditPosition = Literal["replace", "before", "after"]


class MatchKind(str, Enum):
    """Supported match strategies."""

    LITERAL = "literal"
    REGEX = "regex"
    LINE = "line"
    BLOCK = "block"


@dataclass(frozen=True, slots=True)
class SpecMatch:
    """Location of a single hit inside the searched text."""

    start: int
    end: int
    text: str
    match: re.Match[str] | None = None


@lru_cache(maxsize=512)
def _compile(pattern: str, flags: int) -> re.Pattern[str]:
    return re.compile(pattern, flags)


class MatchSpec(ABC):
    """One candidate way of locating an edit point."""

    __slots__ = ()

    kind: ClassVar[MatchKind]

    @abstractmethod
    def search(self, text: str, start: int = 0) -> SpecMatch | None:
        """Return the first hit at or after ``start``."""

    @abstractmethod
    def render(self, found: SpecMatch, template: str) -> str:
        """Produce the replacement text for ``found``."""

    def find_all(self, text: str) -> Iterator[SpecMatch]:
        """Yield every non-overlapping hit from left to right."""
        position = 0
        while position <= len(text):
            found = self.search(text, position)
            if found is None:
                return
            yield found
            position = found.end if found.end > found.start else found.end + 1

    def check_template(self, template: str) -> None:
        """Raise :class:`re.error` if ``template`` cannot be rendered for a hit."""

    def contains(self, text: str) -> bool:
        return self.search(text) is not None

    def describe(self) -> str:
        pattern = getattr(self, "pattern", "")
        first_line = pattern.strip().splitlines()[0] if pattern.strip() else ""
        if len(first_line) > 60:
            first_line = first_line[:57] + "..."
        return f"{self.kind.value}:{first_line!r}"


@dataclass(frozen=True, slots=True)
class LiteralSpec(MatchSpec):
    """Exact substring; the template is inserted verbatim."""

    pattern: str
    kind: ClassVar[MatchKind] = MatchKind.LITERAL

    def search(self, text: str, start: int = 0) -> SpecMatch | None:
        if not self.pattern:
            return None
        index = text.find(self.pattern, start)
        if index < 0:
            return None
        return SpecMatch(start=index, end=index + len(self.pattern), text=self.pattern)

    def render(self, found: SpecMatch, template: str) -> str:
        return template


@dataclass(frozen=True, slots=True)
class RegexSpec(MatchSpec):
    """Regular expression; the template may reference capture groups."""

    pattern: str
    flags: int = 0
    kind: ClassVar[MatchKind] = MatchKind.REGEX

    @property
    def compiled(self) -> re.Pattern[str]:
        return _compile(self.pattern, self.flags)

    def check_template(self, template: str) -> None:
        self.compiled.sub(template, "")

    def search(self, text: str, start: int = 0) -> SpecMatch | None:
        match = self.compiled.search(text, start)
        if match is None:
            return None
        return SpecMatch(start=match.start(), end=match.end(), text=match.group(0), match=match)

    def render(self, found: SpecMatch, template: str) -> str:
        if found.match is None:
            return template
        return found.match.expand(template)


@dataclass(frozen=True, slots=True)
class AnchoredLineSpec(MatchSpec):
    """Whole line whose content (after indentation) starts with ``pattern``.

    The hit spans the full line including its trailing newline, so
    ``before``/``after`` positions insert whole lines.  The line's
    indentation is captured as ``indent`` for use in the template.
    """

    pattern: str
    kind: ClassVar[MatchKind] = MatchKind.LINE

    @property
    def compiled(self) -> re.Pattern[str]:
        return _compile(rf"^(?P<indent>[ \t]*)(?:{self.pattern})[^\n]*\n?", re.MULTILINE)

    def check_template(self, template: str) -> None:
        self.compiled.sub(template, "")

    def search(self, text: str, start: int = 0) -> SpecMatch | None:
        match = self.compiled.search(text, start)
        if match is None or match.end() == match.start():
            return None
        return SpecMatch(start=match.start(), end=match.end(), text=match.group(0), match=match)

    def render(self, found: SpecMatch, template: str) -> str:
        if found.match is None:
            return template
        return found.match.expand(template)


@dataclass(frozen=True, slots=True)
class BlockSpec(MatchSpec):
    """Multi-line literal block tolerant of indentation drift.

    Lines are compared after stripping horizontal whitespace, so a block
    written with spaces still matches a tab-indented file.  Internal
    whitespace and blank-line count must match exactly.
    """

    pattern: str
    kind: ClassVar[MatchKind] = MatchKind.BLOCK

    @property
    def compiled(self) -> re.Pattern[str]:
        return _compile(_block_regex(self.pattern), 0)

    def search(self, text: str, start: int = 0) -> SpecMatch | None:
        if not self.pattern.strip():
            return None
        match = self.compiled.search(text, start)
        if match is None:
            return None
        return SpecMatch(start=match.start(), end=match.end(), text=match.group(0), match=match)

    def render(self, found: SpecMatch, template: str) -> str:
        return template


def _block_regex(block: str) -> str:
    lines = block.strip("\n").splitlines()
    parts: list[str] = []
    for index, line in enumerate(lines):
        body = re.escape(line.strip())
        if index == 0:
            parts.append(body + r"[ \t]*")
        else:
            parts.append(r"\r?\n[ \t]*" + body + r"[ \t]*")
    return "".join(parts)


@dataclass(frozen=True, slots=True)
class Alternative:
    """A match spec paired with the replacement template it renders."""

    spec: MatchSpec
    template: str


@dataclass(frozen=True, slots=True)
class MatchResult:
    """First successful alternative for an edit."""

    index: int
    alternative: Alternative
    found: SpecMatch

    @property
    def replacement(self) -> str:
        return self.alternative.spec.render(self.found, self.alternative.template)

    @property
    def via_fallback(self) -> bool:
        return self.index > 0


def find_match(text: str, alternatives: Sequence[Alternative]) -> MatchResult | None:
    """Return the first alternative (in declaration order) that matches ``text``."""
    for index, alternative in enumerate(alternatives):
        found = alternative.spec.search(text)
        if found is not None:
            return MatchResult(index=index, alternative=alternative, found=found)
    return None


def describe_fallback(index: int) -> str:
    """Human-readable drift signal for the alternative that matched."""
    if index <= 0:
        return "matched primary pattern"
    return f"matched via fallback #{index + 1}"


__all__ = [
    "Alternative",
    "AnchoredLineSpec",
    "BlockSpec",
    "EditPosition",
    "LiteralSpec",
    "MatchKind",
    "MatchResult",
    "MatchSpec",
    "RegexSpec",
    "SpecMatch",
    "describe_fallback",
    "find_match",
]
