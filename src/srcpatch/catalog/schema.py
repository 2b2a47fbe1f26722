"""Validated records describing a patch catalog file."""

from __future__ import annotations

import re
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..engine.matcher import AnchoredLineSpec, RegexSpec

_REGEX_FLAG_NAMES = {"IGNORECASE", "MULTILINE", "DOTALL", "VERBOSE", "ASCII"}


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class AlternativeModel(RecordModel):
    """One candidate shape plus the text it becomes.

    Exactly one of ``literal``, ``regex``, ``line`` or ``block`` is set.
    """

    literal: Optional[str] = None
    regex: Optional[str] = None
    line: Optional[str] = None
    block: Optional[str] = None
    flags: List[str] = Field(default_factory=list)
    template: str = ""

    @property
    def kind(self) -> str:
        for name in ("literal", "regex", "line", "block"):
            if getattr(self, name) is not None:
                return name
        raise AssertionError("validated alternative without a pattern")

    @property
    def pattern(self) -> str:
        return getattr(self, self.kind)

    @property
    def flag_value(self) -> int:
        value = 0
        for name in self.flags:
            value |= int(getattr(re, name))
        return value

    @field_validator("flags")
    @classmethod
    def _known_flags(cls, value: List[str]) -> List[str]:
        normalised = [flag.strip().upper() for flag in value]
        unknown = sorted(set(normalised) - _REGEX_FLAG_NAMES)
        if unknown:
            raise ValueError(f"unknown regex flag(s): {', '.join(unknown)}")
        return normalised

    @model_validator(mode="after")
    def _one_pattern(self) -> "AlternativeModel":
        provided = [name for name in ("literal", "regex", "line", "block") if getattr(self, name) is not None]
        if len(provided) != 1:
            raise ValueError("set exactly one of literal, regex, line or block")
        if not self.pattern:
            raise ValueError(f"{provided[0]} pattern must not be empty")
        if self.flags and provided[0] != "regex":
            raise ValueError("flags are only valid with a regex alternative")
        if provided[0] in ("regex", "line"):
            spec = RegexSpec(self.pattern, self.flag_value) if provided[0] == "regex" else AnchoredLineSpec(self.pattern)
            try:
                spec.compiled
            except re.error as error:
                raise ValueError(f"invalid {provided[0]} pattern {self.pattern!r}: {error}") from error
            try:
                spec.check_template(self.template)
            except re.error as error:
                raise ValueError(f"invalid template {self.template!r} for {provided[0]} pattern: {error}") from error
        return self


class MarkerModel(RecordModel):
    """Structured idempotency marker."""

    literal: Optional[str] = None
    min_count: int = Field(default=1, ge=1)
    regex: Optional[str] = None
    line: Optional[str] = None
    all: Optional[List[Union[str, "MarkerModel"]]] = None

    @model_validator(mode="after")
    def _one_form(self) -> "MarkerModel":
        provided = [name for name in ("literal", "regex", "line", "all") if getattr(self, name) is not None]
        if len(provided) != 1:
            raise ValueError("marker needs exactly one of literal, regex, line or all")
        if self.all is not None and not self.all:
            raise ValueError("'all' marker must list at least one marker")
        if self.min_count != 1 and self.literal is None:
            raise ValueError("min_count is only valid with a literal marker")
        for name in ("regex", "line"):
            pattern = getattr(self, name)
            if pattern is not None:
                try:
                    re.compile(pattern)
                except re.error as error:
                    raise ValueError(f"invalid {name} marker {pattern!r}: {error}") from error
        return self


MarkerField = Union[str, MarkerModel]


class EditModel(RecordModel):
    """Single edit with its ordered alternatives."""

    alternatives: List[AlternativeModel] = Field(min_length=1)
    position: Literal["replace", "before", "after"] = "replace"
    replace_all: bool = False
    skip_if: Optional[MarkerField] = None
    optional: bool = False
    label: str = ""


class TargetModel(RecordModel):
    """Files (by glob) and the edits applied to each of them."""

    path: Union[str, List[str]]
    edits: List[EditModel] = Field(min_length=1)
    marker: Optional[MarkerField] = None

    @property
    def patterns(self) -> List[str]:
        return [self.path] if isinstance(self.path, str) else list(self.path)

    @field_validator("path")
    @classmethod
    def _non_empty(cls, value: Union[str, List[str]]) -> Union[str, List[str]]:
        items = [value] if isinstance(value, str) else value
        if not items or any(not item.strip() for item in items):
            raise ValueError("target path must be a non-empty glob or list of globs")
        return value


class InstallModel(RecordModel):
    """External command that materialises ``creates`` under the root."""

    command: List[str] = Field(min_length=1)
    creates: str
    cwd: str = "."
    timeout: Optional[float] = Field(default=None, gt=0)


class UnitModel(RecordModel):
    """Catalog entry for one patch unit."""

    id: str
    title: str = ""
    marker: Optional[MarkerField] = None
    targets: List[TargetModel] = Field(default_factory=list)
    install: Optional[InstallModel] = None
    requires: List[str] = Field(default_factory=list)
    backup: bool = False
    enabled: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Issue numbers are commonly written unquoted in YAML.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("requires", mode="before")
    @classmethod
    def _coerce_requires(cls, value: Any) -> Any:
        if isinstance(value, (str, int)):
            value = [value]
        if isinstance(value, list):
            return [str(item) if isinstance(item, int) else item for item in value]
        return value

    @model_validator(mode="after")
    def _complete(self) -> "UnitModel":
        if not self.id.strip():
            raise ValueError("unit id must not be empty")
        if not self.targets and self.install is None:
            raise ValueError(f"unit {self.id} needs targets or an install step")
        for target in self.targets:
            if target.marker is None and self.marker is None:
                raise ValueError(f"unit {self.id} needs a marker for {', '.join(target.patterns)}")
        return self


class CatalogFileModel(RecordModel):
    """Top-level structure of a catalog YAML file."""

    phase: Optional[str] = None
    description: str = ""
    units: List[UnitModel] = Field(default_factory=list)


MarkerModel.model_rebuild()

__all__ = [
    "AlternativeModel",
    "CatalogFileModel",
    "EditModel",
    "InstallModel",
    "MarkerField",
    "MarkerModel",
    "RecordModel",
    "TargetModel",
    "UnitModel",
]
