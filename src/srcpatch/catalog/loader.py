"""Load catalog YAML files into immutable engine units."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from pydantic import ValidationError

from ..engine.gate import AllOf, MarkerPredicate, Predicate, SpecPredicate
from ..engine.install import InstallStep
from ..engine.matcher import Alternative, AnchoredLineSpec, BlockSpec, LiteralSpec, MatchSpec, RegexSpec
from ..engine.mutator import Edit
from ..engine.unit import PatchUnit, Target
from .schema import AlternativeModel, CatalogFileModel, EditModel, MarkerField, TargetModel, UnitModel

LOGGER = logging.getLogger(__name__)

BUILTIN_PREFIX = "builtin:"


class CatalogError(ValueError):
    """Raised when a catalog cannot be read or is inconsistent."""


@dataclass(frozen=True, slots=True)
class Catalog:
    """Ordered, validated units for one phase."""

    units: tuple[PatchUnit, ...]
    phase: Optional[str] = None
    description: str = ""
    source: str = ""

    @property
    def ids(self) -> list[str]:
        return [unit.id for unit in self.units]

    def get(self, unit_id: str) -> PatchUnit:
        for unit in self.units:
            if unit.id == unit_id:
                return unit
        raise KeyError(unit_id)

    def select(self, unit_ids: Iterable[str]) -> "Catalog":
        """Return a catalog limited to ``unit_ids``, keeping catalog order."""
        wanted = set(unit_ids)
        missing = sorted(wanted - set(self.ids))
        if missing:
            raise CatalogError(f"Unknown unit id(s) in {self.source}: {', '.join(missing)}")
        return Catalog(
            units=tuple(unit for unit in self.units if unit.id in wanted),
            phase=self.phase,
            description=self.description,
            source=self.source,
        )


def build_spec(model: AlternativeModel) -> MatchSpec:
    kind = model.kind
    if kind == "literal":
        return LiteralSpec(model.pattern)
    if kind == "regex":
        return RegexSpec(model.pattern, model.flag_value)
    if kind == "line":
        return AnchoredLineSpec(model.pattern)
    return BlockSpec(model.pattern)


def build_predicate(marker: MarkerField) -> Predicate:
    if isinstance(marker, str):
        return MarkerPredicate(marker)
    if marker.literal is not None:
        return MarkerPredicate(marker.literal, marker.min_count)
    if marker.regex is not None:
        return SpecPredicate(RegexSpec(marker.regex, re.MULTILINE))
    if marker.line is not None:
        return SpecPredicate(AnchoredLineSpec(marker.line))
    return AllOf(tuple(build_predicate(item) for item in marker.all or ()))


def build_edit(model: EditModel) -> Edit:
    return Edit(
        alternatives=tuple(Alternative(build_spec(item), item.template) for item in model.alternatives),
        position=model.position,
        replace_all=model.replace_all,
        skip_if=build_predicate(model.skip_if) if model.skip_if is not None else None,
        optional=model.optional,
        label=model.label,
    )


def build_target(model: TargetModel) -> Target:
    return Target(
        patterns=tuple(model.patterns),
        edits=tuple(build_edit(edit) for edit in model.edits),
        marker=build_predicate(model.marker) if model.marker is not None else None,
    )


def build_unit(model: UnitModel) -> PatchUnit:
    install = None
    if model.install is not None:
        install = InstallStep(
            command=tuple(model.install.command),
            creates=model.install.creates,
            cwd=model.install.cwd,
            timeout=model.install.timeout,
        )
    return PatchUnit(
        id=model.id,
        title=model.title,
        targets=tuple(build_target(target) for target in model.targets),
        marker=build_predicate(model.marker) if model.marker is not None else None,
        install=install,
        requires=tuple(model.requires),
        backup=model.backup,
        enabled=model.enabled,
    )


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for entry in error.errors():
        location = ".".join(str(part) for part in entry.get("loc", ()))
        problems.append(f"{location or '<root>'}: {entry.get('msg', 'invalid value')}")
    return "; ".join(problems)


def parse_catalog(data: Any, *, source: str = "<memory>") -> Catalog:
    """Validate already-parsed YAML data and convert it into a :class:`Catalog`."""
    if data is None:
        data = {}
    if isinstance(data, list):
        data = {"units": data}
    if not isinstance(data, dict):
        raise CatalogError(f"{source}: catalog must be a mapping with a 'units' list")
    try:
        model = CatalogFileModel.model_validate(data)
    except ValidationError as error:
        raise CatalogError(f"{source}: {_format_validation_error(error)}") from error

    seen: set[str] = set()
    units: list[PatchUnit] = []
    for unit_model in model.units:
        if unit_model.id in seen:
            raise CatalogError(f"{source}: duplicate unit id '{unit_model.id}'")
        for requirement in unit_model.requires:
            if requirement not in seen:
                raise CatalogError(
                    f"{source}: unit '{unit_model.id}' requires '{requirement}', "
                    "which must be declared earlier in the same catalog"
                )
        seen.add(unit_model.id)
        units.append(build_unit(unit_model))

    return Catalog(units=tuple(units), phase=model.phase, description=model.description, source=source)


def _read_reference(reference: str, base_dir: Optional[Path]) -> tuple[str, str]:
    if reference.startswith(BUILTIN_PREFIX):
        name = reference[len(BUILTIN_PREFIX) :].strip()
        resource = resources.files("srcpatch.catalog").joinpath("data").joinpath(f"{name}.yaml")
        if not name or not resource.is_file():
            raise CatalogError(f"Unknown built-in catalog '{name}'")
        return resource.read_text(encoding="utf-8"), reference

    path = Path(reference).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    try:
        return path.read_text(encoding="utf-8"), path.as_posix()
    except OSError as error:
        raise CatalogError(f"Cannot read catalog {path}: {error}") from error


def load_catalog(reference: str | Path, *, base_dir: Optional[Path] = None) -> Catalog:
    """Load ``builtin:<name>`` or a YAML file path (relative to ``base_dir``)."""
    text, source = _read_reference(str(reference), base_dir)
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as error:
        raise CatalogError(f"Failed to parse catalog {source}: {error}") from error
    catalog = parse_catalog(data, source=source)
    LOGGER.debug("Loaded %d unit(s) from %s", len(catalog.units), source)
    return catalog


def builtin_catalogs() -> list[str]:
    """Names of the catalogs shipped with the package."""
    data_dir = resources.files("srcpatch.catalog").joinpath("data")
    return sorted(entry.name[: -len(".yaml")] for entry in data_dir.iterdir() if entry.name.endswith(".yaml"))


__all__ = [
    "BUILTIN_PREFIX",
    "Catalog",
    "CatalogError",
    "build_edit",
    "build_predicate",
    "build_spec",
    "build_target",
    "build_unit",
    "builtin_catalogs",
    "load_catalog",
    "parse_catalog",
]
