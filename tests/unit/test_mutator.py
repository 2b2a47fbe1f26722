from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from srcpatch.engine.errors import NoPatternMatch, TargetReadError, TemplateError, WriteError
from srcpatch.engine.gate import MarkerPredicate
from srcpatch.engine.matcher import Alternative, AnchoredLineSpec, LiteralSpec, RegexSpec
from srcpatch.engine.mutator import Edit, FileMutator, atomic_write_text, transform_text


def _edit(*alternatives: Alternative, **kwargs) -> Edit:
    return Edit(alternatives=tuple(alternatives), **kwargs)


def test_transform_replaces_first_occurrence_only() -> None:
    edit = _edit(Alternative(LiteralSpec("ws://"), "wss://"))

    new_text, match, count = transform_text("ws://a ws://b", edit)

    assert new_text == "wss://a ws://b"
    assert match.index == 0
    assert count == 1


def test_transform_replace_all_rewrites_every_occurrence() -> None:
    edit = _edit(
        Alternative(LiteralSpec("missing"), "never"),
        Alternative(RegexSpec(r"floor\((\w+)\)"), r"floor(\1 || 0)"),
        replace_all=True,
    )

    new_text, match, count = transform_text("floor(a); floor(b);", edit)

    assert new_text == "floor(a || 0); floor(b || 0);"
    assert match.index == 1
    assert count == 2


def test_transform_positions_insert_around_hit() -> None:
    text = "start\n  anchor();\nend\n"
    line = AnchoredLineSpec(r"anchor\(\);")

    after, _, _ = transform_text(text, _edit(Alternative(line, r"\g<indent>added();\n"), position="after"))
    before, _, _ = transform_text(text, _edit(Alternative(line, r"\g<indent>added();\n"), position="before"))

    assert after == "start\n  anchor();\n  added();\nend\n"
    assert before == "start\n  added();\n  anchor();\nend\n"


def test_transform_raises_no_pattern_match_with_details() -> None:
    edit = _edit(Alternative(LiteralSpec("one"), ""), Alternative(LiteralSpec("two"), ""), label="tls-upgrade")

    with pytest.raises(NoPatternMatch) as excinfo:
        transform_text("three", edit)

    assert excinfo.value.details["label"] == "tls-upgrade"
    assert len(excinfo.value.details["alternatives"]) == 2


def test_unexpandable_template_raises_template_error() -> None:
    edit = _edit(Alternative(RegexSpec(r"split\((\w+)\)"), r"\1.split(/\s+/) /*T1*/"), label="split-args")

    with pytest.raises(TemplateError) as excinfo:
        transform_text("args = split(line);", edit)

    assert "bad escape" in str(excinfo.value)
    assert "split-args" in str(excinfo.value)
    assert excinfo.value.details["template"] == r"\1.split(/\s+/) /*T1*/"


def test_template_referencing_missing_group_raises_template_error() -> None:
    edit = _edit(Alternative(AnchoredLineSpec(r"anchor\(\);"), r"\g<indent>\2"), replace_all=True)

    with pytest.raises(TemplateError):
        transform_text("  anchor();\n", edit)


def test_apply_edit_rereads_so_chained_edits_compose(tmp_path: Path) -> None:
    target = tmp_path / "chain.ts"
    target.write_text("alpha\n", encoding="utf-8")
    mutator = FileMutator()

    mutator.apply_edit(target, _edit(Alternative(LiteralSpec("alpha"), "alpha beta")))
    mutator.apply_edit(target, _edit(Alternative(LiteralSpec("beta"), "beta gamma")))

    assert target.read_text(encoding="utf-8") == "alpha beta gamma\n"


def test_apply_edit_honours_skip_if(tmp_path: Path) -> None:
    target = tmp_path / "partial.ts"
    target.write_text("done already\n", encoding="utf-8")
    mutator = FileMutator()

    result = mutator.apply_edit(
        target,
        _edit(Alternative(LiteralSpec("missing"), "x"), skip_if=MarkerPredicate("done")),
    )

    assert result.skipped
    assert not result.changed
    assert result.note == "edit already present"


def test_dry_run_leaves_disk_untouched(tmp_path: Path) -> None:
    target = tmp_path / "dry.ts"
    target.write_text("old\n", encoding="utf-8")
    mutator = FileMutator(dry_run=True)

    result = mutator.apply_edit(target, _edit(Alternative(LiteralSpec("old"), "new")))

    assert result.changed
    assert mutator.read(target) == "new\n"
    assert target.read_text(encoding="utf-8") == "old\n"


def test_atomic_write_preserves_mode_and_line_endings(tmp_path: Path) -> None:
    target = tmp_path / "script.sh"
    target.write_bytes(b"#!/bin/sh\r\necho old\r\n")
    target.chmod(0o755)

    atomic_write_text(target, "#!/bin/sh\r\necho new\r\n")

    assert target.read_bytes() == b"#!/bin/sh\r\necho new\r\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o755
    assert [entry.name for entry in tmp_path.iterdir()] == ["script.sh"]


def test_interrupted_rename_keeps_original_content(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "bundle.js"
    target.write_text("original\n", encoding="utf-8")

    def _fail_replace(src, dst):
        raise OSError("simulated crash before rename")

    monkeypatch.setattr(os, "replace", _fail_replace)

    with pytest.raises(WriteError):
        atomic_write_text(target, "mutated\n")

    assert target.read_text(encoding="utf-8") == "original\n"
    assert [entry.name for entry in tmp_path.iterdir()] == ["bundle.js"]


def test_read_errors_become_target_read_error(tmp_path: Path) -> None:
    target = tmp_path / "binary.js"
    target.write_bytes(b"\xff\xfe\x00bad")

    with pytest.raises(TargetReadError):
        FileMutator().read(target)
