from __future__ import annotations

from pathlib import Path

from srcpatch.engine.gate import AllOf, MarkerPredicate, SpecPredicate, all_of, already_applied
from srcpatch.engine.matcher import AnchoredLineSpec, RegexSpec
from srcpatch.engine.mutator import FileMutator
from srcpatch.engine.verifier import Verifier, verify


def test_marker_predicate_counts_occurrences() -> None:
    marker = MarkerPredicate("reserveTokens || 0", min_count=2)

    assert not marker.holds("Math.floor(reserveTokens || 0)")
    assert marker.holds("a(reserveTokens || 0); b(reserveTokens || 0);")
    assert "x2" in marker.describe()


def test_empty_marker_never_holds() -> None:
    assert not MarkerPredicate("").holds("anything")


def test_spec_predicate_uses_structural_shape() -> None:
    predicate = SpecPredicate(RegexSpec(r"let parsed: Record<string, unknown>;\s*try \{"))

    assert predicate.holds("let parsed: Record<string, unknown>;\n  try {\n")
    assert not predicate.holds("const parsed = JSON.parse(stdout);")


def test_all_of_requires_every_marker() -> None:
    predicate = AllOf((MarkerPredicate("alpha"), SpecPredicate(AnchoredLineSpec("beta"))))

    assert predicate.holds("alpha\nbeta\n")
    assert not predicate.holds("alpha\n")
    assert not AllOf(()).holds("alpha")


def test_all_of_helper_collapses_single_predicate() -> None:
    marker = MarkerPredicate("alpha")

    assert all_of([marker]) is marker
    assert isinstance(all_of([marker, MarkerPredicate("beta")]), AllOf)


def test_already_applied_matches_verify_for_same_marker() -> None:
    marker = MarkerPredicate('tls?.enabled ? "wss" : "ws"')
    patched = 'const url = `${cfg.gateway?.tls?.enabled ? "wss" : "ws"}://127.0.0.1:${port}`;'

    assert already_applied(patched, marker)
    assert verify(patched, marker)
    assert not already_applied("const url = `ws://127.0.0.1:${port}`;", marker)


def test_verifier_reads_dry_run_overlay(tmp_path: Path) -> None:
    target = tmp_path / "file.js"
    target.write_text("before\n", encoding="utf-8")
    mutator = FileMutator(dry_run=True)
    mutator.write(target, "after\n")

    verifier = Verifier(mutator)

    assert verifier.verify_path(target, MarkerPredicate("after"))
    assert target.read_text(encoding="utf-8") == "before\n"
