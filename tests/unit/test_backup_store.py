from __future__ import annotations

from pathlib import Path

from srcpatch.engine.backup import BackupStore
from srcpatch.utils import slugify


def test_slugify_unit_ids() -> None:
    assert slugify("FIX-A3") == "fix-a3"
    assert slugify("22682 / client") == "22682-client"
    assert slugify("") == "unit"
    long_slug = slugify("x" * 200, max_length=20)
    assert len(long_slug) <= 20


def test_backups_are_grouped_per_unit(target_tree, tmp_path: Path) -> None:
    first = target_tree.write("src/a.ts", "a\n")
    second = target_tree.write("src/nested/b.ts", "b\n")
    store = BackupStore(tmp_path / "backups")

    assert store.ensure("FIX-A1", target_tree.root, first) is not None
    assert store.ensure("FIX-A1", target_tree.root, first) is None
    store.ensure("FIX-A3", target_tree.root, second)

    assert store.list_backups() == [("fix-a1", Path("src/a.ts")), ("fix-a3", Path("src/nested/b.ts"))]
    assert store.list_backups("FIX-A3") == [("fix-a3", Path("src/nested/b.ts"))]

    target_tree.write("src/a.ts", "changed a\n")
    target_tree.write("src/nested/b.ts", "changed b\n")

    assert store.restore(target_tree.root, "FIX-A1") == [Path("src/a.ts")]
    assert target_tree.read("src/a.ts") == "a\n"
    assert target_tree.read("src/nested/b.ts") == "changed b\n"


def test_restore_without_backups_is_empty(target_tree, tmp_path: Path) -> None:
    assert BackupStore(tmp_path / "none").restore(target_tree.root) == []
