from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@dataclass(slots=True)
class TargetTree:
    """Fixture payload representing the third-party tree under patch."""

    root: Path

    def write(self, relative: str, content: str, *, dedent: bool = True) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        text = textwrap.dedent(content).lstrip("\n") if dedent else content
        path.write_bytes(text.encode("utf-8"))
        return path

    def read(self, relative: str) -> str:
        return (self.root / relative).read_bytes().decode("utf-8")

    def snapshot(self) -> dict[str, bytes]:
        return {
            path.relative_to(self.root).as_posix(): path.read_bytes()
            for path in sorted(self.root.rglob("*"))
            if path.is_file()
        }


@pytest.fixture()
def target_tree(tmp_path: Path) -> TargetTree:
    """Create an empty target root for patch runs."""

    root = tmp_path / "target"
    root.mkdir()
    return TargetTree(root=root)


@pytest.fixture()
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point configuration lookup at a fresh directory with a state dir inside it."""

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_path = config_dir / "srcpatch.yaml"
    monkeypatch.delenv("SRCPATCH_CONFIG", raising=False)
    monkeypatch.delenv("SRCPATCH_INSTALL_TIMEOUT", raising=False)
    monkeypatch.chdir(config_dir)
    return config_path
