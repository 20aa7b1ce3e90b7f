from __future__ import annotations

import sys
from pathlib import Path

ROOT_MARKER = "pyproject.toml"


def _locate_repo_root(marker: str = ROOT_MARKER) -> Path:
    """Walk upward from this file to the first directory holding ``marker``."""

    here = Path(__file__).resolve()
    for candidate in here.parents:
        if (candidate / marker).is_file():
            return candidate
    raise RuntimeError(f"Unable to find '{marker}' above {here}")


REPO_ROOT = _locate_repo_root()
SRC_DIR = REPO_ROOT / "src"
OUT_ROOT = REPO_ROOT / "out"
CHECKPOINT_ROOT = REPO_ROOT / "checkpoints"


def output_dir(file: str | Path) -> Path:
    """Per-experiment output folder named after the script."""

    return OUT_ROOT / Path(file).stem


def ensure_sys_path(*additional: Path | str) -> None:
    """Make the in-tree package importable when it is not installed."""

    for entry in (SRC_DIR, *additional):
        entry_str = str(entry)
        if entry_str not in sys.path:
            sys.path.append(entry_str)


__all__ = [
    "CHECKPOINT_ROOT",
    "OUT_ROOT",
    "REPO_ROOT",
    "SRC_DIR",
    "ensure_sys_path",
    "output_dir",
]
