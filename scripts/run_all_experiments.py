#!/usr/bin/env python3
"""Run every experiment script in turn and summarise which ones failed."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Iterable

ROOT_DIR = Path(__file__).resolve().parents[1]
EXPERIMENTS_DIR = ROOT_DIR / "scripts" / "experiments"


def _experiment_scripts() -> Iterable[Path]:
    if not EXPERIMENTS_DIR.exists():
        return []
    return sorted(EXPERIMENTS_DIR.glob("exp_*.py"))


def _run_script(script: Path) -> int:
    print(f"\n=== Running {script.relative_to(ROOT_DIR)} ===")
    return subprocess.run([sys.executable, str(script)], cwd=ROOT_DIR).returncode


def main() -> int:
    scripts = list(_experiment_scripts())
    if not scripts:
        print("No experiment scripts found.")
        return 0

    failures = [script for script in scripts if _run_script(script) != 0]
    if failures:
        print("\nFailed experiments:")
        for script in failures:
            print(f"  {script.relative_to(ROOT_DIR)}")
        return 1
    print("\nAll experiments completed successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
