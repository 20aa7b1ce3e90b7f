#!/usr/bin/env python3
"""Partial-knowledge Lotka-Volterra: train the residual network, recover its terms."""

# %%
import sys
from pathlib import Path

_EXPERIMENTS_ROOT = Path(__file__).resolve().parent
if str(_EXPERIMENTS_ROOT) not in sys.path:
    sys.path.append(str(_EXPERIMENTS_ROOT))

if __package__ in (None, ""):
    from _paths import CHECKPOINT_ROOT, ensure_sys_path, output_dir
else:
    from ._paths import CHECKPOINT_ROOT, ensure_sys_path, output_dir

ensure_sys_path()
OUT_DIR = output_dir(__file__)

from lotka_ude.pipeline import ExperimentConfig, run_experiment, save_results


def main(config: ExperimentConfig | None = None) -> bool:
    if config is None:
        config = ExperimentConfig(checkpoint_dir=CHECKPOINT_ROOT)
    result = run_experiment(config)

    print("Recovered equations:")
    print(result.refined.describe())
    trained = result.trained_discrepancy
    symbolic = result.symbolic_discrepancy
    print(f"Network trajectory error: L2={trained.l2:.4g}, Linf={trained.linf:.4g}")
    print(f"Symbolic trajectory error: L2={symbolic.l2:.4g}, Linf={symbolic.linf:.4g}")
    print(result.report())

    for path in save_results(result, OUT_DIR / config.name):
        print(f"Saved {path}")
    return result.passed


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
