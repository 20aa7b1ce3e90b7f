#!/usr/bin/env python3
"""Repeat the partial Lotka-Volterra recovery for increasing measurement noise."""

from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path

from lotka_ude.errors import PipelineError
from lotka_ude.pipeline import ExperimentConfig

TARGET = Path(__file__).resolve().parent / "exp_1_partial_lotka_volterra.py"


def _noise_levels() -> tuple[float, ...]:
    return (1e-5, 1e-3, 1e-2)


def main() -> None:
    spec = spec_from_file_location("exp_1_partial_lotka_volterra", TARGET)
    module = module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)

    outcomes = {}
    for noise_scale in _noise_levels():
        print(f"Running {Path(__file__).name} with noise_scale={noise_scale:.0e}")
        config = ExperimentConfig(
            checkpoint_dir=module.CHECKPOINT_ROOT,
            name=f"partial_lotka_volterra_noise_{noise_scale:.0e}",
            noise_scale=noise_scale,
        )
        try:
            outcomes[noise_scale] = "passed" if module.main(config) else "failed checks"
        except PipelineError as exc:
            outcomes[noise_scale] = str(exc)

    for noise_scale, outcome in outcomes.items():
        print(f"noise_scale={noise_scale:.0e}: {outcome}")


if __name__ == "__main__":
    main()
