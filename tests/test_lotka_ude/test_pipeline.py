from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import numpy as np
import pytest

from lotka_ude import pipeline
from lotka_ude.basis import Basis, state_symbols
from lotka_ude.lotka_volterra import LotkaVolterraConfig
from lotka_ude.pipeline import (
    AcceptanceCheck,
    ExperimentConfig,
    default_thresholds,
    run_experiment,
    save_results,
)
from lotka_ude.sindy import SparseModel
from lotka_ude.training import TrainingSchedule


def _exact_model(*_args, **_kwargs) -> SparseModel:
    u1, u2 = state_symbols()
    return SparseModel(
        basis=Basis([u1 * u2], (u1, u2)),
        coefficients=np.array([[-0.9], [0.8]]),
        thresholds=np.array([0.1, 0.1]),
        complexity=np.array([1, 1]),
        errors=np.zeros(2),
    )


def _short_experiment(tmp_path: Path) -> ExperimentConfig:
    return ExperimentConfig(
        name="short",
        checkpoint_dir=tmp_path / "checkpoints",
        system=LotkaVolterraConfig(t1=1.0, saveat=0.25),
        schedule=TrainingSchedule(adam_steps=2, lbfgs_steps=0, acceptance_threshold=None),
        network_widths=(4,),
        thresholds=(0.1,),
    )


def test_default_thresholds_span_the_reference_sweep():
    thresholds = default_thresholds()
    assert len(thresholds) == 191
    assert thresholds[0] == pytest.approx(1e-10)
    assert thresholds[-1] == pytest.approx(10**-0.5)
    assert all(a < b for a, b in zip(thresholds, thresholds[1:]))


def test_default_experiment_config():
    config = ExperimentConfig()
    assert config.noise_scale == 1e-5
    assert config.network_widths == (32, 64, 32)
    assert config.checkpoint == Path("checkpoints") / "partial_lotka_volterra.npz"
    assert ExperimentConfig(checkpoint_dir=None).checkpoint is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": ""},
        {"noise_scale": -1.0},
        {"network_widths": ()},
        {"thresholds": ()},
        {"thresholds": (-0.1,)},
        {"refine_threshold": -1.0},
        {"regression_start": 30},
        {"symbolic_l2_tolerance": 0.0},
    ],
)
def test_experiment_config_rejects_invalid_values(overrides):
    with pytest.raises(ValueError):
        ExperimentConfig(**overrides)


def test_config_loads_nested_toml_tables(tmp_path):
    path = tmp_path / "experiment.toml"
    path.write_text(
        "\n".join(
            [
                'name = "short"',
                'checkpoint_dir = "ckpt"',
                "noise_scale = 0.0",
                "network_widths = [4, 4]",
                "thresholds = [0.01, 0.1]",
                "",
                "[system]",
                "t1 = 1.0",
                "saveat = 0.25",
                "",
                "[schedule]",
                "adam_steps = 5",
                "acceptance_threshold = 0.5",
            ]
        )
    )
    config = ExperimentConfig.from_toml(path)
    assert config.name == "short"
    assert config.checkpoint == Path("ckpt") / "short.npz"
    assert config.network_widths == (4, 4)
    assert config.thresholds == (0.01, 0.1)
    assert config.system.num_samples == 5
    assert config.schedule.adam_steps == 5
    assert config.schedule.lbfgs_steps == TrainingSchedule().lbfgs_steps


def test_config_rejects_unknown_settings():
    with pytest.raises(ValueError, match="learning_rate"):
        ExperimentConfig.from_mapping({"learning_rate": 0.1})


def test_acceptance_check_descriptions():
    assert AcceptanceCheck("structure", True).describe() == "PASS structure"
    assert AcceptanceCheck("loss", False, 0.5).describe() == "FAIL loss: 0.5"
    assert (
        AcceptanceCheck("l2", True, 0.01, 0.1).describe() == "PASS l2: 0.01 (limit 0.1)"
    )


def test_run_experiment_reports_milestones_and_reuses_checkpoint(tmp_path, monkeypatch):
    monkeypatch.setattr(pipeline, "regress", _exact_model)
    monkeypatch.setattr(pipeline, "refine", _exact_model)
    config = _short_experiment(tmp_path)

    messages: list[str] = []
    result = run_experiment(config, progress=False, echo=messages.append)
    milestones = [
        "Generate data",
        "Setup neural network and auxiliary functions",
        "Train neural network until converged",
        "Start SINDy regression with unknown threshold",
        "Refine the guess",
        "Simulate system",
        "Finished",
    ]
    positions = [messages.index(milestone) for milestone in milestones]
    assert positions == sorted(positions)
    assert any(message.startswith("Initial loss") for message in messages)
    assert config.checkpoint is not None and config.checkpoint.exists()
    assert not result.fit.from_cache
    assert len(result.fit.history) == 2

    names = [check.name for check in result.checks]
    assert names == [
        "training loss",
        "trained trajectory L2",
        "interaction structure u1*u2",
        "interaction parameters",
        "symbolic trajectory L2",
        "symbolic trajectory Linf",
    ]
    passed = {check.name: check.passed for check in result.checks}
    assert passed["interaction structure u1*u2"]
    assert passed["interaction parameters"]
    assert passed["symbolic trajectory L2"]
    assert result.symbolic_discrepancy.l2 < 1e-8
    assert result.symbolic.states.shape == (config.system.num_samples, 2)

    messages.clear()
    cached = run_experiment(config, progress=False, echo=messages.append)
    assert any(message.startswith("Loading pretrained parameters") for message in messages)
    assert "Train neural network until converged" not in messages
    assert cached.fit.from_cache
    np.testing.assert_array_equal(np.asarray(cached.fit.params), np.asarray(result.fit.params))


def test_save_results_writes_arrays_and_figures(tmp_path, monkeypatch):
    monkeypatch.setattr(pipeline, "regress", _exact_model)
    monkeypatch.setattr(pipeline, "refine", _exact_model)
    result = run_experiment(_short_experiment(tmp_path), progress=False, echo=lambda _: None)
    saved = save_results(result, tmp_path / "out")
    assert {path.name for path in saved} == {
        "short_results.npz",
        "trajectories.png",
        "residuals.png",
        "phase.png",
        "training_loss.png",
    }
    with np.load(tmp_path / "out" / "short_results.npz") as data:
        assert data["states"].shape == (5, 2)
        np.testing.assert_allclose(data["coefficients"], [[-0.9], [0.8]])


@pytest.mark.slow
def test_reference_run_recovers_interaction_terms(tmp_path):
    config = ExperimentConfig(checkpoint_dir=tmp_path)
    result = run_experiment(config, progress=False, echo=lambda _: None)
    assert result.passed, result.report()
    assert result.fit.final_loss <= 1e-2
    assert result.trained_discrepancy.l2 < 0.1
    u1, u2 = result.refined.basis.symbols
    assert result.refined.structural_forms() == (u1 * u2, u1 * u2)
    np.testing.assert_allclose(
        np.abs(result.refined.parameters()), [0.9, 0.8], atol=9e-2
    )
    assert result.symbolic_discrepancy.l2 < 0.5
    assert result.symbolic_discrepancy.linf < 0.15

    cached = run_experiment(config, progress=False, echo=lambda _: None)
    assert cached.fit.from_cache
    np.testing.assert_array_equal(
        cached.first_pass.coefficients, result.first_pass.coefficients
    )
    np.testing.assert_array_equal(cached.refined.coefficients, result.refined.coefficients)


def test_shipped_reference_config_matches_defaults():
    path = Path(__file__).resolve().parents[2] / "configs" / "partial_lotka_volterra.toml"
    config = ExperimentConfig.from_toml(path)
    default = ExperimentConfig()
    assert config.schedule == default.schedule
    assert config.network_widths == default.network_widths
    assert config.thresholds == default.thresholds
    assert config.checkpoint == default.checkpoint
    np.testing.assert_allclose(config.system.parameters, default.system.parameters)
    np.testing.assert_allclose(config.system.initial_state, default.system.initial_state)
    np.testing.assert_allclose(config.system.ts, default.system.ts)
