from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Mapping

import jax.numpy as jnp
import jax.random as jr
import numpy as np

from .assembly import (
    Discrepancy,
    recovered_interaction_parameters,
    resimulate,
    trajectory_discrepancy,
)
from .basis import polynomial_trig_basis, state_symbols
from .io import checkpoint_path, has_checkpoint, save_npz_bundle
from .lotka_volterra import (
    LotkaVolterraConfig,
    SimulationResult,
    simulate_hybrid,
    simulate_lotka_volterra,
)
from .models import build_residual_model
from .noise import add_gaussian_noise
from .plotting import plot_loss, plot_phase, plot_residuals, plot_trajectory, save_figure
from .sindy import SparseModel, refine, regress
from .training import (
    FitResult,
    Observer,
    ProgressReporter,
    TrainingSchedule,
    build_loss_fn,
    fit_residual,
)

Echo = Callable[[str], Any]


def default_thresholds() -> tuple[float, ...]:
    """Log-spaced sweep ``10**-10 ... 10**-0.5`` in steps of 0.05 decades."""

    exponents = np.round(np.arange(-10.0, -0.5 + 1e-9, 0.05), 10)
    return tuple(float(value) for value in 10.0**exponents)


@dataclass(frozen=True)
class ExperimentConfig:
    name: str = "partial_lotka_volterra"
    checkpoint_dir: Path | None = Path("checkpoints")
    system: LotkaVolterraConfig = field(default_factory=LotkaVolterraConfig)
    schedule: TrainingSchedule = field(default_factory=TrainingSchedule)
    noise_scale: float = 1e-5
    seed: int = 0
    network_widths: tuple[int, ...] = (32, 64, 32)
    hybrid_rtol: float = 1e-6
    hybrid_atol: float = 1e-6
    thresholds: tuple[float, ...] = field(default_factory=default_thresholds)
    normalize: bool = True
    denoise: bool = True
    regression_max_iter: int = 10_000
    refine_threshold: float = 0.1
    refine_max_iter: int = 1000
    # The first sample is the initial condition shared by every trajectory.
    regression_start: int = 1
    revalidate_cache: bool = True
    trajectory_tolerance: float = 0.1
    parameter_tolerance: float = 9e-2
    symbolic_l2_tolerance: float = 0.5
    symbolic_linf_tolerance: float = 0.15

    def __post_init__(self: "ExperimentConfig") -> None:
        if not self.name:
            raise ValueError("name must be a non-empty string.")
        if self.checkpoint_dir is not None:
            object.__setattr__(self, "checkpoint_dir", Path(self.checkpoint_dir))
        if self.noise_scale < 0.0:
            raise ValueError("noise_scale cannot be negative.")
        widths = tuple(int(width) for width in self.network_widths)
        if not widths or any(width <= 0 for width in widths):
            raise ValueError("network_widths must be positive.")
        object.__setattr__(self, "network_widths", widths)
        thresholds = tuple(float(value) for value in self.thresholds)
        if not thresholds or any(value < 0.0 for value in thresholds):
            raise ValueError("thresholds must be a non-empty sequence of non-negative values.")
        object.__setattr__(self, "thresholds", thresholds)
        if self.hybrid_rtol <= 0.0 or self.hybrid_atol <= 0.0:
            raise ValueError("hybrid tolerances must be positive.")
        if self.refine_threshold < 0.0:
            raise ValueError("refine_threshold cannot be negative.")
        if self.regression_max_iter <= 0 or self.refine_max_iter <= 0:
            raise ValueError("regression iteration caps must be positive.")
        if self.regression_start < 0 or self.regression_start >= self.system.num_samples - 1:
            raise ValueError("regression_start must leave at least two samples.")
        for name in (
            "trajectory_tolerance",
            "parameter_tolerance",
            "symbolic_l2_tolerance",
            "symbolic_linf_tolerance",
        ):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be positive.")

    @property
    def checkpoint(self: "ExperimentConfig") -> Path | None:
        if self.checkpoint_dir is None:
            return None
        return checkpoint_path(self.checkpoint_dir, self.name)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExperimentConfig":
        """Build a config from nested mappings (``system`` and ``schedule`` tables)."""

        values = dict(data)
        system = values.pop("system", None)
        schedule = values.pop("schedule", None)
        known = {item.name for item in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown experiment settings: {', '.join(sorted(unknown))}.")
        if system is not None:
            values["system"] = LotkaVolterraConfig(**dict(system))
        if schedule is not None:
            values["schedule"] = TrainingSchedule(**dict(schedule))
        if "network_widths" in values:
            values["network_widths"] = tuple(values["network_widths"])
        if "thresholds" in values:
            values["thresholds"] = tuple(values["thresholds"])
        return cls(**values)

    @classmethod
    def from_toml(cls, path: str | Path) -> "ExperimentConfig":
        with Path(path).open("rb") as handle:
            return cls.from_mapping(tomllib.load(handle))


@dataclass(frozen=True)
class AcceptanceCheck:
    name: str
    passed: bool
    value: float | None = None
    threshold: float | None = None

    def describe(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        if self.value is None:
            return f"{status} {self.name}"
        if self.threshold is None:
            return f"{status} {self.name}: {self.value:.6g}"
        return f"{status} {self.name}: {self.value:.6g} (limit {self.threshold:.6g})"


@dataclass(frozen=True)
class ExperimentResult:
    config: ExperimentConfig
    truth: SimulationResult
    data: SimulationResult
    fit: FitResult
    trained: SimulationResult
    first_pass: SparseModel
    refined: SparseModel
    symbolic: SimulationResult
    checks: tuple[AcceptanceCheck, ...]

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def trained_discrepancy(self) -> Discrepancy:
        return trajectory_discrepancy(self.trained, self.truth)

    @property
    def symbolic_discrepancy(self) -> Discrepancy:
        return trajectory_discrepancy(self.symbolic, self.truth)

    def report(self) -> str:
        return "\n".join(check.describe() for check in self.checks)


def _acceptance_checks(
    config: ExperimentConfig,
    fit: FitResult,
    trained: Discrepancy,
    refined: SparseModel,
    symbolic: Discrepancy,
) -> tuple[AcceptanceCheck, ...]:
    checks = []
    loss_limit = config.schedule.acceptance_threshold
    checks.append(
        AcceptanceCheck(
            "training loss",
            loss_limit is None or fit.final_loss <= loss_limit,
            fit.final_loss,
            loss_limit,
        )
    )
    checks.append(
        AcceptanceCheck(
            "trained trajectory L2",
            trained.l2 < config.trajectory_tolerance,
            trained.l2,
            config.trajectory_tolerance,
        )
    )
    u1, u2 = refined.basis.symbols
    checks.append(
        AcceptanceCheck(
            "interaction structure u1*u2",
            all(form == u1 * u2 for form in refined.structural_forms()),
        )
    )
    recovered = recovered_interaction_parameters(refined)
    expected = np.asarray(config.system.interaction_parameters)
    if recovered.shape == expected.shape:
        error = float(np.max(np.abs(recovered - expected)))
        checks.append(
            AcceptanceCheck(
                "interaction parameters",
                error <= config.parameter_tolerance,
                error,
                config.parameter_tolerance,
            )
        )
    else:
        checks.append(AcceptanceCheck("interaction parameters", False))
    checks.append(
        AcceptanceCheck(
            "symbolic trajectory L2",
            symbolic.l2 < config.symbolic_l2_tolerance,
            symbolic.l2,
            config.symbolic_l2_tolerance,
        )
    )
    checks.append(
        AcceptanceCheck(
            "symbolic trajectory Linf",
            symbolic.linf < config.symbolic_linf_tolerance,
            symbolic.linf,
            config.symbolic_linf_tolerance,
        )
    )
    return tuple(checks)


def run_experiment(
    config: ExperimentConfig,
    *,
    progress: bool = True,
    observer: Observer | None = None,
    echo: Echo = print,
) -> ExperimentResult:
    """Run data generation, training, both regression passes and validation.

    Stage failures raise the errors from :mod:`lotka_ude.errors`; acceptance
    results are collected in :attr:`ExperimentResult.checks` instead.
    """

    noise_key, model_key = jr.split(jr.PRNGKey(config.seed))
    system = config.system

    echo("Generate data")
    truth = simulate_lotka_volterra(system)
    data = add_gaussian_noise(truth, config.noise_scale, noise_key)

    echo("Setup neural network and auxiliary functions")
    residual = build_residual_model(model_key, widths=config.network_widths)
    loss_fn = build_loss_fn(
        system,
        residual,
        data,
        rtol=config.hybrid_rtol,
        atol=config.hybrid_atol,
    )

    checkpoint = config.checkpoint
    if checkpoint is not None and has_checkpoint(checkpoint):
        echo(f"Loading pretrained parameters from {checkpoint}")
    else:
        echo(f"Initial loss {float(loss_fn.value(residual.init_params()))}")
        echo("Train neural network until converged")
    fit = fit_residual(
        loss_fn,
        residual.init_params(),
        config.schedule,
        checkpoint,
        revalidate_cache=config.revalidate_cache,
        observer=observer if observer is not None else ProgressReporter(),
        progress=progress,
    )
    if not fit.from_cache:
        echo(f"Finished training with loss {fit.final_loss}")

    trained = simulate_hybrid(
        system,
        residual,
        truth.ts,
        fit.params,
        rtol=config.hybrid_rtol,
        atol=config.hybrid_atol,
        stage="trained model simulation",
    )
    trained_discrepancy = trajectory_discrepancy(trained, truth)

    states = jnp.asarray(data.states[config.regression_start :])
    inputs = np.asarray(states)
    outputs = np.asarray(residual.batch(states, fit.params))
    basis = polynomial_trig_basis(state_symbols(system.initial_state.shape[0]))

    echo("Start SINDy regression with unknown threshold")
    first_pass = regress(
        inputs,
        outputs,
        basis,
        config.thresholds,
        normalize=config.normalize,
        denoise=config.denoise,
        max_iter=config.regression_max_iter,
    )
    echo(first_pass.describe())

    echo("Refine the guess")
    refined = refine(
        inputs,
        outputs,
        first_pass,
        threshold=config.refine_threshold,
        max_iter=config.refine_max_iter,
    )
    echo(refined.describe())

    echo("Simulate system")
    symbolic = resimulate(system, refined, truth.ts)
    symbolic_discrepancy = trajectory_discrepancy(symbolic, truth)

    checks = _acceptance_checks(
        config, fit, trained_discrepancy, refined, symbolic_discrepancy
    )
    echo("Finished")
    return ExperimentResult(
        config=config,
        truth=truth,
        data=data,
        fit=fit,
        trained=trained,
        first_pass=first_pass,
        refined=refined,
        symbolic=symbolic,
        checks=checks,
    )


def save_results(result: ExperimentResult, directory: str | Path) -> list[Path]:
    """Write trajectories, parameters and comparison figures to ``directory``."""

    out_dir = Path(directory)
    history = result.fit.history
    saved = [
        save_npz_bundle(
            out_dir / f"{result.config.name}_results.npz",
            ts=result.truth.ts,
            states=result.truth.states,
            noisy=result.data.states,
            trained=result.trained.states,
            symbolic=result.symbolic.states,
            params=result.fit.params,
            coefficients=result.refined.coefficients,
            losses=history.as_array() if len(history) else None,
        )
    ]

    ts = np.asarray(result.truth.ts)
    ax = plot_trajectory(ts, result.data.states, markers=("o", "o"), styles=("", ""))
    plot_trajectory(
        ts,
        result.trained.states,
        labels=("prey (network)", "predator (network)"),
        ax=ax,
        title=None,
        styles=("--", "--"),
    )
    plot_trajectory(
        ts,
        result.symbolic.states,
        labels=("prey (recovered)", "predator (recovered)"),
        ax=ax,
        title="Data vs. hybrid models",
        styles=(":", ":"),
    )
    saved.append(save_figure(ax, out_dir / "trajectories.png"))

    ax = plot_residuals(
        ts, result.truth.states, result.symbolic.states, title="Recovered model residuals"
    )
    saved.append(save_figure(ax, out_dir / "residuals.png"))

    ax = plot_phase(result.truth.states, label="ground truth")
    plot_phase(result.symbolic.states, ax=ax, label="recovered model")
    saved.append(save_figure(ax, out_dir / "phase.png"))

    if len(history):
        saved.append(save_figure(plot_loss(history), out_dir / "training_loss.png"))
    return saved
