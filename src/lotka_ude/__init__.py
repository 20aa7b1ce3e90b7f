"""Partial-knowledge Lotka-Volterra: neural residual training and sparse symbolic recovery."""

import jax

# Ground-truth tolerances of 1e-12 need double precision.
jax.config.update("jax_enable_x64", True)

__version__ = "0.1.0"

from .assembly import (
    Discrepancy,
    assemble_symbolic_system,
    recovered_interaction_parameters,
    resimulate,
    symbolic_residual,
    trajectory_discrepancy,
)
from .basis import Basis, narrowed_basis, polynomial_trig_basis, state_symbols
from .errors import (
    CheckpointIOError,
    NumericalDivergence,
    OptimizationDivergence,
    PipelineError,
    RegressionInfeasible,
)
from .io import checkpoint_path, load_checkpoint, save_checkpoint, save_npz_bundle
from .lotka_volterra import (
    LotkaVolterraConfig,
    SimulationResult,
    simulate_hybrid,
    simulate_lotka_volterra,
)
from .metrics import l2_norm, linf_norm, mse, sum_squared_error
from .models import ResidualMLP, ResidualModel, build_residual_model
from .noise import add_gaussian_noise
from .pipeline import (
    AcceptanceCheck,
    ExperimentConfig,
    ExperimentResult,
    run_experiment,
    save_results,
)
from .sindy import (
    SparseModel,
    refine,
    regress,
    residual_objective,
    sindy_objective,
    sr3_optimizer,
)
from .training import (
    FitResult,
    LossHistory,
    ProgressReporter,
    TrainingSchedule,
    build_loss_fn,
    fit_residual,
    train,
)

__all__ = [
    "AcceptanceCheck",
    "Basis",
    "CheckpointIOError",
    "Discrepancy",
    "ExperimentConfig",
    "ExperimentResult",
    "FitResult",
    "LossHistory",
    "LotkaVolterraConfig",
    "NumericalDivergence",
    "OptimizationDivergence",
    "PipelineError",
    "ProgressReporter",
    "RegressionInfeasible",
    "ResidualMLP",
    "ResidualModel",
    "SimulationResult",
    "SparseModel",
    "TrainingSchedule",
    "add_gaussian_noise",
    "assemble_symbolic_system",
    "build_loss_fn",
    "build_residual_model",
    "checkpoint_path",
    "fit_residual",
    "l2_norm",
    "linf_norm",
    "load_checkpoint",
    "mse",
    "narrowed_basis",
    "polynomial_trig_basis",
    "recovered_interaction_parameters",
    "refine",
    "regress",
    "resimulate",
    "residual_objective",
    "run_experiment",
    "save_checkpoint",
    "save_npz_bundle",
    "save_results",
    "simulate_hybrid",
    "simulate_lotka_volterra",
    "sindy_objective",
    "sr3_optimizer",
    "state_symbols",
    "sum_squared_error",
    "symbolic_residual",
    "train",
    "trajectory_discrepancy",
]
