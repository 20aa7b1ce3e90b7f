from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import jax.numpy as jnp
import numpy as np
import sympy as sp
from diffrax import AbstractSolver

from .lotka_volterra import (
    LotkaVolterraConfig,
    SimulationResult,
    hybrid_vector_field,
    simulate_hybrid,
)
from .metrics import l2_norm, linf_norm
from .sindy import SparseModel


@dataclass(frozen=True)
class Discrepancy:
    l2: float
    linf: float


def symbolic_residual(model: SparseModel) -> Callable[[jnp.ndarray, Any], jnp.ndarray]:
    """Traceable ``(state, args) -> z`` evaluating the recovered equations.

    ``args`` is accepted for signature compatibility with the learned residual and
    ignored.
    """

    if model.basis.state_size != model.num_targets:
        raise ValueError("The recovered model must have one equation per state.")
    equations = sp.lambdify(
        model.basis.symbols, list(model.equations()), modules="jax"
    )
    size = model.basis.state_size

    def residual(state: jnp.ndarray, _args: Any = None) -> jnp.ndarray:
        values = equations(*(state[i] for i in range(size)))
        return jnp.stack([jnp.asarray(value, dtype=state.dtype) for value in values])

    return residual


def assemble_symbolic_system(config: LotkaVolterraConfig, model: SparseModel):
    """Known prey growth / predator death plus the recovered interaction terms."""

    return hybrid_vector_field(config, symbolic_residual(model))


def resimulate(
    config: LotkaVolterraConfig,
    model: SparseModel,
    ts: jnp.ndarray | None = None,
    *,
    solver: AbstractSolver | None = None,
) -> SimulationResult:
    """Integrate the assembled system with the ground-truth tolerances and sample times."""

    return simulate_hybrid(
        config,
        symbolic_residual(model),
        config.ts if ts is None else ts,
        solver=solver,
        stage="symbolic model simulation",
    )


def trajectory_discrepancy(
    prediction: SimulationResult | jnp.ndarray,
    target: SimulationResult | jnp.ndarray,
) -> Discrepancy:
    pred = prediction.states if isinstance(prediction, SimulationResult) else prediction
    ref = target.states if isinstance(target, SimulationResult) else target
    pred = jnp.asarray(pred)
    ref = jnp.asarray(ref)
    if pred.shape != ref.shape:
        raise ValueError(
            f"Trajectories differ in shape: {pred.shape} vs {ref.shape}."
        )
    return Discrepancy(l2=float(l2_norm(pred, ref)), linf=float(linf_norm(pred, ref)))


def recovered_interaction_parameters(model: SparseModel) -> np.ndarray:
    """Magnitudes of the recovered coefficients, comparable to ``(beta, gamma)``."""

    return np.abs(model.parameters())
