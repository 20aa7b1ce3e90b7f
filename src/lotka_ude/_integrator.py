from __future__ import annotations

from typing import Any, Callable, TypeAlias

import jax
import jax.numpy as jnp
import numpy as np
from diffrax import (
    RESULTS,
    AbstractSolver,
    Dopri8,
    ODETerm,
    PIDController,
    SaveAt,
    diffeqsolve,
)

from .errors import NumericalDivergence

ScalarLike: TypeAlias = bool | int | float | jax.Array | np.ndarray
VectorField = Callable[[ScalarLike, jnp.ndarray, Any], jnp.ndarray]

DEFAULT_MAX_STEPS = 100_000


def solve_trajectory(
    vector_field: VectorField,
    initial_state: jnp.ndarray,
    ts: jnp.ndarray,
    args: Any = None,
    *,
    solver: AbstractSolver | None = None,
    rtol: float = 1e-6,
    atol: float = 1e-6,
    dt0: float | None = None,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> tuple[jnp.ndarray, Any]:
    """Traceable solve returning the states at ``ts`` and the diffrax result code.

    Solver failures do not raise here so the function can sit inside a jitted or
    differentiated loss; failed steps surface as non-finite states.
    """

    solver = solver or Dopri8()
    ts = jnp.asarray(ts)
    sol = diffeqsolve(
        ODETerm(vector_field),
        solver,
        t0=ts[0],
        t1=ts[-1],
        dt0=dt0,
        y0=initial_state,
        args=args,
        saveat=SaveAt(ts=ts),
        stepsize_controller=PIDController(rtol=rtol, atol=atol),
        max_steps=max_steps,
        throw=False,
    )
    if sol.ys is None:
        raise RuntimeError("Solver returned no trajectory.")
    return sol.ys, sol.result


def integrate_system(
    vector_field: VectorField,
    initial_state: jnp.ndarray,
    ts: jnp.ndarray,
    args: Any = None,
    *,
    stage: str = "simulation",
    **solve_kwargs: Any,
) -> jnp.ndarray:
    """Eagerly solve and raise :class:`NumericalDivergence` on solver failure."""

    states, result = solve_trajectory(
        vector_field, initial_state, ts, args, **solve_kwargs
    )
    if not bool(result == RESULTS.successful):
        raise NumericalDivergence(
            stage, "ODE solver stopped before reaching the end of the time span."
        )
    if not bool(jnp.all(jnp.isfinite(states))):
        raise NumericalDivergence(stage, "ODE solution contains non-finite values.")
    return states
