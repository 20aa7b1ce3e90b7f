from __future__ import annotations

import jax
import jax.random as jr

from .lotka_volterra import SimulationResult


def add_gaussian_noise(
    result: SimulationResult,
    scale: float,
    key: jax.Array,
) -> SimulationResult:
    """Return a copy of ``result`` with i.i.d. N(0, scale**2) noise on every state entry.

    Sample times are untouched. The same ``key`` always yields the same noisy
    trajectory.
    """

    if scale < 0.0:
        raise ValueError("noise scale cannot be negative.")
    perturbation = scale * jr.normal(
        key, result.states.shape, dtype=result.states.dtype
    )
    return SimulationResult(ts=result.ts, states=result.states + perturbation)
