from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, TypeAlias

import jax
import jax.numpy as jnp
import numpy as np
from diffrax import AbstractSolver
from jax import tree_util

from ._integrator import DEFAULT_MAX_STEPS, integrate_system

ScalarLike: TypeAlias = bool | int | float | jax.Array | np.ndarray


@dataclass(frozen=True)
class LotkaVolterraConfig:
    alpha: float = 1.3  # prey growth
    beta: float = 0.9  # predation
    gamma: float = 0.8  # predator growth from predation
    delta: float = 1.8  # predator death
    initial_state: jnp.ndarray = field(
        default_factory=lambda: jnp.array([0.44249296, 4.6280594], dtype=jnp.float64)
    )
    t0: float = 0.0
    t1: float = 3.0
    saveat: float = 0.1
    rtol: float = 1e-12
    atol: float = 1e-12
    dt0: float | None = None
    max_steps: int = DEFAULT_MAX_STEPS

    def __post_init__(self: "LotkaVolterraConfig") -> None:
        for name in ("alpha", "beta", "gamma", "delta"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be positive.")
        if self.t1 <= self.t0:
            raise ValueError("t1 must be greater than t0.")
        if self.saveat <= 0.0:
            raise ValueError("saveat must be positive.")
        if self.saveat > self.t1 - self.t0:
            raise ValueError("saveat cannot exceed the time span.")
        if self.rtol <= 0.0 or self.atol <= 0.0:
            raise ValueError("rtol and atol must be positive.")
        init = jnp.asarray(self.initial_state, dtype=jnp.float64)
        if init.shape != (2,):
            raise ValueError("initial_state must have shape (2,).")
        object.__setattr__(self, "initial_state", init)

    @property
    def num_samples(self: "LotkaVolterraConfig") -> int:
        return int(round((self.t1 - self.t0) / self.saveat)) + 1

    @property
    def ts(self: "LotkaVolterraConfig") -> jnp.ndarray:
        return jnp.linspace(self.t0, self.t1, self.num_samples, dtype=jnp.float64)

    @property
    def parameters(self: "LotkaVolterraConfig") -> jnp.ndarray:
        return jnp.array(
            [self.alpha, self.beta, self.gamma, self.delta], dtype=jnp.float64
        )

    @property
    def known_parameters(self: "LotkaVolterraConfig") -> jnp.ndarray:
        """Parameters of the part of the dynamics assumed known (alpha, delta)."""

        return jnp.array([self.alpha, self.delta], dtype=jnp.float64)

    @property
    def interaction_parameters(self: "LotkaVolterraConfig") -> jnp.ndarray:
        """Parameters of the cross terms the residual model has to learn."""

        return jnp.array([self.beta, self.gamma], dtype=jnp.float64)


@tree_util.register_pytree_node_class
@dataclass(frozen=True)
class SimulationResult:
    ts: jnp.ndarray
    states: jnp.ndarray

    def __post_init__(self: "SimulationResult") -> None:
        # Shapes are only checked on concrete arrays; pytree unflattening may
        # pass placeholders.
        ts_shape = getattr(self.ts, "shape", None)
        states_shape = getattr(self.states, "shape", None)
        if ts_shape is not None and states_shape is not None:
            if len(states_shape) != 2 or states_shape[0] != ts_shape[0]:
                raise ValueError("states must have shape (len(ts), state_dim).")

    @property
    def num_samples(self: "SimulationResult") -> int:
        return int(self.ts.shape[0])

    def tree_flatten(
        self: "SimulationResult",
    ) -> tuple[tuple[jnp.ndarray, jnp.ndarray], None]:
        return (self.ts, self.states), None

    @classmethod
    def tree_unflatten(
        cls: type["SimulationResult"],
        _aux_data: Any,
        children: tuple[jnp.ndarray, jnp.ndarray],
    ) -> "SimulationResult":
        ts, states = children
        return cls(ts=ts, states=states)


def known_vector_field(config: LotkaVolterraConfig, state: jnp.ndarray) -> jnp.ndarray:
    """Prey growth and predator death, the part of the model taken as known."""

    prey, predator = state
    return jnp.array([config.alpha * prey, -config.delta * predator])


def interaction_terms(config: LotkaVolterraConfig, state: jnp.ndarray) -> jnp.ndarray:
    """The cross terms the residual network stands in for."""

    prey, predator = state
    return jnp.array(
        [-config.beta * prey * predator, config.gamma * prey * predator]
    )


def lotka_volterra_vector_field(
    config: LotkaVolterraConfig,
) -> Callable[[ScalarLike, jnp.ndarray, Any], jnp.ndarray]:
    def vf(t: ScalarLike, state: jnp.ndarray, _args: Any) -> jnp.ndarray:
        del t
        return known_vector_field(config, state) + interaction_terms(config, state)

    return vf


def hybrid_vector_field(
    config: LotkaVolterraConfig,
    residual_fn: Callable[[jnp.ndarray, Any], jnp.ndarray],
) -> Callable[[ScalarLike, jnp.ndarray, Any], jnp.ndarray]:
    """Known dynamics plus ``residual_fn(state, args)``.

    ``args`` is forwarded from the solver, which lets the learned parameters flow
    through :func:`diffrax.diffeqsolve` without closing over them.
    """

    def vf(t: ScalarLike, state: jnp.ndarray, args: Any) -> jnp.ndarray:
        del t
        correction = residual_fn(state, args)
        return known_vector_field(config, state) + correction.astype(state.dtype)

    return vf


def simulate_lotka_volterra(
    config: LotkaVolterraConfig,
    solver: AbstractSolver | None = None,
    ts: jnp.ndarray | None = None,
) -> SimulationResult:
    """Integrate the full predator-prey system at the configured tolerances."""

    if ts is None:
        ts = config.ts
    else:
        ts = jnp.asarray(ts, dtype=jnp.float64)
    states = integrate_system(
        lotka_volterra_vector_field(config),
        config.initial_state,
        ts,
        stage="ground truth simulation",
        solver=solver,
        rtol=config.rtol,
        atol=config.atol,
        dt0=config.dt0,
        max_steps=config.max_steps,
    )
    return SimulationResult(ts=ts, states=states)


def simulate_hybrid(
    config: LotkaVolterraConfig,
    residual_fn: Callable[[jnp.ndarray, Any], jnp.ndarray],
    ts: jnp.ndarray,
    args: Any = None,
    *,
    solver: AbstractSolver | None = None,
    rtol: float | None = None,
    atol: float | None = None,
    stage: str = "hybrid simulation",
) -> SimulationResult:
    """Integrate ``f_known + residual_fn`` sampled at the reference times ``ts``."""

    ts = jnp.asarray(ts, dtype=jnp.float64)
    states = integrate_system(
        hybrid_vector_field(config, residual_fn),
        config.initial_state,
        ts,
        args,
        stage=stage,
        solver=solver,
        rtol=config.rtol if rtol is None else rtol,
        atol=config.atol if atol is None else atol,
        dt0=config.dt0,
        max_steps=config.max_steps,
    )
    return SimulationResult(ts=ts, states=states)
