from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

import equinox as eqx
import jax
import jax.numpy as jnp
import optax
import optax.tree_utils as otu
from diffrax import AbstractSolver
from tqdm import tqdm

from ._integrator import solve_trajectory
from .errors import CheckpointIOError, NumericalDivergence, OptimizationDivergence
from .io import has_checkpoint, load_checkpoint, save_checkpoint
from .lotka_volterra import LotkaVolterraConfig, SimulationResult, hybrid_vector_field
from .metrics import sum_squared_error
from .models import ResidualModel

Observer = Callable[[int, float], bool]


class LossHistory:
    """Append-only record of the scalar loss after every optimiser iteration.

    One history is shared by both optimisation phases, so iteration numbers keep
    counting up when the quasi-Newton phase takes over from Adam.
    """

    def __init__(self, values: Iterable[float] = ()) -> None:
        self._values: list[float] = [float(value) for value in values]

    def append(self, value: float) -> None:
        self._values.append(float(value))

    @property
    def last(self) -> float:
        if not self._values:
            raise ValueError("LossHistory is empty.")
        return self._values[-1]

    def as_array(self) -> jnp.ndarray:
        return jnp.asarray(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[float]:
        return iter(tuple(self._values))

    def __getitem__(self, index: int) -> float:
        return self._values[index]

    def __repr__(self) -> str:
        return f"LossHistory(len={len(self)})"


@dataclass(frozen=True)
class TrainingSchedule:
    adam_learning_rate: float = 0.01
    adam_steps: int = 100
    lbfgs_steps: int = 10_000
    initial_stepnorm: float = 0.01
    memory_size: int = 10
    max_linesearch_steps: int = 30
    gradient_tolerance: float = 1e-8
    report_every: int = 10
    acceptance_threshold: float | None = 1e-2

    def __post_init__(self: "TrainingSchedule") -> None:
        if self.adam_learning_rate <= 0.0:
            raise ValueError("adam_learning_rate must be positive.")
        if self.adam_steps < 0 or self.lbfgs_steps < 0:
            raise ValueError("iteration counts cannot be negative.")
        if self.initial_stepnorm <= 0.0:
            raise ValueError("initial_stepnorm must be positive.")
        if self.memory_size <= 0:
            raise ValueError("memory_size must be positive.")
        if self.max_linesearch_steps <= 0:
            raise ValueError("max_linesearch_steps must be positive.")
        if self.gradient_tolerance < 0.0:
            raise ValueError("gradient_tolerance cannot be negative.")
        if self.report_every <= 0:
            raise ValueError("report_every must be positive.")
        if self.acceptance_threshold is not None and self.acceptance_threshold <= 0.0:
            raise ValueError("acceptance_threshold must be positive when provided.")


@dataclass(frozen=True)
class LossFunction:
    """Callable loss wrapper exposing reusable value and value-and-grad computations.

    ``fn(theta)`` returns ``(loss, prediction)``.
    """

    fn: Callable[[jnp.ndarray], tuple[jnp.ndarray, jnp.ndarray]]
    value_fn: Callable[[jnp.ndarray], jnp.ndarray]
    value_and_grad_fn: Callable[
        [jnp.ndarray], tuple[tuple[jnp.ndarray, jnp.ndarray], jnp.ndarray]
    ]

    def __call__(
        self, theta: jnp.ndarray
    ) -> tuple[jnp.ndarray, jnp.ndarray]:  # pragma: no cover - trivial forwarding
        return self.fn(theta)

    def value(self, theta: jnp.ndarray) -> jnp.ndarray:
        return self.value_fn(theta)

    def value_and_grad(
        self, theta: jnp.ndarray
    ) -> tuple[tuple[jnp.ndarray, jnp.ndarray], jnp.ndarray]:
        return self.value_and_grad_fn(theta)


class ProgressReporter:
    """Observer printing ``Loss after N iterations L``; never asks to stop."""

    def __init__(self, write: Callable[[str], Any] = tqdm.write) -> None:
        self._write = write

    def __call__(self, iteration: int, loss: float) -> bool:
        self._write(f"Loss after {iteration} iterations {loss}")
        return False


@dataclass(frozen=True)
class FitResult:
    params: jnp.ndarray
    history: LossHistory
    final_loss: float
    from_cache: bool


def build_loss_fn(
    config: LotkaVolterraConfig,
    residual: ResidualModel,
    target: SimulationResult,
    *,
    solver: AbstractSolver | None = None,
    rtol: float = 1e-6,
    atol: float = 1e-6,
) -> LossFunction:
    """Sum of squared errors between the hybrid trajectory and ``target``.

    The hybrid ODE is sampled at ``target.ts`` so prediction and data line up
    sample for sample.
    """

    ts = jnp.asarray(target.ts)
    data = jnp.asarray(target.states)
    vector_field = hybrid_vector_field(config, residual)

    def loss_fn(theta: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
        prediction, _ = solve_trajectory(
            vector_field,
            config.initial_state,
            ts,
            theta,
            solver=solver,
            rtol=rtol,
            atol=atol,
            dt0=config.dt0,
            max_steps=config.max_steps,
        )
        return sum_squared_error(prediction, data), prediction

    def value_fn(theta: jnp.ndarray) -> jnp.ndarray:
        return loss_fn(theta)[0]

    return LossFunction(
        eqx.filter_jit(loss_fn),
        eqx.filter_jit(value_fn),
        eqx.filter_jit(jax.value_and_grad(loss_fn, has_aux=True)),
    )


def _record(
    history: LossHistory,
    loss: jnp.ndarray,
    schedule: TrainingSchedule,
    observer: Observer | None,
    stage: str,
) -> bool:
    value = float(loss)
    if not math.isfinite(value):
        raise NumericalDivergence(
            stage, f"Loss became non-finite after {len(history)} iterations."
        )
    history.append(value)
    if observer is not None and len(history) % schedule.report_every == 0:
        return bool(observer(len(history), value))
    return False


def _adam_phase(
    loss_fn: LossFunction,
    theta: jnp.ndarray,
    schedule: TrainingSchedule,
    history: LossHistory,
    observer: Observer | None,
    progress: bool,
) -> tuple[jnp.ndarray, bool]:
    optimizer = optax.adam(schedule.adam_learning_rate)
    opt_state = optimizer.init(theta)

    @eqx.filter_jit
    def step(
        theta: jnp.ndarray, opt_state: optax.OptState
    ) -> tuple[jnp.ndarray, optax.OptState, jnp.ndarray]:
        (loss, _), grads = loss_fn.value_and_grad(theta)
        updates, opt_state = optimizer.update(grads, opt_state, theta)
        return optax.apply_updates(theta, updates), opt_state, loss

    iterator = tqdm(
        range(schedule.adam_steps), desc="Adam training", disable=not progress
    )
    for _ in iterator:
        new_theta, opt_state, loss = step(theta, opt_state)
        if _record(history, loss, schedule, observer, "training (adam)"):
            return new_theta, True
        theta = new_theta
    return theta, False


def _first_step_scale(initial_stepnorm: float) -> optax.Schedule:
    def schedule(count: jnp.ndarray) -> jnp.ndarray:
        return jnp.where(count == 0, initial_stepnorm, 1.0)

    return schedule


def _lbfgs_phase(
    loss_fn: LossFunction,
    theta: jnp.ndarray,
    schedule: TrainingSchedule,
    history: LossHistory,
    observer: Observer | None,
    progress: bool,
) -> jnp.ndarray:
    optimizer = optax.lbfgs(
        learning_rate=_first_step_scale(schedule.initial_stepnorm),
        memory_size=schedule.memory_size,
        linesearch=optax.scale_by_zoom_linesearch(
            max_linesearch_steps=schedule.max_linesearch_steps,
            initial_guess_strategy="one",
        ),
    )
    value_and_grad = optax.value_and_grad_from_state(loss_fn.value)
    opt_state = optimizer.init(theta)

    @eqx.filter_jit
    def step(
        theta: jnp.ndarray, opt_state: optax.OptState
    ) -> tuple[jnp.ndarray, optax.OptState, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
        value, grad = value_and_grad(theta, state=opt_state)
        updates, opt_state = optimizer.update(
            grad, opt_state, theta, value=value, grad=grad, value_fn=loss_fn.value
        )
        return (
            optax.apply_updates(theta, updates),
            opt_state,
            value,
            otu.tree_l2_norm(grad),
            otu.tree_l2_norm(updates),
        )

    iterator = tqdm(
        range(schedule.lbfgs_steps), desc="L-BFGS training", disable=not progress
    )
    for _ in iterator:
        new_theta, opt_state, loss, grad_norm, step_norm = step(theta, opt_state)
        stop = _record(history, loss, schedule, observer, "training (l-bfgs)")
        theta = new_theta
        # A zero step means the line search could not make progress.
        converged = float(grad_norm) < schedule.gradient_tolerance
        if stop or converged or float(step_norm) == 0.0:
            break
    return theta


def train(
    loss_fn: LossFunction,
    theta0: jnp.ndarray,
    schedule: TrainingSchedule,
    *,
    history: LossHistory | None = None,
    observer: Observer | None = None,
    progress: bool = True,
) -> tuple[jnp.ndarray, LossHistory]:
    """Adam for ``schedule.adam_steps`` iterations, then L-BFGS until convergence.

    The loss of every iteration is appended to ``history`` (a new one when not
    given). ``observer(iteration, loss)`` runs every ``schedule.report_every``
    recorded losses; returning ``True`` stops training early.
    """

    history = LossHistory() if history is None else history
    theta = jnp.asarray(theta0)
    theta, stopped = _adam_phase(loss_fn, theta, schedule, history, observer, progress)
    if not stopped and schedule.lbfgs_steps > 0:
        theta = _lbfgs_phase(loss_fn, theta, schedule, history, observer, progress)
    return theta, history


def _check_acceptance(final_loss: float, schedule: TrainingSchedule, stage: str) -> None:
    if not math.isfinite(final_loss):
        raise NumericalDivergence(stage, "Loss of the trained parameters is non-finite.")
    threshold = schedule.acceptance_threshold
    if threshold is not None and final_loss > threshold:
        raise OptimizationDivergence(
            stage,
            f"Final loss {final_loss:.6g} exceeds the acceptance threshold {threshold:.6g}.",
        )


def fit_residual(
    loss_fn: LossFunction,
    theta0: jnp.ndarray,
    schedule: TrainingSchedule,
    checkpoint: str | Path | None = None,
    *,
    revalidate_cache: bool = True,
    observer: Observer | None = None,
    progress: bool = True,
) -> FitResult:
    """Train the residual parameters, or load them from ``checkpoint`` if it exists.

    Freshly trained parameters are only written to ``checkpoint`` once they pass
    the acceptance threshold. Parameters loaded from a checkpoint are re-checked
    against the same threshold unless ``revalidate_cache`` is ``False``.
    """

    theta0 = jnp.asarray(theta0)
    if checkpoint is not None and has_checkpoint(checkpoint):
        theta = jnp.asarray(load_checkpoint(checkpoint))
        if theta.shape != theta0.shape:
            raise CheckpointIOError(
                "checkpoint",
                f"{checkpoint} holds {theta.shape[0]} parameters, "
                f"the residual model expects {theta0.shape[0]}.",
            )
        final_loss = float(loss_fn.value(theta))
        if revalidate_cache:
            _check_acceptance(final_loss, schedule, "checkpoint validation")
        return FitResult(theta, LossHistory(), final_loss, True)

    theta, history = train(
        loss_fn, theta0, schedule, observer=observer, progress=progress
    )
    final_loss = float(loss_fn.value(theta))
    _check_acceptance(final_loss, schedule, "training")
    if checkpoint is not None:
        save_checkpoint(checkpoint, theta)
    return FitResult(theta, history, final_loss, False)
