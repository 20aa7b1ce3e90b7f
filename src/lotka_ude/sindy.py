from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import numpy as np
import numpy.typing as npt
import pysindy as ps
import sympy as sp

from .basis import Basis, narrowed_basis
from .errors import RegressionInfeasible

Objective = Callable[[int, float], float]
OptimizerFactory = Callable[..., Any]

_STAGE = "symbolic regression"


def sindy_objective(complexity: int, error: float) -> float:
    """Euclidean norm of ``(complexity, error)``; models without terms are infeasible.

    ``error`` arrives normalised by the worst error of the sweep, so it lies in
    ``[0, 1]`` and the number of active terms dominates the ranking.
    """

    if complexity < 1:
        return math.inf
    return math.hypot(complexity, error)


def residual_objective(complexity: int, error: float) -> float:
    """Pick the lowest residual among models with at least one active term."""

    if complexity < 1:
        return math.inf
    return float(error)


def sr3_optimizer(
    threshold: float,
    *,
    normalize: bool = False,
    max_iter: int = 10_000,
    relax_coeff_nu: float = 1.0,
) -> ps.SR3:
    """Relaxed L0 (SR3) optimiser with ``threshold`` as its regularisation weight."""

    return ps.SR3(
        reg_weight_lam=threshold,
        regularizer="L0",
        relax_coeff_nu=relax_coeff_nu,
        max_iter=max_iter,
        normalize_columns=normalize,
    )


def optimal_svht_coefficient(num_rows: int, num_cols: int) -> float:
    """Gavish-Donoho hard threshold coefficient for an unknown noise level."""

    beta = min(num_rows, num_cols) / max(num_rows, num_cols)
    return 0.56 * beta**3 - 0.95 * beta**2 + 1.82 * beta + 1.43


def optimal_shrinkage(matrix: npt.ArrayLike) -> np.ndarray:
    """Denoise ``matrix`` by zeroing singular values below the optimal hard threshold."""

    values = np.asarray(matrix, dtype=float)
    if values.ndim != 2:
        raise ValueError("optimal_shrinkage expects a 2D matrix.")
    u, s, vt = np.linalg.svd(values, full_matrices=False)
    tau = optimal_svht_coefficient(*values.shape) * np.median(s)
    s = np.where(s < tau, 0.0, s)
    return (u * s) @ vt


@dataclass(frozen=True)
class SparseModel:
    """Selected basis terms and their coefficients, one row per target.

    ``thresholds[i]`` is the sweep value that produced row ``i``, ``complexity``
    counts its non-zero coefficients and ``errors`` holds its residual L2 norm.
    """

    basis: Basis
    coefficients: np.ndarray
    thresholds: np.ndarray
    complexity: np.ndarray
    errors: np.ndarray

    def __post_init__(self) -> None:
        coefficients = np.asarray(self.coefficients, dtype=float)
        if coefficients.ndim != 2 or coefficients.shape[1] != len(self.basis):
            raise ValueError("coefficients must have shape (n_targets, len(basis)).")
        object.__setattr__(self, "coefficients", coefficients)

    @property
    def num_targets(self) -> int:
        return int(self.coefficients.shape[0])

    def active_terms(self) -> tuple[tuple[str, ...], ...]:
        names = self.basis.names
        return tuple(
            tuple(name for name, coef in zip(names, row) if coef != 0.0)
            for row in self.coefficients
        )

    def structural_forms(self) -> tuple[sp.Expr, ...]:
        """Each target's selected terms summed with unit coefficients."""

        return tuple(
            sp.Add(
                *(
                    term
                    for term, coef in zip(self.basis.expressions, row)
                    if coef != 0.0
                )
            )
            for row in self.coefficients
        )

    def equations(self) -> tuple[sp.Expr, ...]:
        return tuple(
            sp.Add(
                *(
                    sp.Float(float(coef)) * term
                    for term, coef in zip(self.basis.expressions, row)
                    if coef != 0.0
                )
            )
            for row in self.coefficients
        )

    def parameters(self) -> np.ndarray:
        """Non-zero coefficients, target by target in basis order."""

        return self.coefficients[self.coefficients != 0.0]

    def predict(self, states: npt.ArrayLike) -> np.ndarray:
        design = np.asarray(self.basis.evaluate(np.asarray(states, dtype=float)))
        return design @ self.coefficients.T

    def describe(self) -> str:
        lines = []
        for index, equation in enumerate(self.equations(), start=1):
            lines.append(f"f{index} = {equation}")
        return "\n".join(lines)


def _as_targets(values: npt.ArrayLike) -> np.ndarray:
    array = np.asarray(values, dtype=float)
    if array.ndim == 1:
        array = array[:, None]
    if array.ndim != 2:
        raise ValueError("targets must be a 1D or 2D array.")
    return array


def regress(
    states: npt.ArrayLike,
    targets: npt.ArrayLike,
    basis: Basis,
    thresholds: Sequence[float] | npt.ArrayLike,
    *,
    optimizer: OptimizerFactory = sr3_optimizer,
    objective: Objective = sindy_objective,
    normalize: bool = False,
    denoise: bool = False,
    max_iter: int = 10_000,
) -> SparseModel:
    """Sparse regression of ``targets`` on ``basis(states)`` over a threshold sweep.

    For every threshold the optimiser fits all targets at once. Each target then
    keeps the candidate minimising ``objective(complexity, error)``, where the
    residual error is divided by the largest error that target saw in the sweep.

    ``normalize`` rescales the design matrix columns to unit norm inside the
    optimiser; ``denoise`` applies :func:`optimal_shrinkage` to the design matrix
    first.
    """

    x = np.asarray(states, dtype=float)
    y = _as_targets(targets)
    if x.ndim != 2 or x.shape[0] != y.shape[0]:
        raise ValueError("states and targets must share the number of samples.")
    sweep = np.atleast_1d(np.asarray(thresholds, dtype=float))
    if sweep.size == 0:
        raise ValueError("thresholds must contain at least one value.")
    if np.any(sweep < 0.0):
        raise ValueError("thresholds cannot be negative.")

    design = np.asarray(basis.evaluate(x), dtype=float)
    if denoise:
        design = optimal_shrinkage(design)

    num_targets = y.shape[1]
    candidates = np.zeros((sweep.size, num_targets, len(basis)))
    complexity = np.zeros((sweep.size, num_targets), dtype=int)
    errors = np.zeros((sweep.size, num_targets))
    for j, threshold in enumerate(sweep):
        model = optimizer(float(threshold), normalize=normalize, max_iter=max_iter)
        model.fit(design, y)
        coef = np.asarray(model.coef_, dtype=float).reshape(num_targets, len(basis))
        candidates[j] = coef
        complexity[j] = np.count_nonzero(coef, axis=1)
        errors[j] = np.linalg.norm(y - design @ coef.T, axis=0)

    worst = np.max(errors, axis=0)
    relative = errors / np.where(worst > 0.0, worst, 1.0)

    selected = np.zeros(num_targets, dtype=int)
    for i in range(num_targets):
        scores = np.array(
            [objective(int(complexity[j, i]), float(relative[j, i])) for j in range(sweep.size)]
        )
        scores = np.where(np.isnan(scores), np.inf, scores)
        if not np.any(np.isfinite(scores)):
            raise RegressionInfeasible(
                _STAGE,
                f"No threshold produced a feasible model for target {i + 1} "
                f"(all {sweep.size} candidates scored infinite).",
            )
        selected[i] = int(np.argmin(scores))

    rows = np.arange(num_targets)
    return SparseModel(
        basis=basis,
        coefficients=candidates[selected, rows],
        thresholds=sweep[selected],
        complexity=complexity[selected, rows],
        errors=errors[selected, rows],
    )


def refine(
    states: npt.ArrayLike,
    targets: npt.ArrayLike,
    model: SparseModel,
    *,
    threshold: float = 0.1,
    optimizer: OptimizerFactory = sr3_optimizer,
    objective: Objective = sindy_objective,
    max_iter: int = 1000,
) -> SparseModel:
    """Refit the coefficients of the forms ``model`` selected, at a fixed threshold."""

    return regress(
        states,
        targets,
        narrowed_basis(model),
        [threshold],
        optimizer=optimizer,
        objective=objective,
        max_iter=max_iter,
    )
