from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Iterator, Sequence

import jax.numpy as jnp
import sympy as sp

if TYPE_CHECKING:
    from .sindy import SparseModel


def state_symbols(state_size: int = 2, prefix: str = "u") -> tuple[sp.Symbol, ...]:
    """Symbols ``u1, u2, ...`` naming the state coordinates."""

    if state_size <= 0:
        raise ValueError("state_size must be positive.")
    return tuple(sp.symbols(f"{prefix}1:{state_size + 1}"))


class Basis:
    """Ordered dictionary of candidate functions for sparse regression.

    Duplicated expressions are dropped (first occurrence wins), so a basis built
    from overlapping term lists still has linearly independent columns by name.
    """

    def __init__(
        self,
        expressions: Iterable[sp.Expr | int | float],
        symbols: Sequence[sp.Symbol],
    ) -> None:
        self.symbols: tuple[sp.Symbol, ...] = tuple(symbols)
        if not self.symbols:
            raise ValueError("A basis needs at least one state symbol.")
        unique: list[sp.Expr] = []
        for expression in expressions:
            candidate = sp.sympify(expression)
            if not any(candidate == existing for existing in unique):
                unique.append(candidate)
        if not unique:
            raise ValueError("A basis needs at least one candidate function.")
        unknown = set().union(*(expr.free_symbols for expr in unique)) - set(
            self.symbols
        )
        if unknown:
            names = ", ".join(sorted(str(symbol) for symbol in unknown))
            raise ValueError(f"Candidate functions use unknown symbols: {names}.")
        self.expressions: tuple[sp.Expr, ...] = tuple(unique)
        self._fn = sp.lambdify(self.symbols, list(self.expressions), modules="jax")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(str(expression) for expression in self.expressions)

    @property
    def state_size(self) -> int:
        return len(self.symbols)

    def __len__(self) -> int:
        return len(self.expressions)

    def __iter__(self) -> Iterator[sp.Expr]:
        return iter(self.expressions)

    def __repr__(self) -> str:
        return f"Basis([{', '.join(self.names)}])"

    def __call__(self, state: jnp.ndarray) -> jnp.ndarray:
        """Evaluate every candidate at a single state, shape ``(len(basis),)``."""

        state = jnp.asarray(state)
        values = self._fn(*(state[i] for i in range(self.state_size)))
        return jnp.stack([jnp.asarray(value, dtype=state.dtype) for value in values])

    def evaluate(self, states: jnp.ndarray) -> jnp.ndarray:
        """Design matrix with one row per sample, shape ``(n_samples, len(basis))``."""

        states = jnp.asarray(states)
        if states.ndim != 2 or states.shape[1] != self.state_size:
            raise ValueError(
                f"states must have shape (n_samples, {self.state_size}), got {states.shape}."
            )
        num_samples = states.shape[0]
        values = self._fn(*(states[:, i] for i in range(self.state_size)))
        columns = [
            jnp.broadcast_to(jnp.asarray(value, dtype=states.dtype), (num_samples,))
            for value in values
        ]
        return jnp.stack(columns, axis=1)


def polynomial_trig_basis(
    symbols: Sequence[sp.Symbol] | None = None, max_degree: int = 5
) -> Basis:
    """Polynomials in two states plus ``cos`` and ``sin`` of each state.

    Terms are ``cos(u), sin(u)`` followed by ``1``, the pure powers ``u1^i`` and
    ``u2^i``, the mixed products ``u1^i * u2^j`` with ``i < j`` and the balanced
    products ``u1^i * u2^i`` for ``i < max_degree``.
    """

    if max_degree < 1:
        raise ValueError("max_degree must be at least 1.")
    symbols = tuple(symbols) if symbols is not None else state_symbols(2)
    if len(symbols) != 2:
        raise ValueError("polynomial_trig_basis is defined for two state symbols.")
    u1, u2 = symbols
    polys: list[sp.Expr] = [sp.Integer(1)]
    for i in range(1, max_degree + 1):
        polys.append(u1**i)
        polys.append(u2**i)
        for j in range(i + 1, max_degree + 1):
            polys.append(u1**i * u2**j)
            polys.append(u1**i * u2**i)
    trig = [sp.cos(u1), sp.cos(u2), sp.sin(u1), sp.sin(u2)]
    return Basis([*trig, *polys], symbols)


def narrowed_basis(model: "SparseModel") -> Basis:
    """One candidate per distinct structural form selected by a previous pass.

    Each target's equation is taken with every coefficient set to one, so the
    next regression pass only has to find the scale of a fixed functional form.
    """

    forms = [form for form in model.structural_forms() if form != 0]
    if not forms:
        raise ValueError("The model has no active terms to narrow the basis to.")
    return Basis(forms, model.basis.symbols)
