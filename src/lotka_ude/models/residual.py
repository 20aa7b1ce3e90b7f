from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Sequence

import equinox as eqx
import jax
import jax.numpy as jnp
import jax.random as jr
from jax.flatten_util import ravel_pytree


class ResidualMLP(eqx.Module):
    """Feed-forward network ``state -> residual`` with tanh hidden layers."""

    layers: tuple[eqx.nn.Linear, ...]

    def __init__(
        self,
        state_size: int = 2,
        widths: Sequence[int] = (32, 64, 32),
        *,
        key: jax.Array,
    ):
        if state_size <= 0:
            raise ValueError("state_size must be positive.")
        if not widths or any(width <= 0 for width in widths):
            raise ValueError("widths must be a non-empty sequence of positive sizes.")
        sizes = (state_size, *widths, state_size)
        keys = jr.split(key, len(sizes) - 1)
        self.layers = tuple(
            eqx.nn.Linear(fan_in, fan_out, key=layer_key, dtype=jnp.float64)
            for fan_in, fan_out, layer_key in zip(sizes[:-1], sizes[1:], keys)
        )

    def __call__(self, state: jax.Array) -> jax.Array:
        x = state
        for layer in self.layers[:-1]:
            x = jnp.tanh(layer(x))
        return self.layers[-1](x)


@dataclass(frozen=True)
class ResidualModel:
    """Pure evaluation map ``g(x, theta)`` over a flat parameter vector.

    The network structure is kept static; all trainable arrays live in the flat
    vector handed around by the trainer, the checkpoint and the regression stage.
    """

    static: Any
    unravel: Callable[[jnp.ndarray], Any]
    initial_params: jnp.ndarray

    @classmethod
    def from_module(cls, module: eqx.Module) -> "ResidualModel":
        params, static = eqx.partition(module, eqx.is_array)
        flat, unravel = ravel_pytree(params)
        return cls(static=static, unravel=unravel, initial_params=flat)

    @property
    def num_params(self) -> int:
        return int(self.initial_params.shape[0])

    def init_params(self) -> jnp.ndarray:
        return jnp.array(self.initial_params, copy=True)

    def module(self, theta: jnp.ndarray) -> eqx.Module:
        theta = jnp.asarray(theta)
        if theta.shape != self.initial_params.shape:
            raise ValueError(
                f"Expected a parameter vector of shape {self.initial_params.shape}, "
                f"got {theta.shape}."
            )
        return eqx.combine(self.unravel(theta), self.static)

    def __call__(self, state: jnp.ndarray, theta: jnp.ndarray) -> jnp.ndarray:
        return self.module(theta)(state)

    def batch(self, states: jnp.ndarray, theta: jnp.ndarray) -> jnp.ndarray:
        """Evaluate the residual for every row of ``states``."""

        return jax.vmap(self.module(theta))(jnp.asarray(states))


def build_residual_model(
    key: jax.Array,
    *,
    state_size: int = 2,
    widths: Sequence[int] = (32, 64, 32),
) -> ResidualModel:
    return ResidualModel.from_module(ResidualMLP(state_size, widths, key=key))
