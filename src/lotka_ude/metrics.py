from typing import TypeAlias

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Float

FloatArray: TypeAlias = Float[jnp.ndarray, "..."]


@eqx.filter_jit
def mse(pred: FloatArray, target: FloatArray) -> jnp.ndarray:
    return jnp.mean((pred - target) ** 2)


@eqx.filter_jit
def sum_squared_error(pred: FloatArray, target: FloatArray) -> jnp.ndarray:
    return jnp.sum((pred - target) ** 2)


@eqx.filter_jit
def l2_norm(pred: FloatArray, target: FloatArray) -> jnp.ndarray:
    """Euclidean norm of the difference taken over every entry (not per row)."""

    return jnp.sqrt(jnp.sum((pred - target) ** 2))


@eqx.filter_jit
def linf_norm(pred: FloatArray, target: FloatArray) -> jnp.ndarray:
    """Largest absolute entry of the difference."""

    return jnp.max(jnp.abs(pred - target))
