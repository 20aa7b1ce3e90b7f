from __future__ import annotations

import chex
import jax.numpy as jnp
import numpy as np
import pytest

from lotka_ude.errors import NumericalDivergence
from lotka_ude.lotka_volterra import (
    LotkaVolterraConfig,
    SimulationResult,
    interaction_terms,
    known_vector_field,
    simulate_hybrid,
    simulate_lotka_volterra,
)


def _conserved_quantity(config: LotkaVolterraConfig, states: np.ndarray) -> np.ndarray:
    prey, predator = states[:, 0], states[:, 1]
    return (
        config.gamma * prey
        - config.delta * np.log(prey)
        + config.beta * predator
        - config.alpha * np.log(predator)
    )


def test_default_config_matches_reference_setup():
    config = LotkaVolterraConfig()
    assert config.num_samples == 31
    chex.assert_trees_all_close(config.ts[0], 0.0)
    chex.assert_trees_all_close(config.ts[-1], 3.0)
    chex.assert_trees_all_close(config.parameters, jnp.array([1.3, 0.9, 0.8, 1.8]))
    chex.assert_trees_all_close(config.known_parameters, jnp.array([1.3, 1.8]))
    chex.assert_trees_all_close(config.interaction_parameters, jnp.array([0.9, 0.8]))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"alpha": 0.0},
        {"delta": -1.0},
        {"t1": 0.0},
        {"saveat": 0.0},
        {"saveat": 10.0},
        {"rtol": 0.0},
        {"initial_state": jnp.zeros(3)},
    ],
)
def test_config_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        LotkaVolterraConfig(**kwargs)


def test_simulation_samples_the_configured_grid():
    config = LotkaVolterraConfig()
    result = simulate_lotka_volterra(config)
    chex.assert_shape(result.states, (config.num_samples, 2))
    chex.assert_trees_all_close(result.ts, config.ts)
    chex.assert_trees_all_close(result.states[0], config.initial_state)
    assert bool(jnp.all(result.states > 0.0))


def test_simulation_conserves_lotka_volterra_invariant():
    config = LotkaVolterraConfig()
    states = np.asarray(simulate_lotka_volterra(config).states)
    invariant = _conserved_quantity(config, states)
    np.testing.assert_allclose(invariant, invariant[0], atol=1e-8)


def test_simulation_accepts_custom_time_grid():
    config = LotkaVolterraConfig()
    ts = jnp.linspace(0.0, 1.0, 7)
    result = simulate_lotka_volterra(config, ts=ts)
    chex.assert_trees_all_close(result.ts, ts)
    chex.assert_shape(result.states, (7, 2))


def test_hybrid_with_exact_residual_reproduces_ground_truth():
    config = LotkaVolterraConfig()
    truth = simulate_lotka_volterra(config)
    hybrid = simulate_hybrid(
        config, lambda state, _args: interaction_terms(config, state), truth.ts
    )
    chex.assert_trees_all_close(hybrid.ts, truth.ts)
    chex.assert_trees_all_close(hybrid.states, truth.states, atol=1e-9, rtol=1e-9)


def test_hybrid_with_zero_residual_follows_known_dynamics():
    config = LotkaVolterraConfig(t1=1.0)
    ts = config.ts
    hybrid = simulate_hybrid(config, lambda state, _args: jnp.zeros_like(state), ts)
    expected = jnp.stack(
        [
            config.initial_state[0] * jnp.exp(config.alpha * ts),
            config.initial_state[1] * jnp.exp(-config.delta * ts),
        ],
        axis=1,
    )
    chex.assert_trees_all_close(hybrid.states, expected, atol=1e-9, rtol=1e-9)


def test_known_and_interaction_terms_sum_to_full_dynamics():
    config = LotkaVolterraConfig()
    state = jnp.array([2.0, 3.0])
    full = known_vector_field(config, state) + interaction_terms(config, state)
    expected = jnp.array(
        [1.3 * 2.0 - 0.9 * 2.0 * 3.0, 0.8 * 2.0 * 3.0 - 1.8 * 3.0]
    )
    chex.assert_trees_all_close(full, expected)


def test_exploding_residual_raises_numerical_divergence():
    config = LotkaVolterraConfig(max_steps=500)
    with pytest.raises(NumericalDivergence) as excinfo:
        simulate_hybrid(config, lambda state, _args: 10.0 * state**2, config.ts)
    assert excinfo.value.stage == "hybrid simulation"


def test_simulation_result_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        SimulationResult(ts=jnp.zeros(4), states=jnp.zeros((3, 2)))
