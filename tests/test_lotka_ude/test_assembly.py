from __future__ import annotations

import chex
import jax.numpy as jnp
import numpy as np
import pytest

from lotka_ude.assembly import (
    Discrepancy,
    assemble_symbolic_system,
    recovered_interaction_parameters,
    resimulate,
    symbolic_residual,
    trajectory_discrepancy,
)
from lotka_ude.basis import Basis, polynomial_trig_basis, state_symbols
from lotka_ude.lotka_volterra import (
    LotkaVolterraConfig,
    SimulationResult,
    lotka_volterra_vector_field,
    simulate_lotka_volterra,
)
from lotka_ude.sindy import SparseModel


def _interaction_model(beta: float = 0.9, gamma: float = 0.8) -> SparseModel:
    u1, u2 = state_symbols()
    return SparseModel(
        basis=Basis([u1 * u2], (u1, u2)),
        coefficients=np.array([[-beta], [gamma]]),
        thresholds=np.array([0.1, 0.1]),
        complexity=np.array([1, 1]),
        errors=np.zeros(2),
    )


def test_symbolic_residual_evaluates_recovered_equations():
    residual = symbolic_residual(_interaction_model())
    out = residual(jnp.array([2.0, 3.0]), None)
    chex.assert_trees_all_close(out, jnp.array([-0.9 * 6.0, 0.8 * 6.0]))


def test_symbolic_residual_handles_constant_equations():
    u1, u2 = state_symbols()
    model = SparseModel(
        basis=Basis([1, u1], (u1, u2)),
        coefficients=np.array([[0.5, 0.0], [0.0, 2.0]]),
        thresholds=np.zeros(2),
        complexity=np.array([1, 1]),
        errors=np.zeros(2),
    )
    out = symbolic_residual(model)(jnp.array([3.0, 4.0]))
    chex.assert_trees_all_close(out, jnp.array([0.5, 6.0]))


def test_symbolic_residual_needs_one_equation_per_state():
    u1, u2 = state_symbols()
    model = SparseModel(
        basis=Basis([u1 * u2], (u1, u2)),
        coefficients=np.array([[-0.9]]),
        thresholds=np.array([0.1]),
        complexity=np.array([1]),
        errors=np.zeros(1),
    )
    with pytest.raises(ValueError):
        symbolic_residual(model)


def test_assembled_system_matches_full_vector_field():
    config = LotkaVolterraConfig()
    assembled = assemble_symbolic_system(config, _interaction_model())
    reference = lotka_volterra_vector_field(config)
    state = jnp.array([1.5, 0.5])
    chex.assert_trees_all_close(assembled(0.0, state, None), reference(0.0, state, None))


def test_exact_interaction_model_reproduces_ground_truth():
    config = LotkaVolterraConfig()
    truth = simulate_lotka_volterra(config)
    symbolic = resimulate(config, _interaction_model())
    chex.assert_trees_all_close(symbolic.ts, truth.ts)
    discrepancy = trajectory_discrepancy(symbolic, truth)
    assert discrepancy.l2 < 1e-8
    assert discrepancy.linf < 1e-8


def test_perturbed_coefficients_increase_discrepancy():
    config = LotkaVolterraConfig()
    truth = simulate_lotka_volterra(config)
    close = trajectory_discrepancy(resimulate(config, _interaction_model(0.89, 0.81)), truth)
    far = trajectory_discrepancy(resimulate(config, _interaction_model(0.7, 1.0)), truth)
    assert 0.0 < close.l2 < far.l2
    assert close.linf <= close.l2


def test_trajectory_discrepancy_accepts_arrays_and_results():
    ts = jnp.linspace(0.0, 1.0, 2)
    target = SimulationResult(ts=ts, states=jnp.zeros((2, 2)))
    pred = jnp.array([[3.0, 0.0], [0.0, -4.0]])
    assert trajectory_discrepancy(pred, target) == Discrepancy(l2=5.0, linf=4.0)
    with pytest.raises(ValueError):
        trajectory_discrepancy(jnp.zeros((3, 2)), target)


def test_recovered_parameters_are_magnitudes():
    np.testing.assert_allclose(
        recovered_interaction_parameters(_interaction_model()), [0.9, 0.8]
    )


def test_recovered_parameters_follow_row_then_basis_order():
    basis = polynomial_trig_basis()
    coefficients = np.zeros((2, len(basis)))
    coefficients[0, 5] = 0.3
    coefficients[0, 1] = -0.2
    coefficients[1, 0] = 0.7
    model = SparseModel(
        basis=basis,
        coefficients=coefficients,
        thresholds=np.zeros(2),
        complexity=np.array([2, 1]),
        errors=np.zeros(2),
    )
    np.testing.assert_allclose(recovered_interaction_parameters(model), [0.2, 0.3, 0.7])
