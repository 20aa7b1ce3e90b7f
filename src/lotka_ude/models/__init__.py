"""Learned residual models used inside the hybrid Lotka-Volterra ODE."""

from .residual import ResidualMLP, ResidualModel, build_residual_model

__all__ = [
    "ResidualMLP",
    "ResidualModel",
    "build_residual_model",
]
