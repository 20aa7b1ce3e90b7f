from __future__ import annotations


class PipelineError(Exception):
    """Base class for failures that abort an experiment run.

    Every error records the pipeline ``stage`` it was raised from so the user can
    tell whether data generation, training, regression or validation failed.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class NumericalDivergence(PipelineError):
    """The ODE solver failed to converge or produced non-finite values."""


class OptimizationDivergence(PipelineError):
    """Training finished without reaching the loss acceptance threshold."""


class CheckpointIOError(PipelineError, OSError):
    """A checkpoint exists but cannot be read, or cannot be written."""


class RegressionInfeasible(PipelineError):
    """No threshold in the sweep produced a candidate with a finite objective."""


__all__ = [
    "CheckpointIOError",
    "NumericalDivergence",
    "OptimizationDivergence",
    "PipelineError",
    "RegressionInfeasible",
]
