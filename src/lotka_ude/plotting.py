from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence, cast

import matplotlib.pyplot as plt
import numpy as np
import numpy.typing as npt
from matplotlib.axes import Axes
from matplotlib.figure import Figure, SubFigure

STATE_LABELS = ("prey", "predator")


def _get_ax(ax: Axes | None = None) -> Axes:
    if ax is None:
        _, ax = plt.subplots()
    return ax


def plot_trajectory(
    ts: Sequence[float] | npt.ArrayLike,
    states: npt.ArrayLike,
    labels: Iterable[str] = STATE_LABELS,
    ax: Axes | None = None,
    title: str | None = "Population Trajectories",
    styles: Iterable[str] | None = None,
    markers: Iterable[str] | None = None,
) -> Axes:
    ax = _get_ax(ax)
    states_np = np.asarray(states)
    style_list = list(styles) if styles is not None else None
    marker_list = list(markers) if markers is not None else None
    for dim, label in enumerate(labels):
        kwargs: dict[str, str] = {"label": label}
        if style_list is not None and dim < len(style_list):
            kwargs["linestyle"] = style_list[dim]
        if marker_list is not None and dim < len(marker_list):
            kwargs["marker"] = marker_list[dim]
        ax.plot(ts, states_np[:, dim], **kwargs)
    ax.set_xlabel("Time")
    ax.set_ylabel("Population")
    if title:
        ax.set_title(title)
    ax.legend()
    return ax


def plot_phase(
    states: npt.ArrayLike,
    ax: Axes | None = None,
    title: str = "Phase Portrait",
    label: str | None = None,
) -> Axes:
    ax = _get_ax(ax)
    states_np = np.asarray(states)
    ax.plot(states_np[:, 0], states_np[:, 1], marker="o", label=label)
    ax.set_xlabel("Prey")
    ax.set_ylabel("Predator")
    ax.set_title(title)
    if label is not None:
        ax.legend()
    return ax


def plot_residuals(
    ts: Sequence[float] | npt.ArrayLike,
    target: npt.ArrayLike,
    prediction: npt.ArrayLike,
    labels: Iterable[str] = STATE_LABELS,
    ax: Axes | None = None,
    title: str = "Residuals",
) -> Axes:
    ax = _get_ax(ax)
    residuals = np.asarray(prediction) - np.asarray(target)
    for dim, label in enumerate(labels):
        ax.plot(ts, residuals[:, dim], label=f"{label} residual")
    ax.set_xlabel("Time")
    ax.set_ylabel("Prediction - Target")
    ax.set_title(title)
    ax.legend()
    return ax


def plot_loss(
    losses: Iterable[float],
    ax: Axes | None = None,
    title: str = "Training Loss",
    log_scale: bool = True,
) -> Axes:
    ax = _get_ax(ax)
    ax.plot(list(losses))
    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Iteration")
    ax.set_ylabel("Loss")
    ax.set_title(title)
    return ax


def save_figure(
    ax: Axes | np.ndarray | Figure | SubFigure,
    path: str | Path,
    *,
    dpi: int = 300,
    bbox_inches: str = "tight",
    close: bool = True,
) -> Path:
    """Persist matplotlib content regardless of axes layout."""

    fig_like: Figure | SubFigure
    if isinstance(ax, np.ndarray):
        first = ax.ravel()[0]
        fig_like = cast(Figure, first.figure)
    elif isinstance(ax, SubFigure):
        fig_like = ax
    elif isinstance(ax, Figure):
        fig_like = ax
    elif isinstance(ax, Axes):
        fig_like = cast(Figure, ax.figure)
    else:
        raise TypeError(f"Unsupported object type for save_figure: {type(ax)}")

    fig = fig_like.figure if isinstance(fig_like, SubFigure) else fig_like
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches=bbox_inches)
    if close:
        plt.close(fig)
    return path
