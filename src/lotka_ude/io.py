from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Any

import numpy as np

from .errors import CheckpointIOError

CHECKPOINT_KEY = "p_trained"
_STAGE = "checkpoint"


def checkpoint_path(directory: str | Path, experiment_name: str) -> Path:
    """Location of the checkpoint archive for ``experiment_name``."""

    if not experiment_name:
        raise ValueError("experiment_name must be a non-empty string.")
    return Path(directory) / f"{experiment_name}.npz"


def has_checkpoint(path: str | Path) -> bool:
    return Path(path).is_file()


def save_checkpoint(
    path: str | Path, params: Any, *, key: str = CHECKPOINT_KEY
) -> Path:
    """Persist a flat parameter vector under ``key``.

    ``np.savez`` stores the raw float buffer, so :func:`load_checkpoint` returns
    the exact same values.
    """

    vector = np.asarray(params)
    if vector.ndim != 1:
        raise ValueError("Checkpoints hold a flat (1D) parameter vector.")
    output = Path(path)
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        with output.open("wb") as handle:
            np.savez(handle, **{key: vector})
    except OSError as exc:
        raise CheckpointIOError(_STAGE, f"Unable to write {output}: {exc}") from exc
    return output


def load_checkpoint(path: str | Path, *, key: str = CHECKPOINT_KEY) -> np.ndarray:
    """Load the parameter vector stored under ``key``.

    Raises :class:`CheckpointIOError` when the file is missing, unreadable,
    corrupt or does not contain ``key``.
    """

    source = Path(path)
    try:
        with np.load(source, allow_pickle=False) as data:
            if key not in data.files:
                raise CheckpointIOError(
                    _STAGE, f"{source} does not contain an entry named '{key}'."
                )
            vector = np.array(data[key])
    except CheckpointIOError:
        raise
    except (OSError, ValueError, EOFError, zipfile.BadZipFile) as exc:
        raise CheckpointIOError(_STAGE, f"Unable to read {source}: {exc}") from exc
    if vector.ndim != 1:
        raise CheckpointIOError(
            _STAGE, f"{source} holds an array of shape {vector.shape}, expected 1D."
        )
    return vector


def save_npz_bundle(path: str | Path, **arrays: Any) -> Path:
    """Persist a collection of arrays (NumPy/JAX) to a .npz archive.

    Parameters
    ----------
    path:
        Output file path.
    arrays:
        Mapping from name to array-like objects. Entries with ``None`` values are skipped.
        Entries are converted via ``np.asarray`` so JAX arrays are supported.
        At minimum, ``ts`` and ``states`` should be provided for trajectory dumps.
    """

    if "ts" not in arrays or "states" not in arrays:
        raise ValueError("save_npz_bundle requires at least 'ts' and 'states' entries.")

    payload: dict[str, np.ndarray] = {}
    for name, value in arrays.items():
        if value is None:
            continue
        payload[name] = np.asarray(value)

    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    np.savez(output, **payload)
    return output
