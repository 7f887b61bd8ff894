#########################################################################################
##
##                       EXPERIMENTAL & NUMERICAL DATASETS
##                                 (ident/data.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np

from .exceptions import ConfigurationError, ModelEvaluationError


# HELPERS ===============================================================================

def _check_info_columns(info_columns, n_columns: int, owner: str) -> tuple[int, ...]:
    """Validate 1-based column selectors against a column count."""
    cols = tuple(int(c) for c in info_columns)
    if not cols:
        raise ConfigurationError(f"{owner}: at least one info column is required")
    for c in cols:
        if c < 1 or c > n_columns:
            raise ConfigurationError(
                f"{owner}: info column {c} out of range [1, {n_columns}]"
            )
    return cols


# DATASETS ==============================================================================

class ExperimentalDataset:
    """Reference curves of one experimental file.

    Stores the full data table and the 1-based indices of the columns that
    are compared with the model output.

    Parameters
    ----------
    name : str
        File name (used for display and passed on to the model).
    data : array_like
        Data table, shape ``(n_rows, n_columns)``; a 1D array is one column.
    info_columns : sequence of int
        1-based indices of the compared columns, each in ``[1, n_columns]``.
    n_columns : int, optional
        Declared column count; must match the table when given.

    Notes
    -----
    The dataset is passed unchanged to the model evaluator, so the loading
    columns (time, imposed strain, ...) are available to it as well.
    """

    def __init__(
        self,
        name: str,
        data: np.ndarray,
        info_columns: Sequence[int],
        n_columns: int | None = None,
    ):
        arr = np.asarray(data, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2:
            raise ConfigurationError(f"Dataset '{name}': data must be 1D or 2D")
        if arr.shape[0] == 0:
            raise ConfigurationError(f"Dataset '{name}': data has no rows")
        if n_columns is not None and int(n_columns) != arr.shape[1]:
            raise ConfigurationError(
                f"Dataset '{name}': declared {n_columns} columns, "
                f"data has {arr.shape[1]}"
            )

        self.name = str(name)
        self.data = arr
        self.data.setflags(write=False)
        self.info_columns = _check_info_columns(info_columns, arr.shape[1], f"Dataset '{name}'")


    @classmethod
    def from_file(
        cls,
        path,
        info_columns: Sequence[int],
        n_columns: int | None = None,
        name: str | None = None,
    ) -> "ExperimentalDataset":
        """Load a whitespace-delimited table (``#`` comments skipped)."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Experimental file not found: {path}")
        try:
            data = np.loadtxt(path, dtype=float, ndmin=2)
        except ValueError as exc:
            raise ConfigurationError(f"Cannot parse experimental file {path}: {exc}") from exc
        return cls(name or path.name, data, info_columns, n_columns=n_columns)


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def n_rows(self) -> int:
        return self.data.shape[0]


    @property
    def n_columns(self) -> int:
        return self.data.shape[1]


    @property
    def n_info(self) -> int:
        return len(self.info_columns)


    @property
    def values(self) -> np.ndarray:
        """Compared columns, shape ``(n_rows, n_info)``."""
        return self.data[:, [c - 1 for c in self.info_columns]]


    def column(self, index: int) -> np.ndarray:
        """Return the 1-based column *index* of the table."""
        if index < 1 or index > self.n_columns:
            raise IndexError(f"column {index} out of range [1, {self.n_columns}]")
        return self.data[:, index - 1]


    # PLOT ------------------------------------------------------------------------------

    def plot(self, numerical: np.ndarray | None = None, *, x_column: int | None = None):
        """Plot the compared columns, optionally against a model prediction.

        Parameters
        ----------
        numerical : array_like, optional
            Selected model columns, shape ``(n_rows, n_info)``.
        x_column : int, optional
            1-based abscissa column; the row index is used when omitted.

        Returns
        -------
        fig : matplotlib.figure.Figure
        ax : matplotlib.axes.Axes
        """
        import matplotlib.pyplot as plt

        x = self.column(x_column) if x_column is not None else np.arange(self.n_rows)
        fig, ax = plt.subplots(figsize=(8, 4))

        for j, col in enumerate(self.info_columns):
            ax.plot(x, self.data[:, col - 1], "o", alpha=0.6, label=f"exp col {col}")
            if numerical is not None:
                num = np.asarray(numerical, dtype=float).reshape(self.n_rows, -1)
                ax.plot(x, num[:, j], "-", linewidth=1.5, label=f"num col {col}")

        ax.set_title(f"Dataset: {self.name}")
        ax.legend()
        ax.grid(True)
        fig.tight_layout()
        return fig, ax


    def __repr__(self) -> str:
        return (
            f"ExperimentalDataset(name={self.name!r}, shape={self.data.shape}, "
            f"info_columns={self.info_columns})"
        )


class NumericalDataset:
    """Column layout of the model output for one experimental file.

    The selected columns line up positionally with the experimental
    ``info_columns``.

    Parameters
    ----------
    n_columns : int
        Column count of the model output table.
    info_columns : sequence of int
        1-based indices of the compared model columns.
    """

    def __init__(self, n_columns: int, info_columns: Sequence[int]):
        self.n_columns = int(n_columns)
        if self.n_columns < 1:
            raise ConfigurationError("Numerical output needs at least one column")
        self.info_columns = _check_info_columns(info_columns, self.n_columns, "Numerical output")


    @classmethod
    def like(cls, experiment: ExperimentalDataset) -> "NumericalDataset":
        """Layout identical to the experimental file."""
        return cls(experiment.n_columns, experiment.info_columns)


    def select(self, output: np.ndarray, experiment: ExperimentalDataset) -> np.ndarray:
        """Pull the compared columns out of a model output table.

        Raises
        ------
        ModelEvaluationError
            If the output shape does not match the layout or the row count of
            the experimental file.
        """
        arr = np.asarray(output, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2 or arr.shape[1] != self.n_columns:
            raise ModelEvaluationError(
                f"Model output for '{experiment.name}' has shape {arr.shape}, "
                f"expected (n_rows, {self.n_columns})"
            )
        if arr.shape[0] != experiment.n_rows:
            raise ModelEvaluationError(
                f"Model output for '{experiment.name}' has {arr.shape[0]} rows, "
                f"experimental data has {experiment.n_rows}"
            )
        return arr[:, [c - 1 for c in self.info_columns]]


    def __repr__(self) -> str:
        return f"NumericalDataset(n_columns={self.n_columns}, info_columns={self.info_columns})"
