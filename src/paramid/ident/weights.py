#########################################################################################
##
##                          WEIGHTING OF THE DEVIATIONS
##                               (ident/weights.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence

import numpy as np

from .data import ExperimentalDataset
from .exceptions import ConfigurationError


# WEIGHTING MODES =======================================================================

class FileWeightMode(IntEnum):
    """Per-file scalar weight."""
    NONE = 0
    VALUES = 1


class ColumnWeightMode(IntEnum):
    """Per-column weight.

    ``AUTO`` divides every column of a file by its row count so that files
    sampled at different densities contribute alike; ``SCALED_VALUES``
    multiplies the user values by that factor.
    """
    NONE = 0
    AUTO = 1
    VALUES = 2
    SCALED_VALUES = 3


class PointWeightMode(IntEnum):
    """Per-data-point weight read from columns of the experimental table."""
    NONE = 0
    COLUMNS = 1


def coerce_mode(enum_cls, value, what: str):
    """Convert a configuration selector to its enum member.

    Accepts the integer selector or the member name (case-insensitive).

    Raises
    ------
    ConfigurationError
        For selectors outside the enumeration.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls[value.strip().upper()]
        except KeyError:
            pass
    elif isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        try:
            return enum_cls(int(value))
        except ValueError:
            pass
    allowed = ", ".join(f"{m.value}={m.name.lower()}" for m in enum_cls)
    raise ConfigurationError(f"Invalid {what} selector {value!r} (allowed: {allowed})")


# WEIGHT SCHEME =========================================================================

@dataclass(frozen=True)
class WeightSpec:
    """Three independent weighting sources, combined multiplicatively.

    Parameters
    ----------
    file_mode : FileWeightMode
        Per-file weighting.
    file_weights : sequence of float, optional
        One positive weight per file (``FileWeightMode.VALUES``).
    column_mode : ColumnWeightMode
        Per-column weighting.
    column_weights : sequence of sequence of float, optional
        Per file, one positive weight per info column (``VALUES`` and
        ``SCALED_VALUES``).
    point_mode : PointWeightMode
        Per-point weighting.
    point_columns : sequence of sequence of int, optional
        Per file, for each info column the 1-based table column holding the
        point weights of that column (``PointWeightMode.COLUMNS``).

    Notes
    -----
    Any disabled source contributes a factor of 1. Enabled weights must be
    strictly positive.
    """

    file_mode: FileWeightMode = FileWeightMode.NONE
    file_weights: tuple[float, ...] | None = None
    column_mode: ColumnWeightMode = ColumnWeightMode.NONE
    column_weights: tuple[tuple[float, ...], ...] | None = None
    point_mode: PointWeightMode = PointWeightMode.NONE
    point_columns: tuple[tuple[int, ...], ...] | None = None


    def __post_init__(self) -> None:
        object.__setattr__(self, "file_mode", coerce_mode(FileWeightMode, self.file_mode, "file weight"))
        object.__setattr__(self, "column_mode", coerce_mode(ColumnWeightMode, self.column_mode, "column weight"))
        object.__setattr__(self, "point_mode", coerce_mode(PointWeightMode, self.point_mode, "point weight"))

        if self.file_weights is not None:
            object.__setattr__(self, "file_weights", tuple(float(w) for w in self.file_weights))
        if self.column_weights is not None:
            object.__setattr__(
                self, "column_weights",
                tuple(tuple(float(w) for w in row) for row in self.column_weights),
            )
        if self.point_columns is not None:
            object.__setattr__(
                self, "point_columns",
                tuple(tuple(int(c) for c in row) for row in self.point_columns),
            )


    def validate(self, datasets: Sequence[ExperimentalDataset]) -> None:
        """Check the weight records against the experimental files.

        Raises
        ------
        ConfigurationError
            On missing, mis-sized, or non-positive weights.
        """
        n_files = len(datasets)

        if self.file_mode == FileWeightMode.VALUES:
            if self.file_weights is None or len(self.file_weights) != n_files:
                raise ConfigurationError(
                    f"File weights: expected {n_files} values, "
                    f"got {0 if self.file_weights is None else len(self.file_weights)}"
                )
            if min(self.file_weights) <= 0.0:
                raise ConfigurationError("File weights must be strictly positive")

        if self.column_mode in (ColumnWeightMode.VALUES, ColumnWeightMode.SCALED_VALUES):
            if self.column_weights is None or len(self.column_weights) != n_files:
                raise ConfigurationError(f"Column weights: expected one row per file ({n_files})")
            for ds, row in zip(datasets, self.column_weights):
                if len(row) != ds.n_info:
                    raise ConfigurationError(
                        f"Column weights for '{ds.name}': expected {ds.n_info} values, got {len(row)}"
                    )
                if min(row) <= 0.0:
                    raise ConfigurationError(f"Column weights for '{ds.name}' must be strictly positive")

        if self.point_mode == PointWeightMode.COLUMNS:
            if self.point_columns is None or len(self.point_columns) != n_files:
                raise ConfigurationError(f"Point weight columns: expected one row per file ({n_files})")
            for ds, row in zip(datasets, self.point_columns):
                if len(row) != ds.n_info:
                    raise ConfigurationError(
                        f"Point weight columns for '{ds.name}': expected {ds.n_info} indices, got {len(row)}"
                    )
                for c in row:
                    if c < 1 or c > ds.n_columns:
                        raise ConfigurationError(
                            f"Point weight column {c} of '{ds.name}' out of range [1, {ds.n_columns}]"
                        )
                    if np.any(ds.column(c) <= 0.0):
                        raise ConfigurationError(
                            f"Point weights in column {c} of '{ds.name}' must be strictly positive"
                        )


# WEIGHT ASSEMBLY =======================================================================

def calc_weights(spec: WeightSpec, datasets: Sequence[ExperimentalDataset]) -> np.ndarray:
    """Assemble the weight of every deviation entry.

    Ordering is file-major, then column-major (all rows of the first compared
    column, then the next), identical to :func:`~paramid.ident.evaluator.calc_v`.

    Parameters
    ----------
    spec : WeightSpec
        Weighting sources.
    datasets : sequence of ExperimentalDataset
        Experimental files, in configuration order.

    Returns
    -------
    np.ndarray
        Strictly positive weights, one per deviation entry.
    """
    spec.validate(datasets)

    blocks: list[np.ndarray] = []
    for i, ds in enumerate(datasets):
        w_file = spec.file_weights[i] if spec.file_mode == FileWeightMode.VALUES else 1.0

        for j in range(ds.n_info):
            if spec.column_mode == ColumnWeightMode.NONE:
                w_col = 1.0
            elif spec.column_mode == ColumnWeightMode.AUTO:
                w_col = 1.0 / ds.n_rows
            elif spec.column_mode == ColumnWeightMode.VALUES:
                w_col = spec.column_weights[i][j]
            else:
                w_col = spec.column_weights[i][j] / ds.n_rows

            if spec.point_mode == PointWeightMode.COLUMNS:
                w_point = ds.column(spec.point_columns[i][j])
            else:
                w_point = np.ones(ds.n_rows)

            blocks.append(w_file * w_col * w_point)

    return np.concatenate(blocks) if blocks else np.array([], dtype=float)
