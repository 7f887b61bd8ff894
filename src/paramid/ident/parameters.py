#########################################################################################
##
##                        PARAMETER & CONSTANT REGISTRY
##                              (ident/parameters.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .exceptions import ConfigurationError


__all__ = [
    "Parameter",
    "Constant",
    "ParameterRegistry",
]


# PARAMETER DECLARATION =================================================================

@dataclass(frozen=True)
class Parameter:
    """Calibration parameter with its admissible interval.

    Parameters
    ----------
    number : int
        Parameter identifier (position in the parameter vector).
    key : str
        Token substituted by the parameter value in the model input files.
    min : float
        Lower bound.
    max : float
        Upper bound, ``min <= max``.
    input_files : tuple[str, ...]
        Model input files the parameter perturbs.

    Notes
    -----
    A parameter whose bounds coincide is kept fixed by every sampler and by
    the refiner; a ``UserWarning`` is emitted since this is usually a
    configuration slip.
    """

    number: int
    key: str
    min: float
    max: float
    input_files: tuple[str, ...] = field(default_factory=tuple)


    def __post_init__(self) -> None:
        lo, hi = float(self.min), float(self.max)
        if not (np.isfinite(lo) and np.isfinite(hi)):
            raise ConfigurationError(
                f"Parameter '{self.key}': bounds must be finite, got [{lo}, {hi}]"
            )
        if lo > hi:
            raise ConfigurationError(
                f"Parameter '{self.key}': lower bound {lo} > upper bound {hi}"
            )
        if lo == hi:
            warnings.warn(
                f"Parameter '{self.key}': lower and upper bound coincide ({lo}), "
                "the parameter cannot move",
                UserWarning,
                stacklevel=3,
            )

        object.__setattr__(self, "min", lo)
        object.__setattr__(self, "max", hi)
        object.__setattr__(self, "input_files", tuple(self.input_files))


    @property
    def span(self) -> float:
        """Width of the admissible interval."""
        return self.max - self.min


    def contains(self, value: float) -> bool:
        """True if *value* lies inside ``[min, max]``."""
        return self.min <= value <= self.max


# CONSTANT DECLARATION ==================================================================

@dataclass(frozen=True)
class Constant:
    """Fixed model input, possibly with one value per experimental file.

    Parameters
    ----------
    number : int
        Constant identifier.
    key : str
        Token substituted by the constant value in the model input files.
    values : tuple[float, ...]
        One value per experimental file, or a single value shared by all files.
    input_files : tuple[str, ...]
        Model input files the constant is written to.
    """

    number: int
    key: str
    values: tuple[float, ...]
    input_files: tuple[str, ...] = field(default_factory=tuple)


    def __post_init__(self) -> None:
        vals = np.atleast_1d(np.asarray(self.values, dtype=float)).reshape(-1)
        if vals.size == 0:
            raise ConfigurationError(f"Constant '{self.key}' has no value")
        object.__setattr__(self, "values", tuple(float(v) for v in vals))
        object.__setattr__(self, "input_files", tuple(self.input_files))


    def value(self, file_index: int) -> float:
        """Value used for the experimental file *file_index*."""
        if len(self.values) == 1:
            return self.values[0]
        return self.values[file_index]


# REGISTRY ==============================================================================

class ParameterRegistry:
    """Read-only collection of the calibration parameters and constants.

    The order of ``parameters`` fixes the order of every parameter vector,
    of the DOE sample columns, and of the sensitivity-matrix columns.

    Parameters
    ----------
    parameters : sequence of Parameter
        Calibration parameters, at least one.
    constants : sequence of Constant, optional
        Fixed model inputs.
    n_files : int, optional
        Number of experimental files; when given, every constant must carry
        either one value or exactly ``n_files`` values.

    Example
    -------
    .. code-block:: python

        registry = ParameterRegistry(
            [Parameter(0, "@E", 1e3, 1e5), Parameter(1, "@nu", 0.1, 0.45)],
            [Constant(0, "@T", (293.15,))],
        )
        registry.lower          # array([1.0e+03, 1.0e-01])
        registry.key_mapping([2e4, 0.3], 0)
    """

    def __init__(
        self,
        parameters: Sequence[Parameter],
        constants: Sequence[Constant] = (),
        n_files: int | None = None,
    ):
        self._parameters = tuple(parameters)
        self._constants = tuple(constants)

        if not self._parameters:
            raise ConfigurationError("At least one parameter is required")

        keys = [p.key for p in self._parameters] + [c.key for c in self._constants]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate parameter/constant keys: {duplicates}")

        if n_files is not None:
            for c in self._constants:
                if len(c.values) not in (1, n_files):
                    raise ConfigurationError(
                        f"Constant '{c.key}' has {len(c.values)} values, "
                        f"expected 1 or {n_files} (one per experimental file)"
                    )
        self.n_files = n_files

        self._lower = np.array([p.min for p in self._parameters], dtype=float)
        self._upper = np.array([p.max for p in self._parameters], dtype=float)
        self._lower.setflags(write=False)
        self._upper.setflags(write=False)


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        return self._parameters


    @property
    def constants(self) -> tuple[Constant, ...]:
        return self._constants


    @property
    def n_param(self) -> int:
        return len(self._parameters)


    @property
    def n_consts(self) -> int:
        return len(self._constants)


    @property
    def lower(self) -> np.ndarray:
        """Lower bounds, read-only array of length ``n_param``."""
        return self._lower


    @property
    def upper(self) -> np.ndarray:
        """Upper bounds, read-only array of length ``n_param``."""
        return self._upper


    @property
    def keys(self) -> list[str]:
        return [p.key for p in self._parameters]


    # ACCESSORS -------------------------------------------------------------------------

    def constant_values(self, file_index: int) -> np.ndarray:
        """Constant values for one experimental file, in registry order."""
        return np.array([c.value(file_index) for c in self._constants], dtype=float)


    def key_mapping(self, p: Sequence[float], file_index: int) -> dict[str, float]:
        """Map every parameter and constant key to its value for one file.

        Intended for model evaluators that fill in templated input decks.
        """
        p_arr = np.asarray(p, dtype=float).reshape(-1)
        if p_arr.size != self.n_param:
            raise ValueError(f"Expected {self.n_param} parameter values, got {p_arr.size}")

        mapping = {par.key: float(v) for par, v in zip(self._parameters, p_arr)}
        for c in self._constants:
            mapping[c.key] = c.value(file_index)
        return mapping


    def clip(self, p: Sequence[float]) -> np.ndarray:
        """Project a parameter vector onto the bounds."""
        return np.clip(np.asarray(p, dtype=float), self._lower, self._upper)


    def __len__(self) -> int:
        return self.n_param


    def __repr__(self) -> str:
        return (
            f"ParameterRegistry(n_param={self.n_param}, n_consts={self.n_consts}, "
            f"keys={self.keys})"
        )
