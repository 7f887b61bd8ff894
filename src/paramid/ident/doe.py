#########################################################################################
##
##                             DESIGN OF EXPERIMENTS
##                                 (ident/doe.py)
##
##          Samplers that fill the parameter space with the first generation,
##          and the text artifact persisting a generation between runs.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import Sequence

import numpy as np

from .exceptions import ArtifactError
from .generation import Generation
from .parameters import ParameterRegistry
from ..utils.sequence import IdSequence
from ..utils.logger import LoggerManager


_log = LoggerManager().get_logger("ident.doe")


# DOE MODES =============================================================================

class DOEMode(IntEnum):
    """Strategy used to build the initial population."""
    GRID_INTERIOR = 0
    GRID_INCLUSIVE = 1
    RANDOM = 2
    FROM_FILE = 3


# SAMPLERS ==============================================================================

def _bounds(lower, upper) -> tuple[np.ndarray, np.ndarray]:
    lo = np.asarray(lower, dtype=float).reshape(-1)
    hi = np.asarray(upper, dtype=float).reshape(-1)
    if lo.shape != hi.shape:
        raise ValueError(f"bound vectors differ in length: {lo.size} vs {hi.size}")
    if lo.size == 0:
        raise ValueError("at least one parameter is required")
    if np.any(lo > hi):
        raise ValueError("lower bound exceeds upper bound")
    return lo, hi


def _grid_levels(spop: int, n_param: int) -> np.ndarray:
    """Mixed-radix digits of ``0..spop**n_param - 1``.

    Column ``j`` holds the digit of weight ``spop**j``, so parameter 0
    varies fastest and parameter ``j`` cycles with period ``spop**j``.
    """
    n_samples = spop ** n_param
    index = np.arange(n_samples)
    radix = spop ** np.arange(n_param)
    return (index[:, None] // radix[None, :]) % spop


def doe_uniform(spop: int, lower, upper) -> np.ndarray:
    """Equidistant grid strictly inside the bounds.

    Parameters
    ----------
    spop : int
        Number of levels per parameter, ``>= 1``.
    lower, upper : array_like
        Parameter bounds.

    Returns
    -------
    np.ndarray
        ``(spop**n_param, n_param)`` samples; level ``k = 1..spop`` sits at
        ``min + k/(spop+1) * (max - min)``.
    """
    spop = int(spop)
    if spop < 1:
        raise ValueError(f"spop must be >= 1, got {spop}")
    lo, hi = _bounds(lower, upper)

    factor = (_grid_levels(spop, lo.size) + 1) / (spop + 1)
    return lo + factor * (hi - lo)


def doe_uniform_limit(spop: int, lower, upper) -> np.ndarray:
    """Equidistant grid including both bounds.

    Same enumeration as :func:`doe_uniform`; level ``k = 0..spop-1`` sits at
    ``min + k/(spop-1) * (max - min)``, which needs ``spop >= 2``.
    """
    spop = int(spop)
    if spop < 2:
        raise ValueError(f"inclusive grid requires spop >= 2, got {spop}")
    lo, hi = _bounds(lower, upper)

    levels = _grid_levels(spop, lo.size)
    samples = lo + levels / (spop - 1) * (hi - lo)
    # the last level must hit the upper bound exactly
    return np.where(levels == spop - 1, hi, samples)


def doe_random(n_samples: int, lower, upper, rng: np.random.Generator | None = None) -> np.ndarray:
    """Independent uniform draws inside the bounds.

    Parameters
    ----------
    n_samples : int
        Number of samples.
    lower, upper : array_like
        Parameter bounds.
    rng : numpy.random.Generator, optional
        Random source; a fresh default generator when omitted.
    """
    n_samples = int(n_samples)
    if n_samples < 1:
        raise ValueError(f"n_samples must be >= 1, got {n_samples}")
    lo, hi = _bounds(lower, upper)
    rng = rng if rng is not None else np.random.default_rng()
    return rng.uniform(lo, hi, size=(n_samples, lo.size))


# GENERATION ARTIFACT ===================================================================

def _header_names(path: Path) -> list[str]:
    """Column names of the leading ``#`` header line, empty when there is none."""
    with path.open("r", encoding="utf-8") as handle:
        first = handle.readline().strip()
    return first.lstrip("#").split() if first.startswith("#") else []


def read_generation(path, n_param: int, *, return_ids: bool = False):
    """Load the samples of a persisted generation.

    The artifact holds one row per candidate: identifier, then the
    ``n_param`` parameter values, optionally followed by the cost. The cost
    column is only recognized when the header line names it ``cost``.

    Parameters
    ----------
    path : str or Path
        Artifact file.
    n_param : int
        Expected number of parameters.
    return_ids : bool
        Also return the stored identifiers.

    Returns
    -------
    samples : np.ndarray
        ``(n_rows, n_param)`` parameter values.
    ids : np.ndarray
        Stored identifiers (only with ``return_ids=True``).

    Raises
    ------
    ArtifactError
        If the file is missing, unreadable, empty, or its column count does
        not match ``n_param``.
    """
    path = Path(path)
    if not path.exists():
        raise ArtifactError(f"Generation artifact not found: {path}")

    try:
        table = np.loadtxt(path, dtype=float, ndmin=2)
    except ValueError as exc:
        raise ArtifactError(f"Cannot parse generation artifact {path}: {exc}") from exc

    if table.shape[0] == 0:
        raise ArtifactError(f"Generation artifact {path} holds no candidates")
    with_cost = table.shape[1] == n_param + 2 and _header_names(path)[-1:] == ["cost"]
    if table.shape[1] != n_param + 1 and not with_cost:
        raise ArtifactError(
            f"Generation artifact {path} has {table.shape[1]} columns, "
            f"expected {n_param + 1} (id + {n_param} parameters)"
        )

    samples = table[:, 1:n_param + 1].copy()
    _log.debug("read %d candidates from %s", samples.shape[0], path)
    if return_ids:
        return samples, table[:, 0].astype(int)
    return samples


def write_generation(path, generation: Generation, keys: Sequence[str] | None = None,
                     *, with_cost: bool = False) -> Path:
    """Persist a generation as a whitespace-delimited text artifact.

    Parameters
    ----------
    path : str or Path
        Target file; parent directories are created.
    generation : Generation
        Population to write, in its current order.
    keys : sequence of str, optional
        Parameter names for the header line.
    with_cost : bool
        Append the cost as a last column.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    names = list(keys) if keys is not None else [f"p{j}" for j in range(generation.n_param)]
    if len(names) != generation.n_param:
        raise ValueError(f"Expected {generation.n_param} keys, got {len(names)}")

    columns = [np.asarray(generation.ids, dtype=float).reshape(-1, 1), generation.samples]
    header = ["id"] + names
    if with_cost:
        columns.append(generation.costs.reshape(-1, 1))
        header.append("cost")

    table = np.hstack(columns)
    fmt = ["%d"] + ["%.12e"] * (table.shape[1] - 1)
    np.savetxt(path, table, fmt=fmt, header=" ".join(header))
    return path


# INITIAL GENERATION ====================================================================

def sample(
    mode: DOEMode,
    lower,
    upper,
    *,
    spop: int | None = None,
    n_samples: int | None = None,
    path=None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Dispatch to the sampler selected by *mode*."""
    mode = DOEMode(mode)
    lo, hi = _bounds(lower, upper)

    if mode == DOEMode.GRID_INTERIOR:
        if spop is None:
            raise ValueError("GRID_INTERIOR requires spop")
        return doe_uniform(spop, lo, hi)
    if mode == DOEMode.GRID_INCLUSIVE:
        if spop is None:
            raise ValueError("GRID_INCLUSIVE requires spop")
        return doe_uniform_limit(spop, lo, hi)
    if mode == DOEMode.RANDOM:
        if n_samples is None:
            raise ValueError("RANDOM requires n_samples")
        return doe_random(n_samples, lo, hi, rng)

    if path is None:
        raise ValueError("FROM_FILE requires path")
    return read_generation(path, lo.size)


def initialize_generation(
    mode: DOEMode,
    registry: ParameterRegistry,
    ids: IdSequence,
    *,
    spop: int | None = None,
    n_samples: int | None = None,
    path=None,
    rng: np.random.Generator | None = None,
) -> Generation:
    """Build the first generation from a DOE.

    Every sample becomes a new individual with a fresh identifier taken from
    *ids*. Samples read from an artifact are projected onto the bounds.
    """
    samples = sample(
        mode, registry.lower, registry.upper,
        spop=spop, n_samples=n_samples, path=path, rng=rng,
    )
    if mode == DOEMode.FROM_FILE:
        samples = registry.clip(samples)

    gen = Generation(samples.shape[0], registry.n_param, ids)
    gen.samples = samples

    _log.info(
        "initial generation: %s, %d candidates, %d parameters",
        DOEMode(mode).name.lower(), gen.nindividuals, gen.n_param,
    )
    return gen
