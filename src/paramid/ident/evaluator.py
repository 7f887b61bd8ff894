#########################################################################################
##
##                         COST & SENSITIVITY EVALUATION
##                              (ident/evaluator.py)
##
##          Compares model predictions with the experimental reference curves
##          under a weighting scheme and estimates local sensitivities by
##          finite differences.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import threading
from typing import Callable, Protocol, Sequence

import numpy as np

from .data import ExperimentalDataset, NumericalDataset
from .exceptions import ConfigurationError
from .generation import Individual
from .parameters import ParameterRegistry
from .weights import WeightSpec, calc_weights
from ..utils.logger import LoggerManager


_log = LoggerManager().get_logger("ident.evaluator")


# CONSTANTS =============================================================================

# floor on the squared reference value in the scale-normalized cost
COST_FLOOR = 1e-12

# a sensitivity column with every entry below this magnitude is degenerate
SENSITIVITY_TOL = 1e-12

# below this magnitude a parameter is perturbed by the absolute step h
PARAM_ZERO = 1e-8


class ModelEvaluator(Protocol):
    """External model contract.

    Called once per experimental file with the parameter vector, the
    constant values of that file, and the file itself; returns the model
    output table whose selected columns line up with the file's compared
    columns. Must be deterministic.
    """

    def __call__(
        self,
        p: np.ndarray,
        constants: np.ndarray,
        experiment: ExperimentalDataset,
    ) -> np.ndarray:
        ...


# DEVIATION & COST ======================================================================

def calc_v(blocks: Sequence[np.ndarray]) -> np.ndarray:
    """Flatten per-file value tables into one vector.

    Parameters
    ----------
    blocks : sequence of array_like
        One ``(n_rows, n_info)`` table per file.

    Returns
    -------
    np.ndarray
        File-major, then column-major concatenation (all rows of the first
        compared column, then the next).
    """
    parts = []
    for b in blocks:
        arr = np.asarray(b, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        parts.append(arr.ravel(order="F"))
    return np.concatenate(parts) if parts else np.array([], dtype=float)


def normalized_weights(v_exp: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Weights divided by the floored squared reference values.

    With these, ``sum(w * d**2)`` over the deviation vector ``d`` equals
    :func:`calc_cost`.
    """
    v_exp = np.asarray(v_exp, dtype=float)
    weights = np.asarray(weights, dtype=float)
    if v_exp.shape != weights.shape:
        raise ValueError(f"weights {weights.shape} do not match references {v_exp.shape}")
    return weights / np.maximum(v_exp ** 2, COST_FLOOR)


def calc_cost(v_exp: np.ndarray, v_num: np.ndarray, weights: np.ndarray) -> float:
    """Weighted, scale-normalized least-squares cost.

    .. math::

        C = \\sum_i W_i \\frac{(v^{num}_i - v^{exp}_i)^2}{\\max((v^{exp}_i)^2, \\varepsilon)}

    Parameters
    ----------
    v_exp, v_num, weights : array_like
        Experimental values, numerical values, and weights, same length.
    """
    v_exp = np.asarray(v_exp, dtype=float)
    v_num = np.asarray(v_num, dtype=float)
    if v_exp.shape != v_num.shape:
        raise ValueError(f"numerical {v_num.shape} and experimental {v_exp.shape} vectors differ")
    w = normalized_weights(v_exp, weights)
    return float(np.sum(w * (v_num - v_exp) ** 2))


# SENSITIVITY ===========================================================================

def _perturbation(p_k: float, h: float, lo: float, hi: float) -> float:
    """Signed finite-difference step for one parameter, kept inside the bounds."""
    step = h * abs(p_k) if abs(p_k) > PARAM_ZERO else h

    if p_k + step <= hi:
        return step
    if p_k - step >= lo:
        return -step
    # interval narrower than the step: use the wider side
    return hi - p_k if hi - p_k >= p_k - lo else lo - p_k


def calc_sensitivity(
    deviation: Callable[[np.ndarray], np.ndarray],
    p: np.ndarray,
    d_base: np.ndarray,
    h: float,
    lower: np.ndarray | None = None,
    upper: np.ndarray | None = None,
    executor=None,
) -> np.ndarray:
    """Finite-difference sensitivity matrix of the deviation vector.

    Column ``k`` is ``(d(p + δ_k e_k) - d(p)) / δ_k`` with ``δ_k = h |p_k|``
    (``h`` when ``p_k`` is close to 0), taken backward when the forward step
    would leave the bounds.

    Parameters
    ----------
    deviation : callable
        Maps a parameter vector to its deviation vector (one model run).
    p : np.ndarray
        Parameter vector.
    d_base : np.ndarray
        Deviation vector at ``p``.
    h : float
        Relative perturbation step.
    lower, upper : np.ndarray, optional
        Parameter bounds; unbounded when omitted.
    executor : concurrent.futures.Executor, optional
        Runs the ``n_param`` perturbed evaluations concurrently.

    Returns
    -------
    np.ndarray
        Sensitivity matrix, shape ``(len(d_base), n_param)``; column order
        follows the parameter order.
    """
    p = np.asarray(p, dtype=float).reshape(-1)
    d_base = np.asarray(d_base, dtype=float).reshape(-1)
    n_param = p.size
    if h <= 0.0:
        raise ValueError(f"perturbation step must be > 0, got {h}")

    lo = np.full(n_param, -np.inf) if lower is None else np.asarray(lower, dtype=float)
    hi = np.full(n_param, np.inf) if upper is None else np.asarray(upper, dtype=float)

    steps = np.array([_perturbation(p[k], h, lo[k], hi[k]) for k in range(n_param)])

    def _column(k: int) -> np.ndarray:
        if steps[k] == 0.0:
            return np.zeros_like(d_base)
        p_pert = p.copy()
        p_pert[k] += steps[k]
        return (np.asarray(deviation(p_pert), dtype=float) - d_base) / steps[k]

    if executor is None:
        columns = [_column(k) for k in range(n_param)]
    else:
        columns = list(executor.map(_column, range(n_param)))

    return np.column_stack(columns) if columns else np.zeros((d_base.size, 0))


def check_sensitivity(S: np.ndarray, tol: float = SENSITIVITY_TOL) -> np.ndarray:
    """Flag the usable sensitivity columns.

    A column is degenerate, and excluded from the linear solves, iff every
    entry is below *tol* in magnitude: the parameter has no observable local
    effect. A column holding a non-finite entry is excluded as well, since
    the model failed at the perturbed point.

    Returns
    -------
    np.ndarray
        Boolean usability flag per parameter.
    """
    S = np.asarray(S, dtype=float)
    if S.ndim != 2:
        raise ValueError("sensitivity matrix must be 2D")
    if S.shape[0] == 0:
        return np.zeros(S.shape[1], dtype=bool)
    return np.any(np.abs(S) >= tol, axis=0) & np.all(np.isfinite(S), axis=0)


# EVALUATOR =============================================================================

class Evaluator:
    """Binds the external model to the experimental files and weights.

    Parameters
    ----------
    model : ModelEvaluator
        External model, called once per experimental file.
    registry : ParameterRegistry
        Parameters and constants.
    datasets : sequence of ExperimentalDataset
        Experimental files.
    weights : WeightSpec, optional
        Weighting scheme; all weights are 1 when omitted.
    numerical : sequence of NumericalDataset, optional
        Model output layout per file; defaults to the experimental layout.

    Notes
    -----
    Evaluations of different parameter vectors are independent and may run
    on several threads; the only shared state is the evaluation counter,
    which is lock-guarded.

    Example
    -------
    .. code-block:: python

        def model(p, constants, experiment):
            x = experiment.column(1)
            return np.column_stack([x, p[0] * np.exp(-p[1] * x)])

        ev = Evaluator(model, registry, [dataset], WeightSpec())
        d  = ev.deviation(p)
        S  = ev.sensitivity(p, d, h=1e-4)
    """

    def __init__(
        self,
        model: ModelEvaluator,
        registry: ParameterRegistry,
        datasets: Sequence[ExperimentalDataset],
        weights: WeightSpec | None = None,
        numerical: Sequence[NumericalDataset] | None = None,
    ):
        if not callable(model):
            raise TypeError(f"model must be callable, got {type(model).__name__}")
        if not datasets:
            raise ConfigurationError("At least one experimental dataset is required")

        self.model = model
        self.registry = registry
        self.datasets = list(datasets)

        if numerical is None:
            numerical = [NumericalDataset.like(ds) for ds in self.datasets]
        if len(numerical) != len(self.datasets):
            raise ConfigurationError(
                f"{len(numerical)} numerical layouts for {len(self.datasets)} experimental files"
            )
        for ds, num in zip(self.datasets, numerical):
            if len(num.info_columns) != ds.n_info:
                raise ConfigurationError(
                    f"'{ds.name}': {len(num.info_columns)} numerical columns "
                    f"compared with {ds.n_info} experimental columns"
                )
        self.numerical = list(numerical)

        self.weight_spec = weights if weights is not None else WeightSpec()
        self.v_exp = calc_v([ds.values for ds in self.datasets])
        self.weights = calc_weights(self.weight_spec, self.datasets)
        self.w_eff = normalized_weights(self.v_exp, self.weights)

        self._lock = threading.Lock()
        self._n_evaluations = 0


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def n_param(self) -> int:
        return self.registry.n_param


    @property
    def n_points(self) -> int:
        """Length of the deviation vector."""
        return self.v_exp.size


    @property
    def n_evaluations(self) -> int:
        """Number of full model evaluations (all files) so far."""
        with self._lock:
            return self._n_evaluations


    # MODEL CALLS -----------------------------------------------------------------------

    def simulate(self, p: Sequence[float]) -> list[np.ndarray]:
        """Run the model for every file and return the compared columns.

        Raises
        ------
        ModelEvaluationError
            If an output table does not fit its experimental file.
        """
        p_arr = np.asarray(p, dtype=float).reshape(-1)
        if p_arr.size != self.n_param:
            raise ValueError(f"Expected {self.n_param} parameter values, got {p_arr.size}")

        blocks = []
        for i, (ds, num) in enumerate(zip(self.datasets, self.numerical)):
            out = self.model(p_arr.copy(), self.registry.constant_values(i), ds)
            blocks.append(num.select(out, ds))

        with self._lock:
            self._n_evaluations += 1
        return blocks


    def v_num(self, p: Sequence[float]) -> np.ndarray:
        return calc_v(self.simulate(p))


    def deviation(self, p: Sequence[float]) -> np.ndarray:
        """Numerical minus experimental values, in weight order."""
        return self.v_num(p) - self.v_exp


    def cost_from_deviation(self, d: np.ndarray) -> float:
        cost = float(np.sum(self.w_eff * np.asarray(d, dtype=float) ** 2))
        return cost if np.isfinite(cost) else np.inf


    def cost(self, p: Sequence[float]) -> float:
        return self.cost_from_deviation(self.deviation(p))


    def evaluate(self, individual: Individual) -> float:
        """Evaluate one candidate and store its cost on it.

        Non-finite model output yields an infinite cost, which ranks the
        candidate last.
        """
        cost = self.cost(individual.p)
        if not np.isfinite(cost):
            _log.warning("candidate %d: non-finite cost, ranked last", individual.id)
        individual.cost = cost
        return cost


    def sensitivity(self, p: Sequence[float], d_base: np.ndarray | None = None,
                    h: float = 1e-3, executor=None) -> np.ndarray:
        """Sensitivity matrix at ``p``; one extra model run per parameter."""
        p_arr = np.asarray(p, dtype=float).reshape(-1)
        if d_base is None:
            d_base = self.deviation(p_arr)
        return calc_sensitivity(
            self.deviation, p_arr, d_base, h,
            self.registry.lower, self.registry.upper,
            executor=executor,
        )


    def __repr__(self) -> str:
        return (
            f"Evaluator(n_files={len(self.datasets)}, n_points={self.n_points}, "
            f"n_param={self.n_param})"
        )
