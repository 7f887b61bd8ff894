#########################################################################################
##
##                       BOUNDED LEVENBERG-MARQUARDT REFINER
##                               (ident/optimize.py)
##
##          Damped Gauss-Newton steps on the weighted deviation vector with
##          logarithmic barriers near the parameter bounds and a projection
##          that keeps every iterate feasible.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from .evaluator import check_sensitivity
from ..utils.logger import LoggerManager

if TYPE_CHECKING:
    from .evaluator import Evaluator


_log = LoggerManager().get_logger("ident.optimize")


# smallest distance to a bound used by the barrier, relative to the span
BARRIER_FLOOR = 1e-12


# NORMAL EQUATIONS ======================================================================

def hessian(S: np.ndarray, W: np.ndarray) -> np.ndarray:
    """Gauss-Newton Hessian ``Sᵗ diag(W) S``."""
    S = np.asarray(S, dtype=float)
    return S.T @ (np.asarray(W, dtype=float)[:, None] * S)


def gradient(S: np.ndarray, W: np.ndarray, d: np.ndarray) -> np.ndarray:
    """Gradient term ``Sᵗ diag(W) d``."""
    S = np.asarray(S, dtype=float)
    return S.T @ (np.asarray(W, dtype=float) * np.asarray(d, dtype=float))


def diag_jtj(H: np.ndarray) -> np.ndarray:
    """Diagonal part of *H* as a matrix, the Marquardt damping shape."""
    return np.diag(np.diag(H))


# BOUND BARRIERS ========================================================================

def _barrier_distance(dist: np.ndarray, span: np.ndarray, p0: float):
    """Active mask and floored distance for the barrier terms."""
    active = (span > 0.0) & (dist < p0 * span)
    floor = BARRIER_FLOOR * np.where(span > 0.0, span, 1.0)
    return active, np.maximum(dist, floor)


def bound_min(p, lower, upper, c: float, p0: float) -> np.ndarray:
    """Gradient of the lower-bound barrier.

    The barrier ``-c log((p - min) / (p0 (max - min)))`` is switched on when
    a parameter is closer to its lower bound than ``p0`` times its span; its
    gradient is ``-c / (p - min)``, pushing the step away from the bound.
    """
    p, lo, hi = (np.asarray(a, dtype=float) for a in (p, lower, upper))
    active, dist = _barrier_distance(p - lo, hi - lo, p0)
    return np.where(active, -c / dist, 0.0)


def bound_max(p, lower, upper, c: float, p0: float) -> np.ndarray:
    """Gradient of the upper-bound barrier, ``c / (max - p)`` when active."""
    p, lo, hi = (np.asarray(a, dtype=float) for a in (p, lower, upper))
    active, dist = _barrier_distance(hi - p, hi - lo, p0)
    return np.where(active, c / dist, 0.0)


def dbound_min(p, lower, upper, c: float, p0: float) -> np.ndarray:
    """Curvature of the lower-bound barrier, ``c / (p - min)**2`` when active."""
    p, lo, hi = (np.asarray(a, dtype=float) for a in (p, lower, upper))
    active, dist = _barrier_distance(p - lo, hi - lo, p0)
    return np.where(active, c / dist ** 2, 0.0)


def dbound_max(p, lower, upper, c: float, p0: float) -> np.ndarray:
    """Curvature of the upper-bound barrier, ``c / (max - p)**2`` when active."""
    p, lo, hi = (np.asarray(a, dtype=float) for a in (p, lower, upper))
    active, dist = _barrier_distance(hi - p, hi - lo, p0)
    return np.where(active, c / dist ** 2, 0.0)


# STEP ==================================================================================

def lev_marq(H: np.ndarray, lambda_lm: float, dL_min=None, dL_max=None) -> np.ndarray:
    """Damped system matrix ``H + λ diag(diag(H)) + diag(dL_min + dL_max)``.

    The damping is diagonal, not isotropic, so every parameter is damped in
    proportion to its own sensitivity scale.
    """
    H = np.asarray(H, dtype=float)
    n = H.shape[0]
    dL = np.zeros(n)
    if dL_min is not None:
        dL = dL + np.asarray(dL_min, dtype=float)
    if dL_max is not None:
        dL = dL + np.asarray(dL_max, dtype=float)
    return H + lambda_lm * diag_jtj(H) + np.diag(dL)


def project(p, dp, lower, upper) -> np.ndarray:
    """Shorten a step so that ``p + dp`` lies inside ``[lower, upper]``."""
    p = np.asarray(p, dtype=float)
    return np.clip(p + np.asarray(dp, dtype=float), lower, upper) - p


def calc_dp(
    S: np.ndarray,
    W: np.ndarray,
    d: np.ndarray,
    p: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    lambda_lm: float,
    c: float = 0.0,
    p0: float = 0.0,
    usable: np.ndarray | None = None,
) -> np.ndarray:
    """Bound-projected Levenberg-Marquardt step.

    Solves

    .. math::

        (H + \\lambda \\, \\mathrm{diag}(H) + \\mathrm{diag}(L'_{min} + L'_{max}))
        \\, \\Delta p = -(g + L_{min} + L_{max})

    on the usable sensitivity columns and projects the result onto the
    bounds.

    Parameters
    ----------
    S : np.ndarray
        Sensitivity matrix, ``(n_points, n_param)``.
    W : np.ndarray
        Weight vector, ``(n_points,)``.
    d : np.ndarray
        Deviation vector at ``p``.
    p : np.ndarray
        Current parameter vector.
    lower, upper : np.ndarray
        Parameter bounds.
    lambda_lm : float
        Damping scalar.
    c : float
        Barrier weight; 0 disables the barriers.
    p0 : float
        Barrier activation distance, relative to the parameter span.
    usable : np.ndarray, optional
        Boolean column mask; computed with
        :func:`~paramid.ident.evaluator.check_sensitivity` when omitted.

    Returns
    -------
    np.ndarray
        Step ``Δp`` with ``p + Δp`` inside the bounds; components of
        unusable parameters are 0.

    Raises
    ------
    FloatingPointError
        If the damped system holds non-finite entries, for instance when
        the deviation at ``p`` is not finite.
    """
    p = np.asarray(p, dtype=float)
    if usable is None:
        usable = check_sensitivity(S)
    usable = np.asarray(usable, dtype=bool)

    dp = np.zeros_like(p)
    idx = np.flatnonzero(usable)
    if idx.size == 0:
        return dp

    H = hessian(S, W)
    g = gradient(S, W, d)
    if c > 0.0 and p0 > 0.0:
        L = bound_min(p, lower, upper, c, p0) + bound_max(p, lower, upper, c, p0)
        dL_min = dbound_min(p, lower, upper, c, p0)
        dL_max = dbound_max(p, lower, upper, c, p0)
    else:
        L, dL_min, dL_max = np.zeros_like(p), None, None

    A = lev_marq(H, lambda_lm, dL_min, dL_max)[np.ix_(idx, idx)]
    rhs = -(g + L)[idx]
    if not (np.all(np.isfinite(A)) and np.all(np.isfinite(rhs))):
        raise FloatingPointError("damped system holds non-finite entries")

    try:
        step = sla.solve(A, rhs, assume_a="sym")
    except sla.LinAlgError:
        step = None
    if step is None or not np.all(np.isfinite(step)):
        _log.debug("singular damped system, falling back to least squares")
        step = sla.lstsq(A, rhs)[0]
    dp[idx] = step

    return project(p, dp, lower, upper)


# REFINER ===============================================================================

class RefinementStatus(Enum):
    """Terminal state of one refinement."""
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DAMPING_CEILING = "damping_ceiling"
    DEGENERATE = "degenerate"


@dataclass
class RefinementResult:
    """Outcome of :meth:`LevenbergMarquardt.refine`.

    ``x`` and ``cost`` are the best values seen, never worse than the
    starting point.
    """

    x: np.ndarray
    cost: float
    initial_cost: float
    status: RefinementStatus
    iterations: int
    nfev: int
    lambda_lm: float
    usable: np.ndarray | None = None
    history: list[float] = field(default_factory=list)


    @property
    def success(self) -> bool:
        return self.status == RefinementStatus.CONVERGED


    @property
    def improved(self) -> bool:
        return self.cost < self.initial_cost


    @property
    def message(self) -> str:
        return {
            RefinementStatus.CONVERGED: "cost improvement below tolerance",
            RefinementStatus.MAX_ITERATIONS: "iteration limit reached",
            RefinementStatus.DAMPING_CEILING: "damping exceeded its ceiling",
            RefinementStatus.DEGENERATE: "no parameter has a usable sensitivity",
        }[self.status]


    def __repr__(self) -> str:
        return (
            f"RefinementResult({self.status.name}, cost={self.cost:.4g}, "
            f"initial_cost={self.initial_cost:.4g}, iterations={self.iterations}, "
            f"nfev={self.nfev})"
        )


class LevenbergMarquardt:
    """Local bound-constrained refiner for one candidate.

    Each iteration builds a damped step from the current sensitivities and
    tries it. An improving step is accepted and the damping shrinks by
    ``lambda_factor``; otherwise the step is reverted, the damping grows,
    and the sensitivities are reused for the next attempt.

    Parameters
    ----------
    evaluator : Evaluator
        Cost and sensitivity source.
    lower, upper : array_like, optional
        Bounds; taken from the evaluator's registry when omitted.
    lambda_lm : float
        Initial damping.
    phi_eps : float
        Convergence tolerance on the cost improvement and on the cost itself.
    perturbation : float
        Relative finite-difference step for the sensitivities.
    c : float
        Barrier weight.
    p0 : float
        Barrier activation distance relative to the parameter span.
    max_iterations : int
        Cap on step attempts, accepted or not.
    lambda_max : float
        Damping ceiling; exceeding it ends the refinement.
    lambda_factor : float
        Damping update factor, ``> 1``.
    executor : concurrent.futures.Executor, optional
        Used for the perturbed evaluations of the sensitivity matrix.

    Example
    -------
    .. code-block:: python

        lm  = LevenbergMarquardt(evaluator, lambda_lm=1e-2, phi_eps=1e-12)
        res = lm.refine(candidate.p)
        res.x, res.cost, res.status
    """

    def __init__(
        self,
        evaluator: "Evaluator",
        lower=None,
        upper=None,
        *,
        lambda_lm: float = 1e-2,
        phi_eps: float = 1e-10,
        perturbation: float = 1e-3,
        c: float = 1e-6,
        p0: float = 1e-2,
        max_iterations: int = 50,
        lambda_max: float = 1e10,
        lambda_factor: float = 10.0,
        executor=None,
    ):
        if lambda_lm <= 0.0:
            raise ValueError(f"lambda_lm must be > 0, got {lambda_lm}")
        if lambda_factor <= 1.0:
            raise ValueError(f"lambda_factor must be > 1, got {lambda_factor}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if phi_eps < 0.0:
            raise ValueError(f"phi_eps must be >= 0, got {phi_eps}")

        self.evaluator = evaluator
        self.lower = np.asarray(evaluator.registry.lower if lower is None else lower, dtype=float)
        self.upper = np.asarray(evaluator.registry.upper if upper is None else upper, dtype=float)

        self.lambda_lm = float(lambda_lm)
        self.phi_eps = float(phi_eps)
        self.perturbation = float(perturbation)
        self.c = float(c)
        self.p0 = float(p0)
        self.max_iterations = int(max_iterations)
        self.lambda_max = float(lambda_max)
        self.lambda_factor = float(lambda_factor)
        self.executor = executor


    def refine(self, p, cost: float | None = None) -> RefinementResult:
        """Refine one parameter vector.

        Parameters
        ----------
        p : array_like
            Starting vector; projected onto the bounds first.
        cost : float, optional
            Known cost of ``p``; the returned cost never exceeds it.

        Returns
        -------
        RefinementResult
        """
        ev = self.evaluator
        W = ev.w_eff
        n_param = self.lower.size

        p = np.clip(np.asarray(p, dtype=float).reshape(-1), self.lower, self.upper)
        d = ev.deviation(p)
        phi = ev.cost_from_deviation(d)
        nfev = 1

        initial_cost = phi if cost is None else min(float(cost), phi)
        history = [phi]
        lam = self.lambda_lm
        S = usable = None
        iterations = 0

        if phi < self.phi_eps:
            status = RefinementStatus.CONVERGED
        else:
            status = RefinementStatus.MAX_ITERATIONS

            while iterations < self.max_iterations:

                # ComputeSensitivity, only after an accepted step
                if S is None:
                    S = ev.sensitivity(p, d, h=self.perturbation, executor=self.executor)
                    nfev += n_param
                    usable = check_sensitivity(S)
                    if not usable.any():
                        status = RefinementStatus.DEGENERATE
                        break

                # BuildStep
                iterations += 1
                try:
                    dp = calc_dp(S, W, d, p, self.lower, self.upper, lam, self.c, self.p0, usable)
                except FloatingPointError:
                    dp = None

                if dp is None:
                    phi_try = np.inf
                elif not np.any(dp):
                    status = RefinementStatus.CONVERGED
                    break
                else:
                    # TryAccept; clip again, p + dp may round past a bound
                    p_try = np.clip(p + dp, self.lower, self.upper)
                    d_try = ev.deviation(p_try)
                    phi_try = ev.cost_from_deviation(d_try)
                    nfev += 1

                if phi_try < phi:
                    improvement = phi - phi_try
                    p, d, phi = p_try, d_try, phi_try
                    history.append(phi)
                    lam /= self.lambda_factor
                    _log.debug("iter %d: accepted, cost=%.6e, lambda=%.3e", iterations, phi, lam)
                    if improvement < self.phi_eps or phi < self.phi_eps:
                        status = RefinementStatus.CONVERGED
                        break
                    S = None
                else:
                    lam *= self.lambda_factor
                    _log.debug("iter %d: reverted, lambda=%.3e", iterations, lam)
                    if lam > self.lambda_max:
                        status = RefinementStatus.DAMPING_CEILING
                        break

        return RefinementResult(
            x=p,
            cost=phi,
            initial_cost=initial_cost,
            status=status,
            iterations=iterations,
            nfev=nfev,
            lambda_lm=lam,
            usable=usable,
            history=history,
        )
