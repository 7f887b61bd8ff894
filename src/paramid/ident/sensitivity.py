#########################################################################################
##
##                         IDENTIFIABILITY OF THE OPTIMUM
##                             (ident/sensitivity.py)
##
##          Linearized statistics of the identified parameters, built from the
##          weighted finite-difference sensitivities at the best candidate.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Sequence

import numpy as np
import scipy.linalg as sla


# threshold on |r| above which a parameter pair is reported as correlated
CORRELATION_LIMIT = 0.9


# HELPERS ===============================================================================

def _information_stats(fim: np.ndarray) -> dict:
    """Covariance, standard errors, correlation and spectrum of an information matrix."""
    n_p = fim.shape[0]

    covariance = sla.pinvh(fim) if n_p else np.zeros((0, 0))
    std_errors = np.sqrt(np.clip(np.diag(covariance), 0.0, None))

    outer = np.outer(std_errors, std_errors)
    with np.errstate(divide="ignore", invalid="ignore"):
        correlation = np.where(outer > 0.0, covariance / np.where(outer > 0.0, outer, 1.0), 0.0)
    np.fill_diagonal(correlation, 1.0)

    eigenvalues, eigenvectors = sla.eigh(fim)
    order = np.argsort(eigenvalues)[::-1]
    eigenvalues = eigenvalues[order]
    eigenvectors = eigenvectors[:, order]

    positive = eigenvalues[eigenvalues > 0.0]
    if n_p and positive.size == n_p:
        condition_number = float(positive[0] / positive[-1])
    else:
        condition_number = np.inf

    return dict(
        covariance=covariance,
        std_errors=std_errors,
        correlation=correlation,
        eigenvalues=eigenvalues,
        eigenvectors=eigenvectors,
        condition_number=condition_number,
    )


def _condition_label(cn: float) -> str:
    if cn < 1e3:
        return "well conditioned"
    if cn < 1e6:
        return "moderately conditioned"
    return "ill conditioned, parameters are not uniquely identifiable"


# SENSITIVITY RESULT ====================================================================

class SensitivityResult:
    """Local identifiability of an identified parameter vector.

    Parameters
    ----------
    sensitivity : np.ndarray
        Sensitivity matrix ``∂d/∂p``, shape ``(n_points, n_param)``.
    weights : np.ndarray
        Normalized weight per deviation entry, shape ``(n_points,)``.
    param_names : sequence of str
        Parameter keys, in column order.
    param_values : np.ndarray
        Parameter vector at which the sensitivities were taken.
    usable : np.ndarray, optional
        Column usability flags; degenerate parameters are reported as such.

    Attributes
    ----------
    jacobian : np.ndarray
        Weighted sensitivities ``sqrt(W) * S``.
    fim : np.ndarray
        Information matrix ``Jᵀ J``, identical to the Gauss-Newton Hessian
        used by the refiner.
    covariance, std_errors, correlation : np.ndarray
        Linearized parameter statistics (pseudo-inverse of ``fim``).
    eigenvalues, eigenvectors : np.ndarray
        Spectrum of ``fim``, descending.
    condition_number : float
        Largest over smallest positive eigenvalue, ``inf`` when the matrix is
        rank deficient.
    relative_sensitivity : np.ndarray
        ``|p_k| * ||J_k||``, the cost response to a relative change of each
        parameter.

    Notes
    -----
    The analysis linearizes the model at ``param_values``; it says nothing
    about other minima found by the population search.
    """

    def __init__(
        self,
        sensitivity: np.ndarray,
        weights: np.ndarray,
        param_names: Sequence[str],
        param_values: np.ndarray,
        usable: np.ndarray | None = None,
    ):
        S = np.asarray(sensitivity, dtype=float)
        w = np.asarray(weights, dtype=float)
        if S.ndim != 2 or S.shape[0] != w.size:
            raise ValueError(
                f"sensitivity {S.shape} does not match {w.size} weights"
            )

        self.sensitivity = S
        self.weights = w
        self.param_names = list(param_names)
        self.param_values = np.asarray(param_values, dtype=float)
        self.usable = (
            np.ones(S.shape[1], dtype=bool) if usable is None
            else np.asarray(usable, dtype=bool)
        )

        self.jacobian = np.sqrt(w)[:, None] * S
        self.fim = self.jacobian.T @ self.jacobian

        stats = _information_stats(self.fim)
        self.covariance = stats["covariance"]
        self.std_errors = stats["std_errors"]
        self.correlation = stats["correlation"]
        self.eigenvalues = stats["eigenvalues"]
        self.eigenvectors = stats["eigenvectors"]
        self.condition_number = stats["condition_number"]

        self.relative_sensitivity = np.abs(self.param_values) * np.linalg.norm(self.jacobian, axis=0)


    def correlated_pairs(self, limit: float = CORRELATION_LIMIT) -> list[tuple[str, str, float]]:
        """Parameter pairs whose correlation exceeds *limit* in magnitude."""
        n_p = len(self.param_names)
        return [
            (self.param_names[i], self.param_names[j], float(self.correlation[i, j]))
            for i in range(n_p)
            for j in range(i + 1, n_p)
            if abs(self.correlation[i, j]) > limit
        ]


    # DISPLAY ---------------------------------------------------------------------------

    def display(self) -> None:
        """Print the parameter table, conditioning and correlated pairs."""
        W = 76
        line = "=" * W
        dash = "-" * W

        print(line)
        print("  Identifiability at the identified parameters")
        print(line)
        print(f"  {'Parameter':<18} {'Value':>12} {'Std Error':>12} "
              f"{'Rel Error':>10} {'Rel Sens':>11}  {'Used':>4}")
        print(dash)

        for k, name in enumerate(self.param_names):
            val = self.param_values[k]
            se = self.std_errors[k]
            rel = f"{se / abs(val) * 100:.2f}%" if abs(val) > 1e-15 else "N/A"
            used = "yes" if self.usable[k] else "no"
            print(f"  {name:<18} {val:>12.4g} {se:>12.4g} {rel:>10} "
                  f"{self.relative_sensitivity[k]:>11.3g}  {used:>4}")

        print(dash)
        cn = self.condition_number
        print(f"  Condition number : {cn:.3g}  ({_condition_label(cn)})")

        pairs = self.correlated_pairs()
        if pairs:
            print(f"  Correlated pairs (|r| > {CORRELATION_LIMIT}):")
            for a, b, r in pairs:
                print(f"    {a} / {b} : r = {r:+.3f}")
        else:
            print(f"  No correlated pairs (|r| <= {CORRELATION_LIMIT})")
        print(line)


    # PLOT ------------------------------------------------------------------------------

    def plot(self, *, figsize: tuple = (11, 4.5)):
        """Correlation heatmap and relative sensitivity bars.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.pyplot as plt
        import matplotlib.colors as mcolors

        n_p = len(self.param_names)
        fig, axes = plt.subplots(1, 2, figsize=figsize)

        ax = axes[0]
        norm = mcolors.TwoSlopeNorm(vmin=-1.0, vcenter=0.0, vmax=1.0)
        im = ax.imshow(self.correlation, cmap="RdBu_r", norm=norm, aspect="auto")
        fig.colorbar(im, ax=ax, label="Correlation")
        ax.set_xticks(range(n_p))
        ax.set_yticks(range(n_p))
        ax.set_xticklabels(self.param_names, rotation=45, ha="right", fontsize=9)
        ax.set_yticklabels(self.param_names, fontsize=9)
        ax.set_title("Parameter correlation")

        ax2 = axes[1]
        colors = ["steelblue" if u else "salmon" for u in self.usable]
        ax2.bar(range(n_p), self.relative_sensitivity, color=colors)
        positive = self.relative_sensitivity[self.relative_sensitivity > 0.0]
        if positive.size > 1 and positive.max() / positive.min() > 100.0:
            ax2.set_yscale("log")
        ax2.set_xticks(range(n_p))
        ax2.set_xticklabels(self.param_names, rotation=45, ha="right", fontsize=9)
        ax2.set_ylabel("|p| ||J||")
        ax2.set_title("Relative sensitivity")
        ax2.grid(True, axis="y", alpha=0.3)

        fig.suptitle("Identifiability", fontweight="bold")
        fig.tight_layout()
        return fig, axes


    def __repr__(self) -> str:
        return (
            f"SensitivityResult(n_param={len(self.param_names)}, "
            f"condition_number={self.condition_number:.3g})"
        )
