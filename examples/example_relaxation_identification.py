#########################################################################################
##
##        paramid example: stress relaxation of a standard linear solid
##
##  Model:   step strain eps0 held constant, one Maxwell arm in parallel with
##           an elastic spring
##
##      s1'(t) = -s1 / tau,     s1(0) = E1 * eps0
##      s(t)   = E_inf * eps0 + s1(t)
##
##  Data:    two synthetic relaxation tests at different strain levels; the
##           strain level is a per-file constant.
##  Fit:     E_inf, E1, tau  (shared by both tests)
##
#########################################################################################

# IMPORTS ===============================================================================

import logging

import numpy as np
import matplotlib.pyplot as plt
from scipy.integrate import solve_ivp

from paramid.ident import (
    Constant,
    ColumnWeightMode,
    ExperimentalDataset,
    IdentControl,
    Identification,
    Parameter,
    ParameterRegistry,
    WeightSpec,
)
from paramid.utils.logger import LoggerManager


# TRUE PARAMETER VALUES =================================================================

TRUE_E_INF = 2.0e3   # long-term modulus [MPa]
TRUE_E1    = 5.0e3   # Maxwell arm modulus [MPa]
TRUE_TAU   = 1.5     # relaxation time [s]

STRAINS = [0.01, 0.02]


# MODEL =================================================================================

def relaxation(p, constants, experiment):
    """Simulated (time, stress) table for one relaxation test."""
    e_inf, e1, tau = p
    eps0 = constants[0]
    t = experiment.column(1)

    sol = solve_ivp(
        lambda _, s: -s / tau, (t[0], t[-1]), [e1 * eps0],
        t_eval=t, rtol=1e-10, atol=1e-12,
    )
    return np.column_stack([t, e_inf * eps0 + sol.y[0]])


# SYNTHETIC DATA ========================================================================

rng = np.random.default_rng(3)
t_meas = np.linspace(0.0, 8.0, 41)

datasets = []
for i, eps0 in enumerate(STRAINS):
    stress = eps0 * (TRUE_E_INF + TRUE_E1 * np.exp(-t_meas / TRUE_TAU))
    stress *= rng.normal(1.0, 0.01, t_meas.size)
    datasets.append(ExperimentalDataset(f"relax{i}.txt", np.column_stack([t_meas, stress]), [2]))


# PROBLEM ===============================================================================

registry = ParameterRegistry(
    [
        Parameter(0, "E_inf", 100.0, 1.0e4),
        Parameter(1, "E1",    100.0, 2.0e4),
        Parameter(2, "tau",   0.05,  10.0),
    ],
    [Constant(0, "eps0", STRAINS)],
    n_files=len(datasets),
)

# both tests count the same regardless of their sampling
weights = WeightSpec(column_mode=ColumnWeightMode.AUTO)

control = IdentControl(
    n_generations=4,
    spop=4,
    n_gboys=2,
    max_pop=6,
    perturbation=1e-4,
    n_workers=4,
    seed=0,
)


# Run Example ===========================================================================

if __name__ == '__main__':

    LoggerManager().set_level(logging.INFO)

    ident = Identification(relaxation, registry, datasets, weights, control)
    result = ident.run()
    result.display()

    # Linearized identifiability at the optimum
    sens = ident.sensitivity()
    sens.display()
    sens.plot()

    # Measured vs identified stress, one figure per test
    for ds, block in zip(datasets, ident.evaluator.simulate(result.x)):
        fig, ax = ds.plot(block, x_column=1)
        ax.set_xlabel("Time [s]")
        ax.set_ylabel("Stress [MPa]")

    plt.show()
