#########################################################################################
##
##            paramid example: identification driven by a YAML file
##
##  Model:   y(x) = a * x**2 + b * x, read against two experimental files
##           written next to the configuration.
##  Setup:   parameters, files, weights and run settings all come from
##           'ident.yaml'; only the model is given in Python.
##  Output:  generation artifacts gen{g}.dat, a JSON summary and a log file
##           in the output directory.
##
#########################################################################################

# IMPORTS ===============================================================================

import tempfile
from pathlib import Path

import numpy as np

from paramid.ident import load_config
from paramid.utils.logger import LoggerManager


# CONFIGURATION =========================================================================

CONFIG = """\
control:
  n_generations: 3
  doe_mode: grid_inclusive
  spop: 4
  n_gboys: 2
  max_pop: 5
  phi_eps: 1.0e-14
  seed: 1
parameters:
  - {number: 0, key: "@a", min: -2.0, max: 2.0}
  - {number: 1, key: "@b", min: 0.0, max: 5.0}
constants:
  - {number: 0, key: "@offset", values: [0.0, 1.0]}
files:
  - name: exp0.txt
    info_columns: [2]
  - name: exp1.txt
    info_columns: [2]
weights:
  column: {mode: auto}
"""

TRUE_A, TRUE_B = 0.7, 2.5


# MODEL =================================================================================

def quadratic(p, constants, experiment):
    x = experiment.column(1)
    return np.column_stack([x, p[0] * x ** 2 + p[1] * x + constants[0]])


def write_case(folder: Path) -> Path:
    """Experimental files and the configuration, in *folder*."""
    x = np.linspace(0.5, 3.0, 16)
    for i, offset in enumerate([0.0, 1.0]):
        y = TRUE_A * x ** 2 + TRUE_B * x + offset
        np.savetxt(folder / f"exp{i}.txt", np.column_stack([x, y]))

    path = folder / "ident.yaml"
    path.write_text(CONFIG)
    return path


# Run Example ===========================================================================

if __name__ == '__main__':

    with tempfile.TemporaryDirectory() as tmp:
        folder = Path(tmp)
        out = folder / "run"

        LoggerManager().set_log_file(out / "identification.log")

        config = load_config(write_case(folder))
        ident = config.build(quadratic, output_dir=out)
        result = ident.run()
        result.display()

        summary = result.save_json(out / "summary.json", control=config.control,
                                   extra={"config": str(config.source)})
        LoggerManager().close_log_file()

        print(f"artifacts: {sorted(p.name for p in out.iterdir())}")
        print(summary.read_text()[:400])
