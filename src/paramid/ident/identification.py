#########################################################################################
##
##                            IDENTIFICATION DRIVER
##                           (ident/identification.py)
##
##          Population search over successive generations, with local
##          Levenberg-Marquardt refinement of the best candidates.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, Sequence

import numpy as np

from .config import IdentControl
from .data import ExperimentalDataset, NumericalDataset
from .doe import initialize_generation, write_generation
from .evaluator import Evaluator, ModelEvaluator, check_sensitivity
from .exceptions import IdentificationError
from .generation import Generation, Individual
from .optimize import LevenbergMarquardt, RefinementResult
from .parameters import ParameterRegistry
from .sensitivity import SensitivityResult
from .weights import WeightSpec
from ..utils.logger import LoggerManager
from ..utils.sequence import IdSequence


_log = LoggerManager().get_logger("ident.identification")


# BREEDERS ==============================================================================

class Breeder(Protocol):
    """Source of the offspring vectors of the next generation.

    Called with the survivors (best first), the number of vectors wanted,
    the bounds, the run's random generator and the run settings; returns an
    ``(n_offspring, n_param)`` array. Values outside the bounds are
    projected.
    """

    def __call__(
        self,
        survivors: Generation,
        n_offspring: int,
        lower: np.ndarray,
        upper: np.ndarray,
        rng: np.random.Generator,
        control: IdentControl,
    ) -> np.ndarray:
        ...


class RandomImmigrants:
    """Offspring drawn uniformly inside the bounds, ignoring the survivors."""

    def __call__(self, survivors, n_offspring, lower, upper, rng, control):
        return rng.uniform(lower, upper, size=(n_offspring, np.size(lower)))


    def __repr__(self) -> str:
        return "RandomImmigrants()"


# RESULT ================================================================================

def _jsonify(obj):
    """Convert numpy containers and scalars into JSON-serializable objects."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, float) and not np.isfinite(obj):
        return None
    if isinstance(obj, dict):
        return {str(k): _jsonify(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonify(v) for v in obj]
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.name.lower()
    return obj


@dataclass
class IdentificationResult:
    """Outcome of :meth:`Identification.run`.

    Attributes
    ----------
    x : np.ndarray
        Best parameter vector found.
    cost : float
        Its cost.
    id : int
        Identifier of the best candidate.
    n_generations : int
        Generations processed.
    nfev : int
        Full model evaluations.
    history : list of dict
        Per generation: best and mean cost, best identifier, population size.
    refinements : list of dict
        Per refined candidate: generation, identifiers, status, costs.
    keys : list of str
        Parameter keys, in vector order.
    """

    x: np.ndarray
    cost: float
    id: int
    n_generations: int
    nfev: int
    history: list[dict] = field(default_factory=list)
    refinements: list[dict] = field(default_factory=list)
    keys: list[str] = field(default_factory=list)
    success: bool = True
    message: str = ""


    @property
    def best_costs(self) -> np.ndarray:
        return np.array([h["best_cost"] for h in self.history], dtype=float)


    def display(self) -> None:
        """Print the best parameters and the per-generation progress."""
        W = 72
        line = "=" * W
        dash = "-" * W

        print(line)
        status = "SUCCESS" if self.success else "FAILED"
        print(f"  Identification result: {status}  ({self.message})")
        print(line)
        print(f"  best candidate id {self.id}, cost {self.cost:.6e}, "
              f"{self.nfev} model evaluations")
        print(dash)
        for key, val in zip(self.keys, self.x):
            print(f"  {key:<24} {val:>16.8g}")
        print(dash)
        print(f"  {'Generation':>10} {'Best cost':>14} {'Mean cost':>14} {'Size':>6}")
        for h in self.history:
            print(f"  {h['generation']:>10d} {h['best_cost']:>14.6e} "
                  f"{h['mean_cost']:>14.6e} {h['size']:>6d}")
        print(line)


    def save_json(self, path, *, control: IdentControl | None = None,
                  extra: dict | None = None) -> Path:
        """Write a readable run summary to JSON."""
        payload: dict[str, Any] = {
            "created_at": datetime.now().isoformat(timespec="seconds"),
            "best": {
                "id": self.id,
                "cost": self.cost,
                "parameters": dict(zip(self.keys, self.x.tolist())),
            },
            "n_generations": self.n_generations,
            "nfev": self.nfev,
            "success": self.success,
            "message": self.message,
            "history": self.history,
            "refinements": self.refinements,
        }
        if control is not None:
            payload["control"] = asdict(control)
        if extra:
            payload["extra"] = extra

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(_jsonify(payload), handle, indent=2)
        return path


    def __repr__(self) -> str:
        return (
            f"IdentificationResult(cost={self.cost:.4g}, id={self.id}, "
            f"n_generations={self.n_generations}, nfev={self.nfev}, x={self.x})"
        )


# IDENTIFICATION ========================================================================

class Identification:
    """Global parameter identification run.

    Generation 0 comes from the design of experiments. Every generation is
    ranked, its best ``n_gboys`` candidates are refined locally, and the
    best ``max_pop`` candidates survive into the next generation together
    with ``max_pop`` offspring from the breeder.

    Parameters
    ----------
    model : ModelEvaluator
        External model, ``model(p, constants, experiment) -> ndarray``.
    registry : ParameterRegistry
        Parameters and constants.
    datasets : sequence of ExperimentalDataset
        Experimental reference files.
    weights : WeightSpec, optional
        Weighting scheme; unit weights when omitted.
    control : IdentControl, optional
        Run settings; defaults when omitted.
    numerical : sequence of NumericalDataset, optional
        Model output layouts; identical to the experimental ones by default.
    breeder : Breeder, optional
        Offspring source; :class:`RandomImmigrants` by default.
    output_dir : str or Path, optional
        Directory receiving a ``gen{g}.dat`` artifact per generation.
    generation_path : str or Path, optional
        Artifact read when sampling from a file; ``control.generation_file``
        by default.

    Example
    -------
    .. code-block:: python

        ident = Identification(model, registry, [dataset], control=IdentControl(
            n_generations=3, spop=5, n_gboys=2, max_pop=4,
        ))
        result = ident.run()
        result.display()
        ident.sensitivity().display()
    """

    def __init__(
        self,
        model: ModelEvaluator,
        registry: ParameterRegistry,
        datasets: Sequence[ExperimentalDataset],
        weights: WeightSpec | None = None,
        control: IdentControl | None = None,
        *,
        numerical: Sequence[NumericalDataset] | None = None,
        breeder: Breeder | None = None,
        output_dir=None,
        generation_path=None,
    ):
        self.registry = registry
        self.control = control if control is not None else IdentControl()
        self.evaluator = Evaluator(model, registry, datasets, weights, numerical)
        self.breeder = breeder if breeder is not None else RandomImmigrants()
        if not callable(self.breeder):
            raise TypeError(f"breeder must be callable, got {type(self.breeder).__name__}")

        self.output_dir = Path(output_dir) if output_dir is not None else None
        if generation_path is None and self.control.generation_file is not None:
            generation_path = self.control.generation_file
        self.generation_path = Path(generation_path) if generation_path is not None else None

        self.ids = IdSequence()
        self.rng = np.random.default_rng(self.control.seed)
        self.result: IdentificationResult | None = None
        self._executor: ThreadPoolExecutor | None = None


    # EVALUATION ------------------------------------------------------------------------

    def _evaluate(self, individuals: Sequence[Individual]) -> None:
        if self._executor is None:
            for ind in individuals:
                self.evaluator.evaluate(ind)
        else:
            list(self._executor.map(self.evaluator.evaluate, individuals))


    def _refiner(self, executor) -> LevenbergMarquardt:
        c = self.control
        return LevenbergMarquardt(
            self.evaluator,
            lambda_lm=c.lambda_lm,
            phi_eps=c.phi_eps,
            perturbation=c.perturbation,
            c=c.barrier_c,
            p0=c.barrier_p0,
            max_iterations=c.max_iterations,
            lambda_max=c.lambda_max,
            lambda_factor=c.lambda_factor,
            executor=executor,
        )


    def _refine_best(self, gen: Generation, g: int) -> list[dict]:
        """Refine the ``n_gboys`` leading candidates of a ranked generation."""
        n = min(self.control.n_gboys, len(gen))
        if n == 0:
            return []
        leaders = gen.pop[:n]

        # several refinements share the pool, so their sensitivities run serially
        if self._executor is not None and n > 1:
            lm = self._refiner(None)
            results = list(self._executor.map(lambda ind: lm.refine(ind.p, ind.cost), leaders))
        else:
            lm = self._refiner(self._executor)
            results = [lm.refine(ind.p, ind.cost) for ind in leaders]

        records = []
        for index, (ind, res) in enumerate(zip(leaders, results)):
            old_id, old_cost = ind.id, ind.cost
            if res.cost < ind.cost:
                ind.set_p(res.x)
                ind.cost = res.cost
                gen.newid(self.ids, index)
            records.append(self._refinement_record(g, old_id, ind.id, old_cost, res))
            _log.info(
                "gen %d: refined candidate %d -> %d, cost %.6e -> %.6e (%s, %d iterations)",
                g, old_id, ind.id, old_cost, ind.cost, res.status.value, res.iterations,
            )
        return records


    @staticmethod
    def _refinement_record(g: int, old_id: int, new_id: int, old_cost: float,
                           res: RefinementResult) -> dict:
        return {
            "generation": g,
            "id": old_id,
            "new_id": new_id,
            "status": res.status.value,
            "initial_cost": old_cost,
            "cost": res.cost,
            "iterations": res.iterations,
            "nfev": res.nfev,
        }


    # GENERATIONS -----------------------------------------------------------------------

    def _first_generation(self) -> Generation:
        c = self.control
        gen = initialize_generation(
            c.doe_mode, self.registry, self.ids,
            spop=c.spop, n_samples=c.n_samples,
            path=self.generation_path, rng=self.rng,
        )
        c.check_population(len(gen))
        self._evaluate(gen.pop)
        return gen


    def _next_generation(self, gen: Generation) -> Generation:
        """Survivors of *gen* plus freshly bred and evaluated offspring."""
        c = self.control
        lower, upper = self.registry.lower, self.registry.upper

        new = Generation(0, self.registry.n_param, self.ids)
        new.adopt(gen.take(c.max_pop))
        gen.destruct()

        offspring = np.asarray(
            self.breeder(new, c.max_pop, lower, upper, self.rng, c), dtype=float
        )
        if offspring.shape != (c.max_pop, self.registry.n_param):
            raise IdentificationError(
                f"breeder returned shape {offspring.shape}, "
                f"expected {(c.max_pop, self.registry.n_param)}"
            )

        children = Generation(c.max_pop, self.registry.n_param, self.ids)
        children.samples = self.registry.clip(offspring)
        self._evaluate(children.pop)
        new.adopt(children.take(len(children)))
        children.destruct()
        return new


    def _record(self, gen: Generation, g: int) -> dict:
        costs = gen.costs
        finite = costs[np.isfinite(costs)]
        entry = {
            "generation": g,
            "best_cost": float(costs.min()) if costs.size else np.inf,
            "mean_cost": float(finite.mean()) if finite.size else np.inf,
            "best_id": gen.best.id,
            "size": len(gen),
        }
        _log.info(
            "gen %d: best cost %.6e (id %d), mean %.6e, %d candidates",
            g, entry["best_cost"], entry["best_id"], entry["mean_cost"], entry["size"],
        )
        return entry


    # RUN -------------------------------------------------------------------------------

    def run(self) -> IdentificationResult:
        """Run all generations and return the best candidate.

        Raises
        ------
        ConfigurationError
            If the first generation cannot be built or is smaller than
            ``max_pop``.
        ModelEvaluationError
            If the model output does not fit an experimental file.
        """
        c = self.control
        history: list[dict] = []
        refinements: list[dict] = []

        _log.info(
            "identification: %d parameters, %d files, %d generations, %d workers",
            self.registry.n_param, len(self.evaluator.datasets), c.n_generations, c.n_workers,
        )

        self._executor = ThreadPoolExecutor(max_workers=c.n_workers) if c.n_workers > 1 else None
        try:
            gen = self._first_generation()

            for g in range(c.n_generations):
                gen.classify()
                refinements.extend(self._refine_best(gen, g))
                gen.classify()
                history.append(self._record(gen, g))

                if self.output_dir is not None:
                    write_generation(
                        self.output_dir / f"gen{g}.dat", gen, self.registry.keys, with_cost=True
                    )

                if g < c.n_generations - 1:
                    gen = self._next_generation(gen)

            best = gen.best
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
            self._executor = None

        success = bool(np.isfinite(best.cost))
        self.result = IdentificationResult(
            x=best.p.copy(),
            cost=float(best.cost),
            id=best.id,
            n_generations=c.n_generations,
            nfev=self.evaluator.n_evaluations,
            history=history,
            refinements=refinements,
            keys=self.registry.keys,
            success=success,
            message="completed" if success else "no candidate produced a finite cost",
        )
        _log.info("identification finished: best cost %.6e (id %d)", best.cost, best.id)
        return self.result


    def sensitivity(self, x: Sequence[float] | None = None, *, h: float | None = None) -> SensitivityResult:
        """Identifiability analysis at ``x``, by default the best vector of the last run.

        Costs one model evaluation plus one per parameter.
        """
        if x is None:
            if self.result is None:
                raise ValueError("No x provided and no identification result available")
            x = self.result.x
        x = self.registry.clip(x)
        h = self.control.perturbation if h is None else h

        S = self.evaluator.sensitivity(x, h=h)
        return SensitivityResult(
            S, self.evaluator.w_eff, self.registry.keys, x, usable=check_sensitivity(S),
        )


    def __repr__(self) -> str:
        return (
            f"Identification(n_param={self.registry.n_param}, "
            f"n_files={len(self.evaluator.datasets)}, "
            f"n_generations={self.control.n_generations})"
        )
