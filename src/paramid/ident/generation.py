#########################################################################################
##
##                         CANDIDATES AND THEIR GENERATIONS
##                              (ident/generation.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Iterable, Iterator, Sequence

import numpy as np

from ..utils.sequence import IdSequence


# INDIVIDUAL ============================================================================

class Individual:
    """One candidate parameter vector with its cost and identity.

    Parameters
    ----------
    n_param : int
        Length of the parameter vector.
    id : int
        Unique identifier, handed out by an :class:`IdSequence`.

    Attributes
    ----------
    p : np.ndarray
        Parameter vector, length ``n_param``.
    cost : float
        Evaluated cost, ``inf`` until the candidate is evaluated.
    rank : int
        1-based rank inside its generation after ``classify()``; 0 if unranked.
    """

    __slots__ = ("p", "cost", "id", "rank")

    def __init__(self, n_param: int, id: int):
        self.p = np.zeros(int(n_param), dtype=float)
        self.cost = np.inf
        self.id = int(id)
        self.rank = 0


    @property
    def n_param(self) -> int:
        return self.p.size


    @property
    def evaluated(self) -> bool:
        return bool(np.isfinite(self.cost))


    def set_p(self, values: Sequence[float]) -> None:
        """Overwrite the parameter vector; the length may not change."""
        arr = np.asarray(values, dtype=float).reshape(-1)
        if arr.size != self.p.size:
            raise ValueError(f"Expected {self.p.size} parameter values, got {arr.size}")
        self.p[:] = arr
        self.cost = np.inf


    def copy(self) -> "Individual":
        new = Individual(self.p.size, self.id)
        new.p[:] = self.p
        new.cost = self.cost
        new.rank = self.rank
        return new


    def __repr__(self) -> str:
        return f"Individual(id={self.id}, cost={self.cost:.4g}, p={self.p})"


# GENERATION ============================================================================

class Generation:
    """Owned, ordered population of :class:`Individual` objects.

    Parameters
    ----------
    n_individuals : int
        Population size.
    n_param : int
        Parameter vector length of every individual.
    ids : IdSequence
        Run-wide identifier source; every constructed individual receives the
        next identifier, so identifiers never repeat across generations.

    Notes
    -----
    Individuals are never shared: :meth:`take` detaches them from this
    generation before another one :meth:`adopt` them.

    Example
    -------
    .. code-block:: python

        ids = IdSequence()
        gen = Generation(9, 2, ids)
        for ind, row in zip(gen, samples):
            ind.set_p(row)
        ...
        gen.classify()
        gen.best.p
    """

    def __init__(self, n_individuals: int, n_param: int, ids: IdSequence):
        if n_individuals < 0:
            raise ValueError(f"n_individuals must be >= 0, got {n_individuals}")
        if n_param < 1:
            raise ValueError(f"n_param must be >= 1, got {n_param}")

        self.n_param = int(n_param)
        self.nindividuals = 0
        self.pop: list[Individual] = []
        self.construct(int(n_individuals), ids)


    # LIFECYCLE -------------------------------------------------------------------------

    def construct(self, n_individuals: int, ids: IdSequence) -> None:
        """Allocate ``n_individuals`` fresh individuals with new identifiers."""
        self.pop = [Individual(self.n_param, i) for i in ids.reserve(n_individuals)]
        self.nindividuals = n_individuals


    def classify(self) -> None:
        """Rank the individuals by ascending cost.

        The sort is stable, so equal costs keep their current order, and
        calling it twice without changes leaves the population untouched.
        """
        self.pop.sort(key=lambda ind: ind.cost)
        for rank, ind in enumerate(self.pop, start=1):
            ind.rank = rank


    def newid(self, ids: IdSequence, index: int | None = None) -> None:
        """Give fresh identifiers to one individual, or to all when *index* is None."""
        targets = self.pop if index is None else [self.pop[index]]
        for ind in targets:
            ind.id = ids.next()


    def destruct(self) -> None:
        """Release the population."""
        self.pop = []
        self.nindividuals = 0


    def take(self, n: int) -> list[Individual]:
        """Detach and return the first ``n`` individuals."""
        n = max(0, min(int(n), self.nindividuals))
        taken, self.pop = self.pop[:n], self.pop[n:]
        self.nindividuals = len(self.pop)
        return taken


    def adopt(self, individuals: Iterable[Individual]) -> None:
        """Append individuals detached from another generation."""
        for ind in individuals:
            if ind.n_param != self.n_param:
                raise ValueError(
                    f"Individual {ind.id} has {ind.n_param} parameters, expected {self.n_param}"
                )
            ind.rank = 0
            self.pop.append(ind)
        self.nindividuals = len(self.pop)


    # PROPERTIES ------------------------------------------------------------------------

    def dimindividuals(self) -> int:
        return self.nindividuals


    @property
    def samples(self) -> np.ndarray:
        """Parameter vectors as a ``(n_individuals, n_param)`` matrix."""
        if not self.pop:
            return np.zeros((0, self.n_param))
        return np.vstack([ind.p for ind in self.pop])


    @samples.setter
    def samples(self, values: np.ndarray) -> None:
        arr = np.asarray(values, dtype=float)
        if arr.shape != (self.nindividuals, self.n_param):
            raise ValueError(
                f"Expected samples of shape {(self.nindividuals, self.n_param)}, got {arr.shape}"
            )
        for ind, row in zip(self.pop, arr):
            ind.set_p(row)


    @property
    def costs(self) -> np.ndarray:
        return np.array([ind.cost for ind in self.pop], dtype=float)


    @property
    def ids(self) -> list[int]:
        return [ind.id for ind in self.pop]


    @property
    def best(self) -> Individual:
        """Lowest-cost individual (does not reorder the population)."""
        if not self.pop:
            raise ValueError("empty generation has no best individual")
        return min(self.pop, key=lambda ind: ind.cost)


    def __len__(self) -> int:
        return self.nindividuals


    def __iter__(self) -> Iterator[Individual]:
        return iter(self.pop)


    def __getitem__(self, index: int) -> Individual:
        return self.pop[index]


    def __repr__(self) -> str:
        finite = self.costs[np.isfinite(self.costs)]
        best = f"{finite.min():.4g}" if finite.size else "n/a"
        return f"Generation(n_individuals={self.nindividuals}, n_param={self.n_param}, best={best})"
