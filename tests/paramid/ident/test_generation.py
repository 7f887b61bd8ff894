########################################################################################
##
##                                  TESTS FOR
##                      'ident/generation.py' and 'utils/sequence.py'
##
########################################################################################

# IMPORTS ==============================================================================

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from paramid.ident.generation import Generation, Individual
from paramid.utils.sequence import IdSequence


# ═══════════════════════════════════════════════════════════════════════════
# IdSequence tests
# ═══════════════════════════════════════════════════════════════════════════

class TestIdSequence:

    def test_next_is_monotonic(self):
        ids = IdSequence(start=5)
        assert [ids.next() for _ in range(3)] == [5, 6, 7]
        assert ids.value == 8

    def test_reserve(self):
        ids = IdSequence()
        assert ids.reserve(3) == [0, 1, 2]
        assert ids.reserve(0) == []
        assert ids.next() == 3

    def test_reserve_negative(self):
        with pytest.raises(ValueError):
            IdSequence().reserve(-1)

    def test_unique_across_threads(self):
        ids = IdSequence()

        def grab(_):
            return [ids.next() for _ in range(200)] + ids.reserve(50)

        with ThreadPoolExecutor(max_workers=8) as pool:
            chunks = list(pool.map(grab, range(16)))

        flat = [i for chunk in chunks for i in chunk]
        assert len(flat) == len(set(flat)) == 16 * 250
        assert ids.value == 16 * 250


# ═══════════════════════════════════════════════════════════════════════════
# Individual tests
# ═══════════════════════════════════════════════════════════════════════════

class TestIndividual:

    def test_defaults(self):
        ind = Individual(3, id=7)
        np.testing.assert_array_equal(ind.p, np.zeros(3))
        assert ind.cost == np.inf
        assert not ind.evaluated
        assert ind.rank == 0

    def test_set_p_resets_cost(self):
        ind = Individual(2, id=0)
        ind.cost = 1.0
        ind.set_p([1.0, 2.0])
        np.testing.assert_array_equal(ind.p, [1.0, 2.0])
        assert ind.cost == np.inf

    def test_set_p_length_is_fixed(self):
        with pytest.raises(ValueError, match="Expected 2"):
            Individual(2, id=0).set_p([1.0])

    def test_copy_is_independent(self):
        ind = Individual(2, id=1)
        ind.set_p([1.0, 2.0])
        ind.cost = 0.5
        dup = ind.copy()
        dup.p[0] = 9.0
        assert ind.p[0] == 1.0
        assert dup.cost == 0.5 and dup.id == 1


# ═══════════════════════════════════════════════════════════════════════════
# Generation tests
# ═══════════════════════════════════════════════════════════════════════════

def _generation(costs, ids=None):
    ids = ids or IdSequence()
    gen = Generation(len(costs), 2, ids)
    for k, (ind, c) in enumerate(zip(gen, costs)):
        ind.set_p([k, -k])
        ind.cost = c
    return gen


class TestGeneration:

    def test_construct_assigns_fresh_ids(self):
        ids = IdSequence()
        gen = Generation(4, 2, ids)
        assert gen.ids == [0, 1, 2, 3]
        assert gen.dimindividuals() == 4
        assert len(gen) == 4

    def test_ids_unique_across_generations(self):
        ids = IdSequence()
        a = Generation(3, 2, ids)
        b = Generation(3, 2, ids)
        assert not set(a.ids) & set(b.ids)

    def test_invalid_sizes(self):
        with pytest.raises(ValueError):
            Generation(-1, 2, IdSequence())
        with pytest.raises(ValueError):
            Generation(2, 0, IdSequence())

    def test_classify_sorts_ascending(self):
        gen = _generation([3.0, 1.0, np.inf, 2.0])
        gen.classify()
        np.testing.assert_array_equal(gen.costs, [1.0, 2.0, 3.0, np.inf])
        assert [ind.rank for ind in gen] == [1, 2, 3, 4]

    def test_classify_is_idempotent(self):
        gen = _generation([2.0, 1.0, 2.0, 0.5])
        gen.classify()
        first = gen.ids
        gen.classify()
        assert gen.ids == first

    def test_classify_is_stable_for_ties(self):
        gen = _generation([1.0, 1.0, 1.0])
        before = gen.ids
        gen.classify()
        assert gen.ids == before

    def test_best_does_not_reorder(self):
        gen = _generation([3.0, 1.0, 2.0])
        before = gen.ids
        assert gen.best.cost == 1.0
        assert gen.ids == before

    def test_best_of_empty_generation(self):
        with pytest.raises(ValueError):
            Generation(0, 2, IdSequence()).best

    def test_samples_roundtrip(self):
        gen = Generation(3, 2, IdSequence())
        samples = np.arange(6.0).reshape(3, 2)
        gen.samples = samples
        np.testing.assert_array_equal(gen.samples, samples)

    def test_samples_shape_checked(self):
        gen = Generation(3, 2, IdSequence())
        with pytest.raises(ValueError, match="shape"):
            gen.samples = np.zeros((2, 2))

    def test_newid_single_and_all(self):
        ids = IdSequence()
        gen = Generation(3, 2, ids)
        gen.newid(ids, 1)
        assert gen.ids == [0, 3, 2]
        gen.newid(ids)
        assert gen.ids == [4, 5, 6]

    def test_take_and_adopt_transfer_ownership(self):
        ids = IdSequence()
        old = _generation([1.0, 2.0, 3.0], ids)
        new = Generation(0, 2, ids)
        moved = old.take(2)
        new.adopt(moved)
        assert len(old) == 1 and len(new) == 2
        assert not set(old.ids) & set(new.ids)
        assert all(ind.rank == 0 for ind in new)

    def test_take_more_than_available(self):
        gen = _generation([1.0, 2.0])
        assert len(gen.take(10)) == 2
        assert len(gen) == 0

    def test_adopt_rejects_other_dimension(self):
        gen = Generation(0, 2, IdSequence())
        with pytest.raises(ValueError, match="parameters"):
            gen.adopt([Individual(3, id=0)])

    def test_destruct(self):
        gen = _generation([1.0, 2.0])
        gen.destruct()
        assert len(gen) == 0
        assert gen.samples.shape == (0, 2)
