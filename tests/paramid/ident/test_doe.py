########################################################################################
##
##                                  TESTS FOR
##                                  'ident/doe.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from paramid.ident.doe import (
    DOEMode,
    doe_random,
    doe_uniform,
    doe_uniform_limit,
    initialize_generation,
    read_generation,
    sample,
    write_generation,
)
from paramid.ident.exceptions import ArtifactError, ConfigurationError
from paramid.ident.generation import Generation
from paramid.ident.parameters import Parameter, ParameterRegistry
from paramid.utils.sequence import IdSequence


# ═══════════════════════════════════════════════════════════════════════════
# Helpers / Fixtures
# ═══════════════════════════════════════════════════════════════════════════

def _registry():
    return ParameterRegistry([Parameter(0, "@a", 0.0, 10.0), Parameter(1, "@b", -1.0, 1.0)])


# ═══════════════════════════════════════════════════════════════════════════
# Grid samplers
# ═══════════════════════════════════════════════════════════════════════════

class TestGridInterior:

    def test_single_parameter_levels(self):
        s = doe_uniform(3, [0.0], [10.0])
        np.testing.assert_allclose(s[:, 0], [2.5, 5.0, 7.5])

    def test_sample_count(self):
        s = doe_uniform(4, [0.0, 0.0, 0.0], [1.0, 1.0, 1.0])
        assert s.shape == (64, 3)

    def test_strictly_inside_bounds(self):
        s = doe_uniform(5, [0.0, -1.0], [10.0, 1.0])
        assert np.all(s > [0.0, -1.0]) and np.all(s < [10.0, 1.0])

    def test_first_parameter_varies_fastest(self):
        s = doe_uniform(2, [0.0, 0.0], [3.0, 3.0])
        np.testing.assert_allclose(s, [[1.0, 1.0], [2.0, 1.0], [1.0, 2.0], [2.0, 2.0]])

    def test_every_combination_once(self):
        s = doe_uniform(3, [0.0, 0.0], [4.0, 4.0])
        assert len({tuple(row) for row in s}) == 9

    def test_single_level_is_midpoint(self):
        np.testing.assert_allclose(doe_uniform(1, [2.0], [4.0]), [[3.0]])

    def test_invalid_spop(self):
        with pytest.raises(ValueError):
            doe_uniform(0, [0.0], [1.0])


class TestGridInclusive:

    def test_single_parameter_levels(self):
        s = doe_uniform_limit(3, [0.0], [10.0])
        np.testing.assert_allclose(s[:, 0], [0.0, 5.0, 10.0])

    def test_bounds_hit_exactly(self):
        lo, hi = np.array([0.1, -0.3]), np.array([0.7, 0.9])
        s = doe_uniform_limit(7, lo, hi)
        assert s[:, 0].min() == lo[0] and s[:, 0].max() == hi[0]
        assert s[:, 1].min() == lo[1] and s[:, 1].max() == hi[1]

    def test_sample_count(self):
        assert doe_uniform_limit(2, [0.0] * 4, [1.0] * 4).shape == (16, 4)

    def test_requires_two_levels(self):
        with pytest.raises(ValueError, match="spop >= 2"):
            doe_uniform_limit(1, [0.0], [1.0])


class TestRandom:

    def test_count_and_bounds(self):
        rng = np.random.default_rng(0)
        s = doe_random(50, [0.0, -1.0], [10.0, 1.0], rng)
        assert s.shape == (50, 2)
        assert np.all(s >= [0.0, -1.0]) and np.all(s <= [10.0, 1.0])

    def test_reproducible_with_seed(self):
        a = doe_random(5, [0.0], [1.0], np.random.default_rng(3))
        b = doe_random(5, [0.0], [1.0], np.random.default_rng(3))
        np.testing.assert_array_equal(a, b)

    def test_invalid_count(self):
        with pytest.raises(ValueError):
            doe_random(0, [0.0], [1.0])


class TestSampleDispatch:

    def test_mode_by_int(self):
        s = sample(1, [0.0], [10.0], spop=3)
        np.testing.assert_allclose(s[:, 0], [0.0, 5.0, 10.0])

    def test_missing_arguments(self):
        with pytest.raises(ValueError, match="spop"):
            sample(DOEMode.GRID_INTERIOR, [0.0], [1.0])
        with pytest.raises(ValueError, match="n_samples"):
            sample(DOEMode.RANDOM, [0.0], [1.0])
        with pytest.raises(ValueError, match="path"):
            sample(DOEMode.FROM_FILE, [0.0], [1.0])

    def test_bound_vectors_checked(self):
        with pytest.raises(ValueError):
            sample(DOEMode.GRID_INTERIOR, [0.0, 1.0], [1.0], spop=2)


# ═══════════════════════════════════════════════════════════════════════════
# Generation artifact
# ═══════════════════════════════════════════════════════════════════════════

class TestArtifact:

    def test_write_then_read_preserves_samples(self, tmp_path):
        reg = _registry()
        gen = initialize_generation(DOEMode.GRID_INTERIOR, reg, IdSequence(), spop=3)
        path = write_generation(tmp_path / "gen0.dat", gen, reg.keys)

        samples, ids = read_generation(path, 2, return_ids=True)
        np.testing.assert_allclose(samples, gen.samples, rtol=1e-11)
        assert list(ids) == gen.ids

    def test_header_names_columns(self, tmp_path):
        gen = Generation(2, 2, IdSequence())
        path = write_generation(tmp_path / "g.dat", gen, ["@a", "@b"], with_cost=True)
        assert path.read_text().splitlines()[0] == "# id @a @b cost"

    def test_cost_column_is_accepted(self, tmp_path):
        gen = Generation(2, 2, IdSequence())
        gen.samples = [[1.0, 2.0], [3.0, 4.0]]
        for ind in gen:
            ind.cost = 0.5
        path = write_generation(tmp_path / "g.dat", gen, with_cost=True)
        np.testing.assert_allclose(read_generation(path, 2), [[1.0, 2.0], [3.0, 4.0]])

    def test_extra_column_without_cost_header_raises(self, tmp_path):
        # written by a run with one more parameter, no cost column
        path = tmp_path / "g.dat"
        np.savetxt(path, [[0, 1.0, 2.0, 3.0], [1, 4.0, 5.0, 6.0]], header="id p0 p1 p2")
        with pytest.raises(ArtifactError, match="4 columns"):
            read_generation(path, 2)

    def test_extra_column_without_header_raises(self, tmp_path):
        path = tmp_path / "g.dat"
        np.savetxt(path, [[0, 1.0, 2.0, 3.0]])
        with pytest.raises(ArtifactError):
            read_generation(path, 2)

    def test_column_mismatch_raises(self, tmp_path):
        path = tmp_path / "bad.dat"
        np.savetxt(path, np.ones((3, 6)))
        with pytest.raises(ArtifactError, match="6 columns"):
            read_generation(path, 2)

    def test_artifact_error_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            read_generation(tmp_path / "missing.dat", 2)

    def test_empty_artifact(self, tmp_path):
        path = tmp_path / "empty.dat"
        path.write_text("# id @a @b\n")
        with pytest.raises(ArtifactError):
            read_generation(path, 2)

    def test_key_count_checked(self, tmp_path):
        gen = Generation(1, 2, IdSequence())
        with pytest.raises(ValueError, match="keys"):
            write_generation(tmp_path / "g.dat", gen, ["@a"])


class TestInitializeGeneration:

    def test_grid_generation(self):
        ids = IdSequence()
        gen = initialize_generation(DOEMode.GRID_INCLUSIVE, _registry(), ids, spop=3)
        assert len(gen) == 9
        assert gen.ids == list(range(9))
        assert ids.value == 9

    def test_random_generation(self):
        gen = initialize_generation(
            DOEMode.RANDOM, _registry(), IdSequence(), n_samples=7, rng=np.random.default_rng(1)
        )
        assert len(gen) == 7

    def test_from_file_is_projected(self, tmp_path):
        path = tmp_path / "gen0.dat"
        np.savetxt(path, [[0, 20.0, 0.0], [1, 5.0, -4.0]])
        gen = initialize_generation(DOEMode.FROM_FILE, _registry(), IdSequence(), path=path)
        np.testing.assert_array_equal(gen.samples, [[10.0, 0.0], [5.0, -1.0]])

    def test_fresh_ids_for_file_samples(self, tmp_path):
        path = tmp_path / "gen0.dat"
        np.savetxt(path, [[40, 1.0, 0.0], [41, 2.0, 0.0]])
        ids = IdSequence(start=100)
        gen = initialize_generation(DOEMode.FROM_FILE, _registry(), ids, path=path)
        assert gen.ids == [100, 101]
