########################################################################################
##
##                                  TESTS FOR
##                                'ident/config.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from paramid.ident.config import IdentControl, config_from_dict, load_config
from paramid.ident.doe import DOEMode
from paramid.ident.exceptions import ConfigurationError
from paramid.ident.weights import ColumnWeightMode, FileWeightMode


# ═══════════════════════════════════════════════════════════════════════════
# Helpers / Fixtures
# ═══════════════════════════════════════════════════════════════════════════

CONFIG = """\
control:
  n_generations: 3
  doe_mode: grid_inclusive
  spop: 3
  n_gboys: 2
  max_pop: 4
  perturbation: 1.0e-4
  lambda_lm: 1.0e-2
  phi_eps: 1.0e-12
  n_workers: 2
  seed: 7
parameters:
  - {number: 0, key: "@a", min: 0.0, max: 4.0, input_files: [props.dat]}
  - {number: 1, key: "@b", min: -1.0, max: 1.0}
constants:
  - {number: 0, key: "@T", values: [20.0, 40.0]}
files:
  - name: exp0.txt
    columns: 3
    info_columns: [2, 3]
  - name: data/exp1.txt
    info_columns: [2]
    numerical: {columns: 4, info_columns: [4]}
weights:
  file: {mode: 1, values: [1.0, 2.0]}
  column: {mode: auto}
  point: {mode: 0}
"""


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "data").mkdir()
    x = np.linspace(0.0, 1.0, 5)
    np.savetxt(tmp_path / "exp0.txt", np.column_stack([x, 2 * x + 1, x ** 2 + 1]))
    np.savetxt(tmp_path / "data" / "exp1.txt", np.column_stack([x, 3 * x + 1]))
    (tmp_path / "ident.yaml").write_text(CONFIG)
    return tmp_path


def _payload(**overrides):
    payload = {
        "control": {"spop": 2, "n_gboys": 1, "max_pop": 2},
        "parameters": [{"key": "@a", "min": 0.0, "max": 1.0}],
        "files": [{"name": "exp0.txt", "info_columns": [2]}],
    }
    payload.update(overrides)
    return payload


# ═══════════════════════════════════════════════════════════════════════════
# IdentControl
# ═══════════════════════════════════════════════════════════════════════════

class TestIdentControl:

    def test_defaults_are_valid(self):
        c = IdentControl()
        assert c.doe_mode is DOEMode.GRID_INTERIOR
        assert c.n_gboys <= c.max_pop

    def test_mode_by_name_and_int(self):
        assert IdentControl(doe_mode="random", n_samples=4).doe_mode is DOEMode.RANDOM
        assert IdentControl(doe_mode=1).doe_mode is DOEMode.GRID_INCLUSIVE

    def test_invalid_mode(self):
        with pytest.raises(ConfigurationError, match="doe_mode"):
            IdentControl(doe_mode=7)

    def test_inclusive_grid_needs_two_levels(self):
        with pytest.raises(ConfigurationError, match="spop"):
            IdentControl(doe_mode=1, spop=1)

    def test_random_needs_samples(self):
        with pytest.raises(ConfigurationError, match="n_samples"):
            IdentControl(doe_mode="random")

    def test_from_file_needs_path(self):
        with pytest.raises(ConfigurationError, match="generation_file"):
            IdentControl(doe_mode="from_file")

    def test_gboys_bounded_by_max_pop(self):
        with pytest.raises(ConfigurationError, match="n_gboys"):
            IdentControl(n_gboys=3, max_pop=2)

    @pytest.mark.parametrize("kwargs", [
        {"n_generations": 0},
        {"max_pop": 0, "n_gboys": 0},
        {"prob_mutation": 1.5},
        {"perturbation": 0.0},
        {"lambda_lm": 1.0, "lambda_max": 0.5},
        {"lambda_factor": 1.0},
        {"n_workers": 0},
        {"barrier_p0": 2.0},
    ])
    def test_out_of_range(self, kwargs):
        with pytest.raises(ConfigurationError):
            IdentControl(**kwargs)

    def test_initial_population(self):
        assert IdentControl(spop=3).initial_population(2) == 9
        assert IdentControl(doe_mode="random", n_samples=5).initial_population(2) == 5
        assert IdentControl(doe_mode=3, generation_file="g.dat").initial_population(2) is None

    def test_check_population(self):
        with pytest.raises(ConfigurationError, match="exceeds"):
            IdentControl(max_pop=5, n_gboys=1).check_population(4)


# ═══════════════════════════════════════════════════════════════════════════
# load_config
# ═══════════════════════════════════════════════════════════════════════════

class TestLoadConfig:

    def test_full_file(self, config_dir):
        cfg = load_config(config_dir / "ident.yaml")
        assert cfg.control.n_generations == 3
        assert cfg.control.doe_mode is DOEMode.GRID_INCLUSIVE
        assert cfg.control.perturbation == pytest.approx(1e-4)
        assert cfg.control.seed == 7
        assert cfg.registry.keys == ["@a", "@b"]
        assert cfg.registry.parameters[0].input_files == ("props.dat",)
        np.testing.assert_array_equal(cfg.registry.constant_values(1), [40.0])
        assert cfg.source == config_dir / "ident.yaml"

    def test_datasets_relative_to_config(self, config_dir):
        cfg = load_config(config_dir / "ident.yaml")
        assert [ds.name for ds in cfg.datasets] == ["exp0.txt", "data/exp1.txt"]
        assert cfg.datasets[0].info_columns == (2, 3)
        assert cfg.datasets[1].n_rows == 5

    def test_numerical_layouts(self, config_dir):
        cfg = load_config(config_dir / "ident.yaml")
        assert cfg.numerical[0].n_columns == 3
        assert cfg.numerical[1].n_columns == 4
        assert cfg.numerical[1].info_columns == (4,)

    def test_weights(self, config_dir):
        cfg = load_config(config_dir / "ident.yaml")
        assert cfg.weights.file_mode is FileWeightMode.VALUES
        assert cfg.weights.file_weights == (1.0, 2.0)
        assert cfg.weights.column_mode is ColumnWeightMode.AUTO

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("control: [1, 2\n")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)

    def test_build_identification(self, config_dir):
        cfg = load_config(config_dir / "ident.yaml")
        model = lambda p, c, e: np.zeros((e.n_rows, e.n_columns))
        ident = cfg.build(model)
        assert ident.control is cfg.control
        assert ident.evaluator.n_points == 5 * 2 + 5


class TestConfigFromDict:

    @pytest.fixture(autouse=True)
    def _data(self, tmp_path):
        np.savetxt(tmp_path / "exp0.txt", np.column_stack([np.arange(4.0), np.arange(1.0, 5.0)]))
        self.base = tmp_path

    def test_minimal(self):
        cfg = config_from_dict(_payload(), base_dir=self.base)
        assert cfg.registry.n_param == 1
        assert cfg.registry.constants == ()

    @pytest.mark.parametrize("section", ["control", "parameters", "files"])
    def test_missing_section(self, section):
        payload = _payload()
        del payload[section]
        with pytest.raises(ConfigurationError, match=section):
            config_from_dict(payload, base_dir=self.base)

    def test_missing_key(self):
        payload = _payload(parameters=[{"key": "@a", "min": 0.0}])
        with pytest.raises(ConfigurationError, match="'max'"):
            config_from_dict(payload, base_dir=self.base)

    def test_wrong_type(self):
        payload = _payload(control={"spop": "three"})
        with pytest.raises(ConfigurationError, match="integer"):
            config_from_dict(payload, base_dir=self.base)

    def test_unknown_control_key(self):
        payload = _payload(control={"spop": 2, "max_pop": 2, "n_gboys": 1, "ngen": 4})
        with pytest.raises(ConfigurationError, match="unknown"):
            config_from_dict(payload, base_dir=self.base)

    def test_max_pop_larger_than_population(self):
        payload = _payload(control={"spop": 2, "max_pop": 3, "n_gboys": 1})
        with pytest.raises(ConfigurationError, match="exceeds"):
            config_from_dict(payload, base_dir=self.base)

    def test_invalid_weight_selector(self):
        payload = _payload(weights={"column": {"mode": 5}})
        with pytest.raises(ConfigurationError, match="column"):
            config_from_dict(payload, base_dir=self.base)

    def test_weight_length_mismatch(self):
        payload = _payload(weights={"file": {"mode": 1, "values": [1.0, 2.0]}})
        with pytest.raises(ConfigurationError, match="expected 1"):
            config_from_dict(payload, base_dir=self.base)

    def test_info_column_out_of_range(self):
        payload = _payload(files=[{"name": "exp0.txt", "info_columns": [3]}])
        with pytest.raises(ConfigurationError, match="out of range"):
            config_from_dict(payload, base_dir=self.base)

    def test_constant_count_checked_against_files(self):
        payload = _payload(constants=[{"key": "@T", "values": [1.0, 2.0]}])
        with pytest.raises(ConfigurationError, match="expected 1 or 1"):
            config_from_dict(payload, base_dir=self.base)

    def test_scalar_constant(self):
        payload = _payload(constants=[{"key": "@T", "values": 3.5}])
        cfg = config_from_dict(payload, base_dir=self.base)
        assert cfg.registry.constants[0].values == (3.5,)

    def test_numeric_strings_accepted(self):
        payload = _payload(control={"spop": 2, "max_pop": 2, "n_gboys": 1, "phi_eps": "1e-8"})
        cfg = config_from_dict(payload, base_dir=self.base)
        assert cfg.control.phi_eps == pytest.approx(1e-8)

    def test_generation_path_resolved(self):
        payload = _payload(control={"doe_mode": "from_file", "generation_file": "gen0.dat",
                                    "max_pop": 2, "n_gboys": 1})
        cfg = config_from_dict(payload, base_dir=self.base)
        assert cfg.generation_path == self.base / "gen0.dat"
