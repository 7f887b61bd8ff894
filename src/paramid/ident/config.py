#########################################################################################
##
##                              RUN CONFIGURATION
##                              (ident/config.py)
##
##          YAML file with five sections: 'control' (run settings),
##          'parameters', 'constants', 'files' (experimental data, read
##          relative to the configuration file) and 'weights'. Everything
##          is validated on load; any problem raises ConfigurationError.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from .data import ExperimentalDataset, NumericalDataset
from .doe import DOEMode
from .exceptions import ConfigurationError
from .parameters import Constant, Parameter, ParameterRegistry
from .weights import (
    ColumnWeightMode,
    FileWeightMode,
    PointWeightMode,
    WeightSpec,
    coerce_mode,
)


# LOADING ===============================================================================

def load(path: str | Path) -> dict[str, Any]:
    """Return the raw YAML mapping of a configuration file."""
    target = Path(path)
    if not target.exists():
        raise ConfigurationError(f"Configuration file not found: {target}")
    try:
        with target.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse configuration {target}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ConfigurationError(f"Configuration {target} must be a mapping at top level")
    return dict(payload)


# CONVERSION HELPERS ====================================================================

def _require(data: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigurationError(f"{where}: missing required key '{key}'")
    return data[key]


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{what} must be an integer, got {value!r}")
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{what} must be an integer, got {value!r}") from None
    if not as_float.is_integer():
        raise ConfigurationError(f"{what} must be an integer, got {value!r}")
    return int(as_float)


def _as_float(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{what} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{what} must be a number, got {value!r}") from None


def _as_list(value: Any, what: str) -> list:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigurationError(f"{what} must be a list, got {value!r}")
    return list(value)


def _as_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{what} must be a mapping, got {value!r}")
    return value


# CONTROL ===============================================================================

@dataclass(frozen=True)
class IdentControl:
    """Settings of the global search and of the local refinement.

    Parameters
    ----------
    n_generations : int
        Number of generations, ``>= 1``.
    doe_mode : DOEMode
        Initial sampling strategy.
    spop : int
        Levels per parameter for the grid modes.
    n_samples : int, optional
        Sample count for the random mode.
    generation_file : str, optional
        Artifact read by the from-file mode.
    n_gboys : int
        Best candidates refined by the LM refiner per generation; 0 disables
        refinement.
    max_pop : int
        Survivors carried to the next generation; as many offspring are bred.
    prob_mutation : float
        Mutation probability handed to the breeder.
    perturbation : float
        Relative finite-difference step.
    barrier_c, barrier_p0 : float
        Bound barrier weight and activation distance.
    lambda_lm : float
        Initial damping of the refiner.
    phi_eps : float
        Convergence tolerance on the cost.
    max_iterations : int
        Step attempts per refinement.
    lambda_max : float
        Damping ceiling.
    lambda_factor : float
        Damping update factor.
    n_workers : int
        Threads used for model evaluations.
    seed : int, optional
        Seed of the run's random generator.
    """

    n_generations: int = 1
    doe_mode: DOEMode = DOEMode.GRID_INTERIOR
    spop: int = 3
    n_samples: int | None = None
    generation_file: str | None = None
    n_gboys: int = 1
    max_pop: int = 2
    prob_mutation: float = 0.2
    perturbation: float = 1e-3
    barrier_c: float = 1e-6
    barrier_p0: float = 1e-2
    lambda_lm: float = 1e-2
    phi_eps: float = 1e-10
    max_iterations: int = 50
    lambda_max: float = 1e10
    lambda_factor: float = 10.0
    n_workers: int = 1
    seed: int | None = None


    def __post_init__(self) -> None:
        object.__setattr__(self, "doe_mode", coerce_mode(DOEMode, self.doe_mode, "doe_mode"))

        if self.n_generations < 1:
            raise ConfigurationError(f"n_generations must be >= 1, got {self.n_generations}")

        if self.doe_mode == DOEMode.GRID_INTERIOR and self.spop < 1:
            raise ConfigurationError(f"spop must be >= 1, got {self.spop}")
        if self.doe_mode == DOEMode.GRID_INCLUSIVE and self.spop < 2:
            raise ConfigurationError(f"spop must be >= 2 for the inclusive grid, got {self.spop}")
        if self.doe_mode == DOEMode.RANDOM and (self.n_samples is None or self.n_samples < 1):
            raise ConfigurationError("random sampling requires n_samples >= 1")
        if self.doe_mode == DOEMode.FROM_FILE and not self.generation_file:
            raise ConfigurationError("from_file sampling requires generation_file")

        if self.max_pop < 1:
            raise ConfigurationError(f"max_pop must be >= 1, got {self.max_pop}")
        if not 0 <= self.n_gboys <= self.max_pop:
            raise ConfigurationError(
                f"n_gboys must lie in [0, max_pop={self.max_pop}], got {self.n_gboys}"
            )
        if not 0.0 <= self.prob_mutation <= 1.0:
            raise ConfigurationError(f"prob_mutation must lie in [0, 1], got {self.prob_mutation}")
        if self.perturbation <= 0.0:
            raise ConfigurationError(f"perturbation must be > 0, got {self.perturbation}")
        if self.barrier_c < 0.0:
            raise ConfigurationError(f"barrier_c must be >= 0, got {self.barrier_c}")
        if not 0.0 <= self.barrier_p0 <= 1.0:
            raise ConfigurationError(f"barrier_p0 must lie in [0, 1], got {self.barrier_p0}")
        if self.lambda_lm <= 0.0:
            raise ConfigurationError(f"lambda_lm must be > 0, got {self.lambda_lm}")
        if self.lambda_max <= self.lambda_lm:
            raise ConfigurationError("lambda_max must exceed lambda_lm")
        if self.lambda_factor <= 1.0:
            raise ConfigurationError(f"lambda_factor must be > 1, got {self.lambda_factor}")
        if self.phi_eps < 0.0:
            raise ConfigurationError(f"phi_eps must be >= 0, got {self.phi_eps}")
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be >= 1, got {self.n_workers}")


    def initial_population(self, n_param: int) -> int | None:
        """Size of the first generation, ``None`` when it comes from a file."""
        if self.doe_mode in (DOEMode.GRID_INTERIOR, DOEMode.GRID_INCLUSIVE):
            return self.spop ** n_param
        if self.doe_mode == DOEMode.RANDOM:
            return self.n_samples
        return None


    def check_population(self, n_initial: int) -> None:
        """Reject a ``max_pop`` larger than the first generation."""
        if self.max_pop > n_initial:
            raise ConfigurationError(
                f"max_pop={self.max_pop} exceeds the initial population of {n_initial}"
            )


_FLOAT_KEYS = (
    "prob_mutation", "perturbation", "barrier_c", "barrier_p0",
    "lambda_lm", "phi_eps", "lambda_max", "lambda_factor",
)
_INT_KEYS = ("n_generations", "spop", "n_gboys", "max_pop", "max_iterations", "n_workers")


def _control_from_dict(data: Mapping[str, Any]) -> IdentControl:
    known = set(_FLOAT_KEYS) | set(_INT_KEYS) | {"doe_mode", "n_samples", "generation_file", "seed"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"control: unknown keys {unknown}")

    kwargs: dict[str, Any] = {}
    for key in _INT_KEYS:
        if data.get(key) is not None:
            kwargs[key] = _as_int(data[key], f"control.{key}")
    for key in _FLOAT_KEYS:
        if data.get(key) is not None:
            kwargs[key] = _as_float(data[key], f"control.{key}")

    if data.get("doe_mode") is not None:
        kwargs["doe_mode"] = data["doe_mode"]
    if data.get("n_samples") is not None:
        kwargs["n_samples"] = _as_int(data["n_samples"], "control.n_samples")
    if data.get("generation_file") is not None:
        kwargs["generation_file"] = str(data["generation_file"])
    if data.get("seed") is not None:
        kwargs["seed"] = _as_int(data["seed"], "control.seed")

    return IdentControl(**kwargs)


# SECTIONS ==============================================================================

def _parameters_from_list(entries: Any) -> list[Parameter]:
    params = []
    for i, entry in enumerate(_as_list(entries, "parameters")):
        where = f"parameters[{i}]"
        entry = _as_mapping(entry, where)
        params.append(Parameter(
            number=_as_int(entry.get("number", i), f"{where}.number"),
            key=str(_require(entry, "key", where)),
            min=_as_float(_require(entry, "min", where), f"{where}.min"),
            max=_as_float(_require(entry, "max", where), f"{where}.max"),
            input_files=tuple(str(f) for f in _as_list(entry.get("input_files", []), f"{where}.input_files")),
        ))
    return params


def _constants_from_list(entries: Any) -> list[Constant]:
    consts = []
    for i, entry in enumerate(_as_list(entries or [], "constants")):
        where = f"constants[{i}]"
        entry = _as_mapping(entry, where)
        raw = _require(entry, "values", where)
        values = raw if isinstance(raw, Sequence) and not isinstance(raw, str) else [raw]
        consts.append(Constant(
            number=_as_int(entry.get("number", i), f"{where}.number"),
            key=str(_require(entry, "key", where)),
            values=tuple(_as_float(v, f"{where}.values") for v in values),
            input_files=tuple(str(f) for f in _as_list(entry.get("input_files", []), f"{where}.input_files")),
        ))
    return consts


def _files_from_list(entries: Any, base_dir: Path):
    datasets, numerical = [], []
    for i, entry in enumerate(_as_list(entries, "files")):
        where = f"files[{i}]"
        entry = _as_mapping(entry, where)
        name = str(_require(entry, "name", where))
        info = [_as_int(c, f"{where}.info_columns") for c in _as_list(_require(entry, "info_columns", where), f"{where}.info_columns")]
        n_cols = entry.get("columns")
        n_cols = None if n_cols is None else _as_int(n_cols, f"{where}.columns")

        path = Path(name)
        if not path.is_absolute():
            path = base_dir / path
        ds = ExperimentalDataset.from_file(path, info, n_columns=n_cols, name=name)
        datasets.append(ds)

        num = entry.get("numerical")
        if num is None:
            numerical.append(NumericalDataset.like(ds))
        else:
            num = _as_mapping(num, f"{where}.numerical")
            numerical.append(NumericalDataset(
                _as_int(_require(num, "columns", f"{where}.numerical"), f"{where}.numerical.columns"),
                [_as_int(c, f"{where}.numerical.info_columns")
                 for c in _as_list(_require(num, "info_columns", f"{where}.numerical"), f"{where}.numerical.info_columns")],
            ))
            if len(numerical[-1].info_columns) != ds.n_info:
                raise ConfigurationError(
                    f"{where}: {len(numerical[-1].info_columns)} numerical info columns "
                    f"for {ds.n_info} experimental ones"
                )

    if not datasets:
        raise ConfigurationError("files: at least one experimental file is required")
    return datasets, numerical


def _weights_from_dict(data: Mapping[str, Any]) -> WeightSpec:
    file_cfg = _as_mapping(data.get("file"), "weights.file")
    col_cfg = _as_mapping(data.get("column"), "weights.column")
    point_cfg = _as_mapping(data.get("point"), "weights.point")

    file_mode = coerce_mode(FileWeightMode, file_cfg.get("mode", 0), "weights.file.mode")
    column_mode = coerce_mode(ColumnWeightMode, col_cfg.get("mode", 0), "weights.column.mode")
    point_mode = coerce_mode(PointWeightMode, point_cfg.get("mode", 0), "weights.point.mode")

    file_weights = column_weights = point_columns = None
    if file_mode == FileWeightMode.VALUES:
        raw = _as_list(_require(file_cfg, "values", "weights.file"), "weights.file.values")
        file_weights = tuple(_as_float(w, "weights.file.values") for w in raw)
    if column_mode in (ColumnWeightMode.VALUES, ColumnWeightMode.SCALED_VALUES):
        raw = _as_list(_require(col_cfg, "values", "weights.column"), "weights.column.values")
        column_weights = tuple(
            tuple(_as_float(w, "weights.column.values") for w in _as_list(row, "weights.column.values"))
            for row in raw
        )
    if point_mode == PointWeightMode.COLUMNS:
        raw = _as_list(_require(point_cfg, "columns", "weights.point"), "weights.point.columns")
        point_columns = tuple(
            tuple(_as_int(c, "weights.point.columns") for c in _as_list(row, "weights.point.columns"))
            for row in raw
        )

    return WeightSpec(
        file_mode=file_mode,
        file_weights=file_weights,
        column_mode=column_mode,
        column_weights=column_weights,
        point_mode=point_mode,
        point_columns=point_columns,
    )


# FULL CONFIGURATION ====================================================================

@dataclass(frozen=True)
class IdentificationConfig:
    """Validated content of a configuration file."""

    control: IdentControl
    registry: ParameterRegistry
    datasets: tuple[ExperimentalDataset, ...]
    numerical: tuple[NumericalDataset, ...]
    weights: WeightSpec
    source: Path | None = None
    base_dir: Path = field(default_factory=Path.cwd)


    @property
    def generation_path(self) -> Path | None:
        """Artifact path of the from-file mode, resolved against ``base_dir``."""
        if self.control.generation_file is None:
            return None
        path = Path(self.control.generation_file)
        return path if path.is_absolute() else self.base_dir / path


    def build(self, model, **kwargs):
        """Create an :class:`~paramid.ident.identification.Identification` for *model*."""
        from .identification import Identification

        kwargs.setdefault("generation_path", self.generation_path)
        return Identification(
            model,
            self.registry,
            self.datasets,
            self.weights,
            self.control,
            numerical=self.numerical,
            **kwargs,
        )


def config_from_dict(payload: Mapping[str, Any], base_dir: str | Path | None = None) -> IdentificationConfig:
    """Validate a configuration mapping.

    Parameters
    ----------
    payload : mapping
        Parsed YAML content.
    base_dir : str or Path, optional
        Directory relative file names are resolved against; the current
        directory when omitted.
    """
    base = Path(base_dir) if base_dir is not None else Path.cwd()

    for section in ("control", "parameters", "files"):
        if section not in payload:
            raise ConfigurationError(f"Configuration is missing the '{section}' section")

    control = _control_from_dict(_as_mapping(payload["control"], "control"))
    datasets, numerical = _files_from_list(payload["files"], base)
    registry = ParameterRegistry(
        _parameters_from_list(payload["parameters"]),
        _constants_from_list(payload.get("constants")),
        n_files=len(datasets),
    )

    weights = _weights_from_dict(_as_mapping(payload.get("weights"), "weights"))
    weights.validate(datasets)

    n_initial = control.initial_population(registry.n_param)
    if n_initial is not None:
        control.check_population(n_initial)

    return IdentificationConfig(
        control=control,
        registry=registry,
        datasets=tuple(datasets),
        numerical=tuple(numerical),
        weights=weights,
        base_dir=base,
    )


def load_config(path: str | Path) -> IdentificationConfig:
    """Load and validate a YAML configuration file.

    Experimental files are read relative to the configuration file's
    directory.

    Raises
    ------
    ConfigurationError
        On any missing, malformed, or inconsistent entry.
    """
    config_path = Path(path)
    payload = load(config_path)
    config = config_from_dict(payload, base_dir=config_path.resolve().parent)
    return replace(config, source=config_path)
