#########################################################################################
##
##                        PARAMETER IDENTIFICATION, PUBLIC API
##                              (ident/__init__.py)
##
#########################################################################################

from .exceptions import (
    IdentificationError,
    ConfigurationError,
    ArtifactError,
    ModelEvaluationError,
)
from .parameters import Parameter, Constant, ParameterRegistry
from .data import ExperimentalDataset, NumericalDataset
from .weights import (
    FileWeightMode,
    ColumnWeightMode,
    PointWeightMode,
    WeightSpec,
    calc_weights,
)
from .generation import Individual, Generation
from .doe import (
    DOEMode,
    doe_uniform,
    doe_uniform_limit,
    doe_random,
    read_generation,
    write_generation,
    initialize_generation,
)
from .evaluator import (
    Evaluator,
    calc_v,
    calc_cost,
    normalized_weights,
    calc_sensitivity,
    check_sensitivity,
)
from .optimize import (
    LevenbergMarquardt,
    RefinementResult,
    RefinementStatus,
    calc_dp,
    lev_marq,
)
from .sensitivity import SensitivityResult
from .config import IdentControl, IdentificationConfig, load_config, config_from_dict
from .identification import (
    Breeder,
    RandomImmigrants,
    Identification,
    IdentificationResult,
)
