"""Validated configuration records for the imputation study."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from src.pipeline.imputation_study.exceptions import InvalidParameterError

logger = logging.getLogger(__name__)

MICE_METHODS = ('norm', 'pmm', 'norm.predict')
KNN_WEIGHTS = ('uniform', 'distance')
METHOD_NAMES = ('mean', 'mice', 'knn', 'missforest')


def _check_positive_int(name, value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidParameterError(f"{name} must be a positive integer. Got {value!r}.")


def check_proportion(proportion):
    """Raise InvalidParameterError unless 0 < proportion < 1."""
    if not (0 < proportion < 1):
        raise InvalidParameterError(f"proportion must be between 0 and 1 (exclusive). Got {proportion}.")


@dataclass
class MICEConfig:
    """Options for chained-equations multiple imputation.

    Parameters:
    - m: Number of completed datasets (independent chains)
    - maxit: Maximum number of chained-equation sweeps
    - method: Conditional model, one of 'norm', 'pmm', 'norm.predict'
    - rhat_threshold: Chains count as mixed once R-hat drops below this
    - donors: Candidate donors per cell for predictive mean matching
    - seed: Seed for the parent generator the chains are spawned from
    """
    m: int = 5
    maxit: int = 10
    method: str = 'norm'
    rhat_threshold: float = 1.1
    donors: int = 5
    seed: int = 123

    def __post_init__(self):
        _check_positive_int('m', self.m)
        _check_positive_int('maxit', self.maxit)
        _check_positive_int('donors', self.donors)
        if self.method not in MICE_METHODS:
            raise InvalidParameterError(f"method must be one of {MICE_METHODS}. Got {self.method!r}.")
        if not self.rhat_threshold > 1:
            raise InvalidParameterError(f"rhat_threshold must be greater than 1. Got {self.rhat_threshold}.")


@dataclass
class KNNConfig:
    """Options for nearest-neighbour imputation."""
    k: int = 5
    weights: str = 'uniform'

    def __post_init__(self):
        _check_positive_int('k', self.k)
        if self.weights not in KNN_WEIGHTS:
            raise InvalidParameterError(f"weights must be one of {KNN_WEIGHTS}. Got {self.weights!r}.")


@dataclass
class MissForestConfig:
    """Options for random-forest imputation.

    ``tol`` is a relative tolerance: iteration stops once the squared change
    of the imputed cells, divided by their squared size and summed over the
    target columns, falls below it.
    """
    maxiter: int = 10
    n_estimators: int = 100
    tol: float = 1e-3
    seed: int = 123

    def __post_init__(self):
        _check_positive_int('maxiter', self.maxiter)
        _check_positive_int('n_estimators', self.n_estimators)
        if not self.tol > 0:
            raise InvalidParameterError(f"tol must be positive. Got {self.tol}.")


@dataclass
class StudyConfig:
    """Everything one run of the study needs.

    ``dataset`` is 'reference' (bundled table), 'synthetic' or a CSV path.
    ``pairs`` lists (determinant, target) column pairs for the MAR injector.
    """
    dataset: str
    pairs: list
    proportion: float
    seed: int = 123
    methods: list = field(default_factory=lambda: list(METHOD_NAMES))
    mice: MICEConfig = field(default_factory=MICEConfig)
    knn: KNNConfig = field(default_factory=KNNConfig)
    missforest: MissForestConfig = field(default_factory=MissForestConfig)
    output_dir: str = 'results/report'

    def __post_init__(self):
        check_proportion(self.proportion)
        if not self.pairs:
            raise InvalidParameterError("pairs must name at least one (determinant, target) pair.")
        self.pairs = [tuple(pair) for pair in self.pairs]
        for pair in self.pairs:
            if len(pair) != 2:
                raise InvalidParameterError(f"Each pair must be (determinant, target). Got {pair!r}.")
        unknown = [m for m in self.methods if m not in METHOD_NAMES]
        if unknown:
            raise InvalidParameterError(f"Unknown imputation methods: {unknown}. Choose from {METHOD_NAMES}.")
        # Nested option dicts from JSON become records here
        if isinstance(self.mice, dict):
            self.mice = MICEConfig(**self.mice)
        if isinstance(self.knn, dict):
            self.knn = KNNConfig(**self.knn)
        if isinstance(self.missforest, dict):
            self.missforest = MissForestConfig(**self.missforest)


def load_config(config_path):
    """
    Load study configuration from a JSON file.

    Parameters:
    -----------
    config_path : str or Path
        Path to the JSON configuration file

    Returns:
    --------
    StudyConfig : Validated configuration

    Example JSON structure:
    {
        "dataset": "reference",
        "pairs": [["bmi", "s5"], ["bp", "s6"]],
        "proportion": 0.3,
        "seed": 123,
        "methods": ["mean", "mice", "knn", "missforest"],
        "mice": {"m": 5, "maxit": 10, "method": "norm"},
        "knn": {"k": 5},
        "missforest": {"maxiter": 10}
    }
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = json.load(f)

    required_keys = ['dataset', 'pairs', 'proportion']
    missing_keys = [key for key in required_keys if key not in config]
    if missing_keys:
        raise InvalidParameterError(f"Missing required configuration keys: {missing_keys}")

    try:
        study_config = StudyConfig(**config)
    except TypeError as e:
        raise InvalidParameterError(f"Unrecognised configuration in {config_path}: {e}") from e

    logger.info(f"Loaded configuration from {config_path}")
    return study_config
