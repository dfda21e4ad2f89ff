"""Imputation study framework for data Missing at Random (MAR).

This package injects MAR gaps into a complete table, fills them with
competing imputation methods and scores each method against the values it
replaced.

Basic Usage
-----------
>>> from src.pipeline.imputation_study import (
...     ImputationStudy, MARQuantilePattern, MeanImputation, load_reference_data
... )
>>>
>>> study = ImputationStudy(load_reference_data(), seed=123)
>>> pattern = MARQuantilePattern([('bmi', 's5')], proportion=0.3)
>>> results = study.run_all([pattern], [MeanImputation()])
>>> print(results)

Modules
-------
data_loaders : Complete data sources
missingness_patterns : MAR injector and missingness pattern classes
imputation_methods : Imputation method classes
evaluator : Accuracy metrics
simulator : Study orchestration
config : Validated configuration records
exceptions : Error and warning types
"""

from .config import KNNConfig, MICEConfig, MissForestConfig, StudyConfig, load_config
from .data_loaders import generate_data, load_reference_data, load_table
from .exceptions import (
    DegenerateColumnError,
    ImputationStudyError,
    InvalidParameterError,
    NonConvergenceWarning,
    ShapeMismatchError,
)
from .missingness_patterns import (
    MissingnessPattern,
    MARQuantilePattern,
    MCARPattern,
    inject_mar,
    mar_noise,
)
from .imputation_methods import (
    ImputationMethod,
    ImputationRun,
    MeanImputation,
    MICEImputation,
    KNNImputation,
    MissForestImputation,
)
from .evaluator import evaluate, evaluate_all_imputations, evaluate_run, pool_metrics
from .simulator import ImputationStudy, accuracy_table, density_inputs

__version__ = '1.0.0'

__all__ = [
    # Data
    'generate_data',
    'load_reference_data',
    'load_table',

    # Configuration
    'MICEConfig',
    'KNNConfig',
    'MissForestConfig',
    'StudyConfig',
    'load_config',

    # Errors
    'ImputationStudyError',
    'InvalidParameterError',
    'DegenerateColumnError',
    'ShapeMismatchError',
    'NonConvergenceWarning',

    # Missingness
    'MissingnessPattern',
    'MARQuantilePattern',
    'MCARPattern',
    'inject_mar',
    'mar_noise',

    # Imputation methods
    'ImputationMethod',
    'ImputationRun',
    'MeanImputation',
    'MICEImputation',
    'KNNImputation',
    'MissForestImputation',

    # Evaluation and orchestration
    'evaluate',
    'evaluate_run',
    'evaluate_all_imputations',
    'pool_metrics',
    'ImputationStudy',
    'accuracy_table',
    'density_inputs',
]
