"""Complete-data sources for imputation studies."""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from numpy.random import default_rng
from sklearn.datasets import load_diabetes

from src.pipeline.imputation_study.exceptions import DegenerateColumnError, InvalidParameterError

logger = logging.getLogger(__name__)


def load_reference_data():
    """
    Load the bundled reference dataset.

    The scikit-learn diabetes table: 442 rows, ten numeric baseline
    covariates (age, sex, bmi, bp, s1..s6) and the disease-progression
    ``target``, on their original (unscaled) units. Ships with
    scikit-learn and is fully observed.
    """
    data = load_diabetes(as_frame=True, scaled=False).frame
    logger.info(f"Loaded reference dataset with {len(data)} rows and {data.shape[1]} columns")
    return data


def load_table(path, columns=None, dropna=True):
    """
    Read a flat file into a fully observed numeric table.

    Parameters:
    - path: CSV file path
    - columns: Columns to keep; defaults to every numeric column
    - dropna: Drop rows with any missing value in the kept columns

    Returns:
    - data: DataFrame with a fresh RangeIndex
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    data = pd.read_csv(path)
    if columns is None:
        data = data.select_dtypes(include='number')
    else:
        absent = [col for col in columns if col not in data.columns]
        if absent:
            raise InvalidParameterError(f"Columns not found in {path}: {absent}")
        data = data[list(columns)]

    if data.shape[1] == 0:
        raise DegenerateColumnError(f"No numeric columns found in {path}")

    if dropna:
        n_before = len(data)
        data = data.dropna()
        if len(data) < n_before:
            logger.info(f"Dropped {n_before - len(data)} incomplete rows from {path}")

    return data.reset_index(drop=True)


def generate_data(n=1000, p=5, correlation=0.5, rng=None):
    """
    Generate a synthetic complete table with correlated covariates.

    Parameters:
    - n: Sample size
    - p: Number of covariates
    - correlation: Common pairwise correlation between covariates
    - rng: numpy Generator

    Returns:
    - data: DataFrame with X1..Xp and a linear outcome y
    """
    if rng is None:
        rng = default_rng(123)
    if not (0 <= correlation < 1):
        raise InvalidParameterError(f"correlation must be in [0, 1). Got {correlation}.")

    cov = np.full((p, p), correlation)
    np.fill_diagonal(cov, 1.0)
    X = rng.multivariate_normal(np.zeros(p), cov, size=n)

    data = {f'X{i+1}': X[:, i] for i in range(p)}
    beta = rng.normal(0, 1, p)
    data['y'] = X @ beta + rng.normal(0, 1, n)

    return pd.DataFrame(data)
