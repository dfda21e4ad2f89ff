"""Missingness pattern classes for imputation studies."""

import numpy as np
import pandas as pd
from abc import ABC, abstractmethod
from numpy.random import default_rng

from src.pipeline.imputation_study.config import check_proportion
from src.pipeline.imputation_study.exceptions import InvalidParameterError, ShapeMismatchError


def mar_noise(determinant, sd=0.5, seed=123):
    """Return determinant plus independent N(0, sd) noise from a fixed seed."""
    determinant = np.asarray(determinant, dtype=float)
    rng = default_rng(seed)
    return determinant + rng.normal(0, sd, size=len(determinant))


def inject_mar(determinant, target, proportion, seed=123):
    """
    Null values of ``target`` at random, driven by ``determinant``.

    Each row gets ``noise = determinant + N(0, 0.5)``. Rows whose noise is
    strictly below the ``1 - proportion`` quantile keep their value; the rest
    (ties at the cutoff included) become NaN, so roughly ``proportion`` of
    the rows go missing and high-determinant rows go missing first.

    Parameters:
    - determinant: Observed covariate driving missingness
    - target: Values to null
    - proportion: Missingness rate, strictly between 0 and 1
    - seed: Random seed; the same seed gives the same noise on every call

    Returns:
    - Copy of target with NaN for missing (a Series when target is a Series)
    """
    check_proportion(proportion)
    if len(determinant) != len(target):
        raise ShapeMismatchError(
            f"determinant and target must have equal length. Got {len(determinant)} and {len(target)}."
        )

    noise = mar_noise(determinant, seed=seed)
    cutoff = np.quantile(noise, 1 - proportion)
    retained = noise < cutoff

    if isinstance(target, pd.Series):
        return target.astype(float).where(retained, np.nan)
    values = np.asarray(target, dtype=float).copy()
    values[~retained] = np.nan
    return values


class MissingnessPattern(ABC):
    """Abstract base class for missingness patterns.

    All missingness patterns must implement:
    - apply(data, seed=123): Apply missingness to data
    - columns: Property listing the columns the pattern nulls
    - name: Property for descriptive name
    """

    @abstractmethod
    def apply(self, data, seed=123):
        """Apply missingness to the data.

        Parameters:
        - data: Input DataFrame
        - seed: Random seed

        Returns:
        - dat_miss: DataFrame with missing values
        """
        pass

    @property
    @abstractmethod
    def columns(self):
        pass

    @property
    @abstractmethod
    def name(self):
        """Return descriptive name of the pattern."""
        pass

    @property
    def label(self):
        """Name qualified by the pattern's settings."""
        return self.name

    def _check_columns(self, data, columns):
        absent = [col for col in columns if col not in data.columns]
        if absent:
            raise InvalidParameterError(f"Columns not found in data: {absent}")


class MARQuantilePattern(MissingnessPattern):
    """MAR gaps from a noisy quantile threshold on a determinant column.

    Every (determinant, target) pair is injected with the same seed.
    """

    def __init__(self, pairs, proportion=0.3):
        check_proportion(proportion)
        self.pairs = [tuple(pair) for pair in pairs]
        self.proportion = proportion

    def apply(self, data, seed=123):
        self._check_columns(data, [col for pair in self.pairs for col in pair])
        dat_miss = data.copy()
        for determinant, target in self.pairs:
            # Determinants come from the complete table
            dat_miss[target] = inject_mar(data[determinant], data[target], self.proportion, seed=seed)
        return dat_miss

    @property
    def columns(self):
        return [target for _, target in self.pairs]

    @property
    def name(self):
        return 'mar_quantile'

    @property
    def label(self):
        pairs = '_'.join(f'{determinant}-{target}' for determinant, target in self.pairs)
        return f'{self.name}_p{self.proportion}_{pairs}'


class MCARPattern(MissingnessPattern):
    """MCAR gaps: exactly ``round(proportion * n)`` cells nulled per column, uniformly at random."""

    def __init__(self, columns, proportion=0.2):
        check_proportion(proportion)
        self._columns = list(columns)
        self.proportion = proportion

    def apply(self, data, seed=123):
        self._check_columns(data, self._columns)
        rng = default_rng(seed)
        dat_miss = data.copy()
        n_missing = int(round(self.proportion * len(dat_miss)))
        for var in self._columns:
            rows = rng.choice(len(dat_miss), size=n_missing, replace=False)
            missing = np.zeros(len(dat_miss), dtype=bool)
            missing[rows] = True
            dat_miss[var] = dat_miss[var].astype(float).where(~missing, np.nan)
        return dat_miss

    @property
    def columns(self):
        return list(self._columns)

    @property
    def name(self):
        return 'mcar'

    @property
    def label(self):
        return f"{self.name}_p{self.proportion}_{'-'.join(self._columns)}"
