"""Imputation study orchestration."""

import logging

import numpy as np
import pandas as pd
from tqdm import tqdm

from src.pipeline.imputation_study.evaluator import METRICS, evaluate_run
from src.pipeline.imputation_study.exceptions import ImputationStudyError, InvalidParameterError

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['missingness', 'method', 'column'] + METRICS + ['m', 'converged', 'error']


class ImputationStudy:
    """Runs missingness patterns against imputation methods on one complete table.

    The complete table is the ground truth; every scenario injects gaps into
    a fresh copy, imputes the pattern's columns and scores the imputed cells.

    Patterns and methods are reported under their ``name`` while that name
    identifies a single object in the study. When several differently
    configured objects share a name they are reported under their ``label``
    instead, so cached tables and runs never collide.
    """

    def __init__(self, data, seed=123):
        if data.isna().any().any():
            raise InvalidParameterError("The ground-truth table must be fully observed.")
        self.data = data
        self.seed = seed
        self.missing_data = {}
        self.runs = {}
        self._patterns = {}
        self._methods = {}

    def run_scenario(self, missingness_pattern, imputation_method):
        """
        Runs one scenario: applies missingness, imputes, and evaluates every
        column the pattern nulls.

        Returns a list of result rows, one per column. A pattern or method
        that fails yields rows carrying the error message and NaN metrics.
        """
        pattern_key = self._register(self._patterns, missingness_pattern)
        method_key = self._register(self._methods, imputation_method)
        columns = missingness_pattern.columns
        base = {'missingness': pattern_key, 'method': method_key}

        dat_miss = self.missing_data.get(pattern_key)
        if dat_miss is None:
            try:
                dat_miss = missingness_pattern.apply(self.data, seed=self.seed)
            except ImputationStudyError as e:
                logger.error(f"Missingness pattern {pattern_key} failed: {e}")
                return [self._failed_row(base, column, e) for column in columns]
            self.missing_data[pattern_key] = dat_miss

        try:
            run = imputation_method.impute(dat_miss, columns)
        except ImputationStudyError as e:
            logger.error(f"{method_key} failed under {pattern_key}: {e}")
            return [self._failed_row(base, column, e) for column in columns]

        self.runs[(pattern_key, method_key)] = run
        rows = []
        for column in columns:
            try:
                metrics = evaluate_run(self.data, dat_miss, run, column)
            except ImputationStudyError as e:
                logger.error(f"Evaluation of {method_key} on {column} failed: {e}")
                rows.append(self._failed_row(base, column, e))
                continue
            rows.append({**base, 'column': column, **metrics,
                         'm': run.m, 'converged': run.converged, 'error': None})
        return rows

    def run_all(self, missingness_patterns, imputation_methods):
        """Run every pattern against every method; return the long results frame."""
        # Names shared by several objects are reported by label from the start
        for registry, items in ((self._patterns, missingness_patterns), (self._methods, imputation_methods)):
            shared = pd.Series([item.name for item in items]).duplicated(keep=False).to_numpy()
            for item, is_shared in zip(items, shared):
                self._register(registry, item, qualify=is_shared)

        rows = []
        scenarios = [(pattern, method) for pattern in missingness_patterns for method in imputation_methods]
        for pattern, method in tqdm(scenarios, desc="Scenarios", leave=False):
            logger.info(f"Running scenario: {self._key_of(self._patterns, pattern)} "
                        f"{self._key_of(self._methods, method)}")
            rows.extend(self.run_scenario(pattern, method))
        return pd.DataFrame(rows, columns=RESULT_COLUMNS)

    def density_inputs(self, missingness_name, method_name, column):
        """Observed and imputed-only values of one column for density plots.

        Imputed values are pooled over all completed datasets.
        """
        dat_miss = self.missing_data[missingness_name]
        run = self.runs[(missingness_name, method_name)]
        return density_inputs(dat_miss, run, column)

    def _register(self, registry, item, qualify=False):
        """Return the key ``item`` is reported under, assigning one on first sight."""
        key = self._key_of(registry, item)
        if key is not None:
            return key
        key = item.name
        if qualify or key in registry:
            key = item.label
        base, suffix = key, 2
        while key in registry:
            key = f"{base}_{suffix}"
            suffix += 1
        registry[key] = item
        return key

    @staticmethod
    def _key_of(registry, item):
        for key, registered in registry.items():
            if registered is item:
                return key
        return None

    def _failed_row(self, base, column, error):
        return {**base, 'column': column, **{metric: np.nan for metric in METRICS},
                'm': 0, 'converged': None, 'error': str(error)}


def density_inputs(missing_data, run, column):
    """Return {'observed': Series, 'imputed': Series} for one column."""
    mask = missing_data[column].isna()
    observed = missing_data.loc[~mask, column].reset_index(drop=True)
    imputed = pd.concat([dat_imputed.loc[mask, column] for dat_imputed in run.tables], ignore_index=True)
    return {'observed': observed, 'imputed': imputed}


def accuracy_table(results, column, missingness=None):
    """
    Accuracy table for one target column.

    Parameters:
    - results: Long results frame from ImputationStudy.run_all
    - column: Target column
    - missingness: Pattern name; needed when results hold several patterns

    Returns:
    - DataFrame indexed by method with MAE, MSE, RMSE, MAPE
    """
    subset = results[results['column'] == column]
    if missingness is not None:
        subset = subset[subset['missingness'] == missingness]
    elif subset['missingness'].nunique() > 1:
        raise InvalidParameterError(f"Results for {column} span several patterns; pass missingness=.")
    if subset.empty:
        raise InvalidParameterError(f"No results for column {column!r}.")
    return subset.set_index('method')[METRICS]
