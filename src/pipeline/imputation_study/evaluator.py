"""Evaluation of imputation accuracy.

This module scores imputed values against the ground truth they replaced.
Metrics are computed only over the cells the missingness pattern nulled;
for multiple imputation each completion is scored and the scores are
pooled by averaging.
"""

import logging

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_absolute_percentage_error, mean_squared_error

from src.pipeline.imputation_study.exceptions import (
    ImputationStudyError,
    InvalidParameterError,
    ShapeMismatchError,
)

logger = logging.getLogger(__name__)

METRICS = ['MAE', 'MSE', 'RMSE', 'MAPE']


def evaluate(ground_truth, imputed, mask):
    """
    Score imputed values on the masked cells.

    Parameters:
    -----------
    ground_truth : array-like
        Values before missingness was injected
    imputed : array-like
        Values after imputation
    mask : array-like of bool
        True where the value was nulled and then imputed

    Returns:
    --------
    dict : {'MAE', 'MSE', 'RMSE', 'MAPE'}; MAPE is a fraction, not a percent
    """
    ground_truth = np.asarray(ground_truth, dtype=float)
    imputed = np.asarray(imputed, dtype=float)
    mask = np.asarray(mask, dtype=bool)

    if not (len(ground_truth) == len(imputed) == len(mask)):
        raise ShapeMismatchError(
            f"ground_truth, imputed and mask must have equal length. "
            f"Got {len(ground_truth)}, {len(imputed)} and {len(mask)}."
        )
    if not mask.any():
        raise InvalidParameterError("mask selects no cells; accuracy is undefined.")

    y_true = ground_truth[mask]
    y_pred = imputed[mask]
    if np.isnan(y_pred).any():
        raise InvalidParameterError(f"{int(np.isnan(y_pred).sum())} masked cells were left unimputed.")

    mse = mean_squared_error(y_true, y_pred)
    return {
        'MAE': mean_absolute_error(y_true, y_pred),
        'MSE': mse,
        'RMSE': float(np.sqrt(mse)),
        'MAPE': mean_absolute_percentage_error(y_true, y_pred),
    }


def pool_metrics(records):
    """Average metric dictionaries across completed datasets."""
    if len(records) == 0:
        raise InvalidParameterError("No metric records to pool.")
    return {metric: float(np.mean([record[metric] for record in records])) for metric in METRICS}


def evaluate_run(original_data, missing_data, run, column):
    """
    Pooled accuracy of one ImputationRun on one column.

    Parameters:
    -----------
    original_data : pd.DataFrame
        Complete ground truth
    missing_data : pd.DataFrame
        The table handed to the imputer; its nulls define the mask
    run : ImputationRun
        Completed tables to score
    column : str
        Column to score
    """
    mask = missing_data[column].isna().to_numpy()
    records = [evaluate(original_data[column], dat_imputed[column], mask) for dat_imputed in run.tables]
    return pool_metrics(records)


def evaluate_all_imputations(original_data, missing_data, runs, columns):
    """
    Accuracy tables for several imputation runs.

    A failing (method, column) pair is logged and reported as a row of NaN;
    the other pairs are still scored.

    Parameters:
    -----------
    original_data : pd.DataFrame
        Complete ground truth
    missing_data : pd.DataFrame
        Table with injected missingness
    runs : dict
        {method_name: ImputationRun}
    columns : list
        Columns to score

    Returns:
    --------
    dict : {column: DataFrame indexed by method with MAE, MSE, RMSE, MAPE}
    """
    tables = {}
    for column in columns:
        rows = {}
        for method_name, run in runs.items():
            try:
                rows[method_name] = evaluate_run(original_data, missing_data, run, column)
            except (ImputationStudyError, KeyError) as e:
                logger.error(f"Evaluation failed for {method_name} on {column}: {e}")
                rows[method_name] = {metric: np.nan for metric in METRICS}
        table = pd.DataFrame.from_dict(rows, orient='index', columns=METRICS)
        table.index.name = 'method'
        tables[column] = table
    return tables
