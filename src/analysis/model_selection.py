"""Regression fits and subset selection for tabular data.

OLS and logistic regression summaries, best-subset / forward / backward
selection paths scored by RSS-based criteria, and k-fold cross-validation
of a selection path.
"""

import logging
from dataclasses import dataclass
from itertools import combinations

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression, LogisticRegression
from sklearn.model_selection import KFold, cross_val_score

from src.pipeline.imputation_study.exceptions import InvalidParameterError

logger = logging.getLogger(__name__)

CRITERIA = ('adj_r2', 'cp', 'aic', 'bic')
PATH_COLUMNS = ['size', 'predictors', 'rss', 'r2', 'adj_r2', 'cp', 'aic', 'bic']


@dataclass
class OLSResult:
    coefficients: pd.DataFrame
    r2: float
    adj_r2: float
    rss: float
    aic: float
    bic: float
    n: int
    k: int


@dataclass
class LogisticResult:
    coefficients: pd.Series
    log_likelihood: float
    aic: float
    accuracy: float


def _check_predictors(data, response, predictors):
    predictors = list(predictors)
    if not predictors:
        raise InvalidParameterError("At least one predictor is required.")
    absent = [col for col in predictors + [response] if col not in data.columns]
    if absent:
        raise InvalidParameterError(f"Columns not found in data: {absent}")
    return predictors


def _design(data, predictors):
    return np.column_stack([np.ones(len(data))] + [data[col].to_numpy(dtype=float) for col in predictors])


def _rss(X, y):
    beta, _, _, _ = np.linalg.lstsq(X, y, rcond=None)
    resid = y - X @ beta
    return float(resid @ resid)


def fit_ols(data, response, predictors):
    """
    Ordinary least squares with an intercept.

    Returns an OLSResult whose coefficient table has estimate, std_error,
    t_value and p_value per term. AIC and BIC use the Gaussian profile
    likelihood up to a constant: n*log(RSS/n) + penalty*(k + 1).
    """
    predictors = _check_predictors(data, response, predictors)
    X = _design(data, predictors)
    y = data[response].to_numpy(dtype=float)
    n, k = len(y), len(predictors)
    df_resid = n - k - 1
    if df_resid <= 0:
        raise InvalidParameterError(f"Need more rows than parameters. Got n={n} for {k + 1} parameters.")

    beta, _, _, _ = np.linalg.lstsq(X, y, rcond=None)
    resid = y - X @ beta
    rss = float(resid @ resid)
    tss = float(np.sum((y - y.mean()) ** 2))
    sigma2 = rss / df_resid

    std_error = np.sqrt(np.diag(sigma2 * np.linalg.pinv(X.T @ X)))
    with np.errstate(divide='ignore', invalid='ignore'):
        t_value = beta / std_error
    p_value = 2 * stats.t.sf(np.abs(t_value), df_resid)

    coefficients = pd.DataFrame(
        {'estimate': beta, 'std_error': std_error, 't_value': t_value, 'p_value': p_value},
        index=['Intercept'] + predictors,
    )
    r2 = 1 - rss / tss if tss > 0 else 0.0
    return OLSResult(
        coefficients=coefficients,
        r2=r2,
        adj_r2=1 - (1 - r2) * (n - 1) / df_resid,
        rss=rss,
        aic=n * np.log(rss / n) + 2 * (k + 1),
        bic=n * np.log(rss / n) + np.log(n) * (k + 1),
        n=n,
        k=k,
    )


def fit_logistic(data, response, predictors):
    """Unpenalised logistic regression for a two-valued response."""
    predictors = _check_predictors(data, response, predictors)
    classes = np.sort(data[response].unique())
    if len(classes) != 2:
        raise InvalidParameterError(f"{response} must take exactly two values. Got {len(classes)}.")
    y = (data[response] == classes[1]).astype(int).to_numpy()
    X = data[predictors].to_numpy(dtype=float)

    model = LogisticRegression(penalty=None, max_iter=1000)
    model.fit(X, y)
    proba = np.clip(model.predict_proba(X)[:, 1], 1e-15, 1 - 1e-15)
    log_likelihood = float(np.sum(y * np.log(proba) + (1 - y) * np.log(1 - proba)))

    coefficients = pd.Series(np.concatenate([model.intercept_, model.coef_[0]]),
                             index=['Intercept'] + predictors)
    return LogisticResult(
        coefficients=coefficients,
        log_likelihood=log_likelihood,
        aic=-2 * log_likelihood + 2 * (len(predictors) + 1),
        accuracy=float(np.mean(model.predict(X) == y)),
    )


def _path_row(data, response, subset, sigma2_full):
    fit = fit_ols(data, response, subset)
    d = len(subset) + 1
    return {
        'size': len(subset),
        'predictors': tuple(subset),
        'rss': fit.rss,
        'r2': fit.r2,
        'adj_r2': fit.adj_r2,
        'cp': (fit.rss + 2 * d * sigma2_full) / fit.n,
        'aic': fit.aic,
        'bic': fit.bic,
    }


def _full_model_variance(data, response, predictors):
    fit = fit_ols(data, response, predictors)
    return fit.rss / (fit.n - fit.k - 1)


def best_subset(data, response, predictors, max_size=None):
    """Exhaustive search: the lowest-RSS model of every size up to max_size."""
    predictors = _check_predictors(data, response, predictors)
    max_size = len(predictors) if max_size is None else min(max_size, len(predictors))
    if max_size < 1:
        raise InvalidParameterError(f"max_size must be at least 1. Got {max_size}.")

    y = data[response].to_numpy(dtype=float)
    sigma2_full = _full_model_variance(data, response, predictors)
    rows = []
    for size in range(1, max_size + 1):
        best = min(combinations(predictors, size), key=lambda subset: _rss(_design(data, subset), y))
        rows.append(_path_row(data, response, list(best), sigma2_full))
        logger.debug(f"Best subset of size {size}: {best}")
    return pd.DataFrame(rows, columns=PATH_COLUMNS)


def forward_selection(data, response, predictors):
    """Greedy forward path: add the predictor that lowers RSS most at each step."""
    predictors = _check_predictors(data, response, predictors)
    y = data[response].to_numpy(dtype=float)
    sigma2_full = _full_model_variance(data, response, predictors)

    selected, remaining, rows = [], list(predictors), []
    while remaining:
        best = min(remaining, key=lambda col: _rss(_design(data, selected + [col]), y))
        selected.append(best)
        remaining.remove(best)
        rows.append(_path_row(data, response, selected, sigma2_full))
    return pd.DataFrame(rows, columns=PATH_COLUMNS)


def backward_selection(data, response, predictors):
    """Greedy backward path: drop the predictor whose removal raises RSS least."""
    predictors = _check_predictors(data, response, predictors)
    y = data[response].to_numpy(dtype=float)
    sigma2_full = _full_model_variance(data, response, predictors)

    selected = list(predictors)
    rows = [_path_row(data, response, selected, sigma2_full)]
    while len(selected) > 1:
        drop = min(selected, key=lambda col: _rss(_design(data, [c for c in selected if c != col]), y))
        selected.remove(drop)
        rows.append(_path_row(data, response, selected, sigma2_full))
    return pd.DataFrame(rows[::-1], columns=PATH_COLUMNS).reset_index(drop=True)


def select_model(path, criterion='bic'):
    """Return the path row that is best under ``criterion``."""
    if criterion not in CRITERIA:
        raise InvalidParameterError(f"criterion must be one of {CRITERIA}. Got {criterion!r}.")
    best = path[criterion].idxmax() if criterion == 'adj_r2' else path[criterion].idxmin()
    return path.loc[best]


def cross_validate_path(data, response, path, n_splits=10, seed=123):
    """Add a ``cv_mse`` column: k-fold CV mean squared error of each path model."""
    if n_splits < 2:
        raise InvalidParameterError(f"n_splits must be at least 2. Got {n_splits}.")
    folds = KFold(n_splits=n_splits, shuffle=True, random_state=seed)
    y = data[response].to_numpy(dtype=float)

    cv_mse = []
    for subset in path['predictors']:
        X = data[list(subset)].to_numpy(dtype=float)
        scores = cross_val_score(LinearRegression(), X, y, cv=folds, scoring='neg_mean_squared_error')
        cv_mse.append(-scores.mean())

    path = path.copy()
    path['cv_mse'] = cv_mse
    return path
