"""Imputation method classes for imputation studies."""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.random import default_rng
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import BayesianRidge, LinearRegression
from sklearn.neighbors import NearestNeighbors
from sklearn.preprocessing import StandardScaler
from tqdm import tqdm

from src.pipeline.imputation_study.config import KNNConfig, MICEConfig, MissForestConfig
from src.pipeline.imputation_study.exceptions import (
    DegenerateColumnError,
    InvalidParameterError,
    NonConvergenceWarning,
)

logger = logging.getLogger(__name__)


@dataclass
class ImputationRun:
    """One execution of one imputation method against one table.

    ``tables`` holds the completed datasets: one for deterministic methods,
    ``m`` for multiple imputation. ``converged`` is None for methods that do
    not iterate.
    """
    method: str
    target_columns: list
    tables: list
    diagnostics: pd.DataFrame = None
    converged: bool = None
    n_iter: int = 0

    @property
    def m(self):
        return len(self.tables)

    @property
    def table(self):
        return self.tables[0]


def validate_target_columns(data, target_columns):
    """Check requested columns exist, are numeric and have observed values."""
    if isinstance(target_columns, str):
        target_columns = [target_columns]
    target_columns = list(target_columns)
    if not target_columns:
        raise InvalidParameterError("At least one target column is required.")
    absent = [col for col in target_columns if col not in data.columns]
    if absent:
        raise InvalidParameterError(f"Target columns not found in data: {absent}")
    non_numeric = [col for col in target_columns if not pd.api.types.is_numeric_dtype(data[col])]
    if non_numeric:
        raise InvalidParameterError(f"Target columns must be numeric: {non_numeric}")
    degenerate = [col for col in target_columns if data[col].notna().sum() == 0]
    if degenerate:
        raise DegenerateColumnError(f"No observed values to impute from in {degenerate}")
    return target_columns


def predictor_frame(data, target_columns):
    """Numeric non-target columns, mean-filled where they have gaps.

    The fill only feeds model fitting and is never written back.
    """
    others = [col for col in data.select_dtypes(include='number').columns if col not in target_columns]
    predictors = data[others].astype(float).dropna(axis=1, how='all')
    if predictors.isna().any().any():
        predictors = predictors.fillna(predictors.mean())
    return predictors


def _check_has_predictors(predictors, target_columns):
    if predictors.shape[1] + len(target_columns) - 1 < 1:
        raise InvalidParameterError("Model-based imputation needs at least one other numeric column as a predictor.")


def gelman_rubin(traces):
    """
    Potential scale reduction factor (R-hat) for a set of chains.

    Parameters:
    -----------
    traces : array-like, shape (n_chains, n_draws)
        Per-iteration statistic of each chain

    Returns:
    --------
    float : R-hat; 1.0 when chains agree, larger when they have not mixed
    """
    traces = np.asarray(traces, dtype=float)
    n = traces.shape[1]
    within = traces.var(axis=1, ddof=1).mean()
    between = n * traces.mean(axis=1).var(ddof=1)
    if within == 0:
        return 1.0 if between == 0 else np.inf
    var_hat = (n - 1) / n * within + between / n
    return float(np.sqrt(var_hat / within))


class ImputationMethod(ABC):
    """Abstract base class for imputation methods.

    All imputation methods must implement:
    - impute(data, target_columns): Return an ImputationRun
    - name: Property for descriptive name

    Implementations only write to cells that are missing in the requested
    columns; everything else passes through unchanged.
    """

    @abstractmethod
    def impute(self, data, target_columns):
        pass

    @property
    @abstractmethod
    def name(self):
        pass

    @property
    def label(self):
        """Name qualified by the method's settings."""
        return self.name


class MeanImputation(ImputationMethod):
    def impute(self, data, target_columns):
        target_columns = validate_target_columns(data, target_columns)
        dat_imputed = data.copy()
        for col in target_columns:
            dat_imputed[col] = dat_imputed[col].fillna(data[col].mean())
        return ImputationRun(self.name, target_columns, [dat_imputed])

    @property
    def name(self):
        return 'mean'


class MICEImputation(ImputationMethod):
    """Multiple imputation by chained equations.

    Runs ``m`` chains in lockstep, each with its own generator spawned from
    ``config.seed``. A sweep visits the target columns in order and redraws
    each column's missing cells from a model fit on its observed rows. The
    loop stops once the chain-mean traces of every column have mixed (R-hat
    below ``config.rhat_threshold``) or after ``config.maxit`` sweeps.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else MICEConfig()

    def impute(self, data, target_columns):
        cfg = self.config
        target_columns = validate_target_columns(data, target_columns)
        missing = data[target_columns].isna()
        if not missing.any().any():
            return ImputationRun(self.name, target_columns, [data.copy() for _ in range(cfg.m)])

        active = [col for col in target_columns if missing[col].any()]
        predictors = predictor_frame(data, target_columns)
        _check_has_predictors(predictors, target_columns)

        chain_rngs = default_rng(cfg.seed).spawn(cfg.m)
        chains = [self._initialise(data, target_columns, missing, active, rng) for rng in chain_rngs]

        # chain x iteration x column
        means = np.full((cfg.m, cfg.maxit, len(active)), np.nan)
        history = []
        converged = False
        n_iter = 0
        for iteration in tqdm(range(cfg.maxit), desc="MICE Iterations", leave=False):
            n_iter = iteration + 1
            for j, (work, rng) in enumerate(zip(chains, chain_rngs)):
                self._sweep(data, predictors, work, missing, active, rng)
                for c, col in enumerate(active):
                    imputed = work.loc[missing[col], col].to_numpy()
                    means[j, iteration, c] = imputed.mean()
                    history.append({
                        'chain': j,
                        'iteration': n_iter,
                        'column': col,
                        'mean': imputed.mean(),
                        'var': imputed.var(),
                    })
            rhats = [self._rhat(means[:, :n_iter, c]) for c in range(len(active))]
            logger.debug(f"MICE iteration {n_iter}: R-hat {dict(zip(active, rhats))}")
            if all(r is not None and r < cfg.rhat_threshold for r in rhats):
                converged = True
                break

        diagnostics = pd.DataFrame(history)
        if not converged:
            msg = (f"MICE ({cfg.method}) did not converge within maxit={cfg.maxit}; "
                   f"last R-hat {dict(zip(active, rhats))}")
            logger.warning(msg)
            warnings.warn(msg, NonConvergenceWarning)

        dat_imputed_list = []
        for work in chains:
            dat_imputed = data.copy()
            for col in active:
                dat_imputed.loc[missing[col], col] = work.loc[missing[col], col]
            dat_imputed_list.append(dat_imputed)
        return ImputationRun(self.name, target_columns, dat_imputed_list,
                             diagnostics=diagnostics, converged=converged, n_iter=n_iter)

    def _initialise(self, data, target_columns, missing, active, rng):
        work = data[target_columns].astype(float)
        for col in active:
            observed = data[col].dropna().to_numpy(dtype=float)
            work.loc[missing[col], col] = rng.choice(observed, size=int(missing[col].sum()))
        return work

    def _sweep(self, data, predictors, work, missing, active, rng):
        for col in active:
            X = pd.concat([predictors, work.drop(columns=col)], axis=1).to_numpy()
            mis = missing[col].to_numpy()
            y_obs = data[col].to_numpy(dtype=float)[~mis]
            work.loc[mis, col] = self._draw(X[~mis], y_obs, X[mis], rng)

    def _draw(self, X_obs, y_obs, X_mis, rng):
        method = self.config.method
        if method == 'norm.predict':
            return LinearRegression().fit(X_obs, y_obs).predict(X_mis)

        model = BayesianRidge().fit(X_obs, y_obs)
        if method == 'norm':
            mu, sigma = model.predict(X_mis, return_std=True)
            return rng.normal(mu, sigma)

        # Predictive mean matching: drawn coefficients for the missing rows,
        # fitted ones for the donors.
        beta = rng.multivariate_normal(model.coef_, model.sigma_)
        intercept = y_obs.mean() - X_obs.mean(axis=0) @ beta
        yhat_mis = X_mis @ beta + intercept
        yhat_obs = model.predict(X_obs)
        n_donors = min(self.config.donors, len(y_obs))
        nearest = np.argsort(np.abs(yhat_mis[:, None] - yhat_obs[None, :]), axis=1)[:, :n_donors]
        picks = nearest[np.arange(len(yhat_mis)), rng.integers(0, n_donors, size=len(yhat_mis))]
        return y_obs[picks]

    def _rhat(self, traces):
        """R-hat over the latter half of the traces, or None if too short."""
        window = traces[:, traces.shape[1] // 2:]
        if window.shape[0] == 1:
            half = window.shape[1] // 2
            if half < 2:
                return None
            window = np.vstack([window[0, :half], window[0, -half:]])
        elif window.shape[1] < 2:
            return None
        return gelman_rubin(window)

    @property
    def name(self):
        return f"mice_{self.config.method.replace('.', '_')}"

    @property
    def label(self):
        cfg = self.config
        return f"{self.name}_m{cfg.m}_maxit{cfg.maxit}_seed{cfg.seed}"


class KNNImputation(ImputationMethod):
    """Nearest-neighbour imputation.

    Donors are the fully observed rows. Distance is Euclidean over the
    standardised numeric columns that are neither targets nor incomplete.
    """

    def __init__(self, config=None):
        self.config = config if config is not None else KNNConfig()

    def impute(self, data, target_columns):
        cfg = self.config
        target_columns = validate_target_columns(data, target_columns)
        missing = data[target_columns].isna()
        if not missing.any().any():
            return ImputationRun(self.name, target_columns, [data.copy()])

        numeric = data.select_dtypes(include='number')
        features = [col for col in numeric.columns
                    if col not in target_columns and not numeric[col].isna().any()]
        if not features:
            raise InvalidParameterError("KNN imputation needs at least one fully observed non-target numeric column.")

        complete_rows = numeric.notna().all(axis=1).to_numpy()
        n_complete = int(complete_rows.sum())
        if cfg.k >= n_complete:
            raise InvalidParameterError(
                f"k={cfg.k} must be smaller than the number of fully observed rows ({n_complete})."
            )

        scaled = StandardScaler().fit_transform(numeric[features])
        neighbours = NearestNeighbors(n_neighbors=cfg.k).fit(scaled[complete_rows])

        dat_imputed = data.copy()
        for col in target_columns:
            mis = missing[col].to_numpy()
            if not mis.any():
                continue
            distances, indices = neighbours.kneighbors(scaled[mis])
            donor_values = numeric[col].to_numpy(dtype=float)[complete_rows][indices]
            dat_imputed.loc[mis, col] = self._aggregate(donor_values, distances)
        return ImputationRun(self.name, target_columns, [dat_imputed])

    def _aggregate(self, donor_values, distances):
        if self.config.weights == 'uniform':
            return donor_values.mean(axis=1)
        exact = distances == 0
        with np.errstate(divide='ignore'):
            weights = 1.0 / distances
        # Exact matches take all the weight
        weights = np.where(exact.any(axis=1, keepdims=True), exact.astype(float), weights)
        return (weights * donor_values).sum(axis=1) / weights.sum(axis=1)

    @property
    def name(self):
        return 'knn'

    @property
    def label(self):
        return f"{self.name}_k{self.config.k}_{self.config.weights}"


class MissForestImputation(ImputationMethod):
    """Iterative random-forest imputation (missForest)."""

    def __init__(self, config=None):
        self.config = config if config is not None else MissForestConfig()

    def impute(self, data, target_columns):
        cfg = self.config
        target_columns = validate_target_columns(data, target_columns)
        missing = data[target_columns].isna()
        if not missing.any().any():
            return ImputationRun(self.name, target_columns, [data.copy()])

        predictors = predictor_frame(data, target_columns)
        _check_has_predictors(predictors, target_columns)

        work = data[target_columns].astype(float)
        work = work.fillna(work.mean())
        # Least-missing columns first
        active = sorted((col for col in target_columns if missing[col].any()),
                        key=lambda col: missing[col].sum())

        history = []
        converged = False
        n_iter = 0
        for iteration in range(cfg.maxiter):
            n_iter = iteration + 1
            previous = work.copy()
            for col in active:
                X = pd.concat([predictors, work.drop(columns=col)], axis=1).to_numpy()
                mis = missing[col].to_numpy()
                model = RandomForestRegressor(n_estimators=cfg.n_estimators, random_state=cfg.seed)
                model.fit(X[~mis], work[col].to_numpy()[~mis])
                work.loc[mis, col] = model.predict(X[mis])
            change = self._change(previous, work, missing, active)
            history.append({'iteration': n_iter, 'change': change})
            logger.debug(f"MissForest iteration {n_iter}: change = {change:.6g}")
            if change < cfg.tol:
                converged = True
                break

        if not converged:
            msg = f"MissForest did not converge within maxiter={cfg.maxiter}; last change {change:.6g} >= tol {cfg.tol}"
            logger.warning(msg)
            warnings.warn(msg, NonConvergenceWarning)

        dat_imputed = data.copy()
        for col in active:
            dat_imputed.loc[missing[col], col] = work.loc[missing[col], col]
        return ImputationRun(self.name, target_columns, [dat_imputed],
                             diagnostics=pd.DataFrame(history), converged=converged, n_iter=n_iter)

    def _change(self, previous, current, missing, active):
        """Sum over columns of squared change in imputed cells, scaled by their squared size."""
        total = 0.0
        for col in active:
            mis = missing[col].to_numpy()
            new = current.loc[mis, col].to_numpy()
            old = previous.loc[mis, col].to_numpy()
            squared_change = np.sum((new - old) ** 2)
            scale = np.sum(new ** 2)
            total += squared_change / scale if scale > 0 else squared_change
        return float(total)

    @property
    def name(self):
        return 'missforest'

    @property
    def label(self):
        cfg = self.config
        return f"{self.name}_trees{cfg.n_estimators}_maxiter{cfg.maxiter}_seed{cfg.seed}"
