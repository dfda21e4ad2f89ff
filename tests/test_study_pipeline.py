import pytest
import pandas as pd
import numpy as np
import sys
import os
import json
import logging
import warnings
from numpy.random import default_rng

# Add parent directory to path to import from src and run_study
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.pipeline.imputation_study.config import MICEConfig, KNNConfig, MissForestConfig, load_config
from src.pipeline.imputation_study.data_loaders import generate_data, load_reference_data, load_table
from src.pipeline.imputation_study.evaluator import METRICS, evaluate
from src.pipeline.imputation_study.exceptions import (
    InvalidParameterError, DegenerateColumnError, NonConvergenceWarning
)
from src.pipeline.imputation_study.imputation_methods import (
    MeanImputation, MICEImputation, KNNImputation, MissForestImputation
)
from src.pipeline.imputation_study.missingness_patterns import MARQuantilePattern
from src.pipeline.imputation_study.simulator import ImputationStudy, accuracy_table

# --- Fixtures for common setup ---

@pytest.fixture(scope="module")
def complete_data():
    return generate_data(n=150, p=4, correlation=0.5, rng=default_rng(42))

@pytest.fixture(scope="module")
def pattern():
    return MARQuantilePattern([('X1', 'X2'), ('X3', 'X4')], proportion=0.3)

@pytest.fixture(scope="module")
def fast_methods():
    return [
        MeanImputation(),
        MICEImputation(MICEConfig(m=2, maxit=4)),
        KNNImputation(KNNConfig(k=5)),
        MissForestImputation(MissForestConfig(maxiter=2, n_estimators=20)),
    ]

@pytest.fixture(scope="module")
def finished_study(complete_data, pattern, fast_methods):
    study = ImputationStudy(complete_data, seed=123)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NonConvergenceWarning)
        results = study.run_all([pattern], fast_methods)
    return study, results

# ----------------------------------------------------------------------
# TEST 1: End-to-end scenario on a ten-row table
# ----------------------------------------------------------------------
def test_01_ten_row_scenario():
    """Inject, mean-impute and score B = 10..1 driven by A = 1..10."""
    data = pd.DataFrame({'A': np.arange(1.0, 11.0), 'B': np.arange(10.0, 0.0, -1.0)})
    dat_miss = MARQuantilePattern([('A', 'B')], proportion=0.5).apply(data)
    mask = dat_miss['B'].isna()
    assert mask.sum() == 5

    run = MeanImputation().impute(dat_miss, ['B'])
    metrics = evaluate(data['B'], run.table['B'], mask)
    assert metrics['MAE'] > 0

# ----------------------------------------------------------------------
# TEST 2: Full study over every method
# ----------------------------------------------------------------------
def test_02_run_all_scores_every_pair(finished_study, fast_methods):
    """One result row per (method, column), all scored without errors."""
    study, results = finished_study
    assert len(results) == len(fast_methods) * 2
    assert results['error'].isna().all()
    assert results[METRICS].notna().all().all()
    assert (results[METRICS] >= 0).all().all()
    assert set(results.loc[results['method'] == 'mice_norm', 'm']) == {2}

def test_03_accuracy_table_layout(finished_study, fast_methods):
    """Rows are methods, columns are the four metrics."""
    _, results = finished_study
    table = accuracy_table(results, 'X2')
    assert list(table.columns) == METRICS
    assert list(table.index) == [method.name for method in fast_methods]

def test_04_density_inputs(finished_study, complete_data):
    """Observed values plus imputed-only values, pooled over completions."""
    study, _ = finished_study
    n_missing = study.missing_data['mar_quantile']['X2'].isna().sum()

    densities = study.density_inputs('mar_quantile', 'mice_norm', 'X2')
    assert len(densities['observed']) == len(complete_data) - n_missing
    assert len(densities['imputed']) == 2 * n_missing

    densities = study.density_inputs('mar_quantile', 'knn', 'X2')
    assert len(densities['imputed']) == n_missing

# ----------------------------------------------------------------------
# TEST 5: Failures stay local to their scenario
# ----------------------------------------------------------------------
def test_05_failing_method_is_isolated(complete_data, pattern, caplog):
    """An unusable k fails KNN only; mean imputation is still scored."""
    study = ImputationStudy(complete_data, seed=123)
    with caplog.at_level(logging.ERROR):
        results = study.run_all([pattern], [KNNImputation(KNNConfig(k=500)), MeanImputation()])

    knn_rows = results[results['method'] == 'knn']
    mean_rows = results[results['method'] == 'mean']
    assert knn_rows['error'].notna().all()
    assert knn_rows['MAE'].isna().all()
    assert mean_rows['error'].isna().all()
    assert mean_rows['MAE'].notna().all()
    assert any("knn failed" in record.message for record in caplog.records)

def test_06_incomplete_ground_truth_is_rejected(complete_data):
    data = complete_data.copy()
    data.loc[0, 'X1'] = np.nan
    with pytest.raises(InvalidParameterError):
        ImputationStudy(data)

# ----------------------------------------------------------------------
# TEST 7: Data loading
# ----------------------------------------------------------------------
def test_07_reference_dataset_is_complete():
    data = load_reference_data()
    assert data.shape == (442, 11)
    assert not data.isna().any().any()
    assert {'bmi', 'bp', 's5', 's6', 'target'} <= set(data.columns)

def test_08_load_table_keeps_numeric_complete_rows(tmp_path):
    path = tmp_path / 'crime.csv'
    pd.DataFrame({
        'city': ['a', 'b', 'c'],
        'rate': [1.0, np.nan, 3.0],
        'police': [10, 20, 30],
    }).to_csv(path, index=False)

    data = load_table(path)
    assert list(data.columns) == ['rate', 'police']
    assert len(data) == 2
    assert list(data.index) == [0, 1]

def test_09_load_table_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_table(tmp_path / 'missing.csv')
    path = tmp_path / 'text.csv'
    pd.DataFrame({'city': ['a', 'b']}).to_csv(path, index=False)
    with pytest.raises(DegenerateColumnError):
        load_table(path)

# ----------------------------------------------------------------------
# TEST 10: JSON configuration and the driver
# ----------------------------------------------------------------------
def test_10_json_config_loading(tmp_path):
    """Nested option dicts become validated records."""
    config_path = tmp_path / 'config.json'
    config_path.write_text(json.dumps({
        'dataset': 'synthetic',
        'pairs': [['X1', 'X2']],
        'proportion': 0.4,
        'mice': {'m': 3, 'maxit': 5, 'method': 'pmm'},
        'knn': {'k': 7},
    }))

    config = load_config(config_path)
    assert config.pairs == [('X1', 'X2')]
    assert isinstance(config.mice, MICEConfig)
    assert config.mice.method == 'pmm'
    assert config.knn.k == 7
    assert isinstance(config.missforest, MissForestConfig)

def test_11_json_config_missing_keys(tmp_path):
    config_path = tmp_path / 'config.json'
    config_path.write_text(json.dumps({'dataset': 'reference'}))
    with pytest.raises(InvalidParameterError) as exc_info:
        load_config(config_path)
    assert "Missing required configuration keys" in str(exc_info.value)

def test_12_json_config_bad_values(tmp_path):
    config_path = tmp_path / 'config.json'
    config_path.write_text(json.dumps({
        'dataset': 'synthetic', 'pairs': [['X1', 'X2']], 'proportion': 0.3, 'knn': {'k': 0},
    }))
    with pytest.raises(InvalidParameterError):
        load_config(config_path)

def test_13_run_study_with_json_config(tmp_path, caplog):
    """The driver runs end to end from a config file and writes its report."""
    from run_study import run_study

    config_path = tmp_path / 'config.json'
    config_path.write_text(json.dumps({
        'dataset': 'synthetic',
        'pairs': [['X1', 'X2'], ['X3', 'X4']],
        'proportion': 0.3,
        'seed': 42,
        'methods': ['mean', 'knn'],
        'output_dir': str(tmp_path / 'report'),
    }))

    with caplog.at_level(logging.INFO):
        results, study = run_study(config_file=config_path)

    assert "Loaded configuration from" in caplog.text
    assert "Study complete" in caplog.text
    assert len(results) == 4
    assert results['error'].isna().all()

    report_dir = tmp_path / 'report' / 'synthetic_prop_0.3_seed_42'
    assert (report_dir / 'results_all.csv').exists()
    assert (report_dir / 'accuracy_mar_quantile_X2.csv').exists()
    assert (report_dir / 'density_mar_quantile_knn_X4.png').exists()

# ----------------------------------------------------------------------
# TEST 14: Several patterns and method configurations in one study
# ----------------------------------------------------------------------
def test_14_patterns_and_methods_sharing_a_name(complete_data):
    """Each pattern and each KNN configuration keeps its own table, run and rows."""
    patterns = [
        MARQuantilePattern([('X1', 'X2')], proportion=0.2),
        MARQuantilePattern([('X3', 'X4')], proportion=0.6),
    ]
    methods = [KNNImputation(KNNConfig(k=3)), KNNImputation(KNNConfig(k=50))]
    study = ImputationStudy(complete_data, seed=123)
    results = study.run_all(patterns, methods)

    assert results['error'].isna().all()
    assert set(results['missingness']) == {'mar_quantile_p0.2_X1-X2', 'mar_quantile_p0.6_X3-X4'}
    assert set(results['method']) == {'knn_k3_uniform', 'knn_k50_uniform'}
    assert len(study.runs) == 4

    first = study.missing_data['mar_quantile_p0.2_X1-X2']
    second = study.missing_data['mar_quantile_p0.6_X3-X4']
    assert first['X2'].isna().sum() == 30 and first['X4'].isna().sum() == 0
    assert second['X4'].isna().sum() == 90 and second['X2'].isna().sum() == 0

    x4 = accuracy_table(results, 'X4')
    assert x4.loc['knn_k3_uniform', 'MAE'] != x4.loc['knn_k50_uniform', 'MAE']

def test_15_same_pairs_different_proportions(complete_data):
    """Proportion alone is enough to keep two patterns apart."""
    patterns = [
        MARQuantilePattern([('X1', 'X2')], proportion=0.2),
        MARQuantilePattern([('X1', 'X2')], proportion=0.6),
    ]
    study = ImputationStudy(complete_data, seed=123)
    results = study.run_all(patterns, [MeanImputation(), MeanImputation()])

    assert set(results['method']) == {'mean', 'mean_2'}
    assert study.missing_data['mar_quantile_p0.2_X1-X2']['X2'].isna().sum() == 30
    assert study.missing_data['mar_quantile_p0.6_X1-X2']['X2'].isna().sum() == 90
    low = accuracy_table(results[results['method'] == 'mean'], 'X2', missingness='mar_quantile_p0.2_X1-X2')
    high = accuracy_table(results[results['method'] == 'mean'], 'X2', missingness='mar_quantile_p0.6_X1-X2')
    assert low.loc['mean', 'MAE'] != high.loc['mean', 'MAE']

def test_16_failing_pattern_is_isolated(complete_data, caplog):
    """A pattern naming an absent column fails alone; the next pattern still runs."""
    patterns = [
        MARQuantilePattern([('X1', 'nope')], proportion=0.2),
        MARQuantilePattern([('X1', 'X2')], proportion=0.2),
    ]
    study = ImputationStudy(complete_data, seed=123)
    with caplog.at_level(logging.ERROR):
        results = study.run_all(patterns, [MeanImputation()])

    bad = results[results['column'] == 'nope']
    good = results[results['column'] == 'X2']
    assert len(bad) == 1 and "nope" in bad['error'].iloc[0]
    assert bad['MAE'].isna().all()
    assert good['error'].isna().all() and good['MAE'].notna().all()
    assert any("Missingness pattern" in record.message for record in caplog.records)
