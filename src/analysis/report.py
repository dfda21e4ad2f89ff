"""Accuracy tables and figures for a finished imputation study."""

import os
import logging

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from src.pipeline.imputation_study.evaluator import METRICS
from src.pipeline.imputation_study.simulator import accuracy_table

logger = logging.getLogger(__name__)


def format_accuracy_table(table, decimals=4):
    """Round an accuracy table and order methods by RMSE (best first)."""
    return table[METRICS].sort_values('RMSE').round(decimals)


def plot_density_comparison(observed, imputed, column, method, output_path):
    """Overlay the density of observed values and imputed-only values."""
    plt.figure(figsize=(8, 5))
    sns.kdeplot(x=observed, label='Observed', fill=True, alpha=0.4, warn_singular=False)
    sns.kdeplot(x=imputed, label='Imputed', fill=True, alpha=0.4, warn_singular=False)
    plt.title(f'{column}: observed vs {method}-imputed values')
    plt.xlabel(column)
    plt.ylabel('Density')
    plt.legend()
    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close()


def plot_accuracy_heatmap(results, metric, output_path):
    """Heatmap of one metric, methods by target column."""
    pivot = results.pivot_table(index='method', columns='column', values=metric, aggfunc='mean')
    plt.figure(figsize=(8, 6))
    sns.heatmap(pivot, annot=True, fmt=".3f", cmap='viridis_r', linewidths=.5,
                cbar_kws={'label': metric})
    plt.title(f'{metric} of Imputation Methods by Target Column')
    plt.xticks(rotation=45, ha='right')
    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close()


def write_report(study, results, output_dir):
    """
    Write accuracy tables and figures for a finished study.

    Parameters:
    -----------
    study : ImputationStudy
        Study holding the imputed runs
    results : pd.DataFrame
        Long results frame from ``study.run_all``
    output_dir : str
        Directory for CSV tables and PNG figures

    Returns:
    --------
    list : Paths of the files written
    """
    os.makedirs(output_dir, exist_ok=True)
    written = []

    path = os.path.join(output_dir, 'results_all.csv')
    results.to_csv(path, index=False)
    written.append(path)

    for missingness in results['missingness'].unique():
        for column in results.loc[results['missingness'] == missingness, 'column'].unique():
            table = format_accuracy_table(accuracy_table(results, column, missingness=missingness))
            path = os.path.join(output_dir, f'accuracy_{missingness}_{column}.csv')
            table.to_csv(path)
            written.append(path)
            logger.info(f"Accuracy for {column} under {missingness}:\n{table.to_string()}")

    for (missingness, method), run in study.runs.items():
        for column in run.target_columns:
            densities = study.density_inputs(missingness, method, column)
            if len(densities['imputed']) == 0:
                continue
            path = os.path.join(output_dir, f'density_{missingness}_{method}_{column}.png')
            plot_density_comparison(densities['observed'], densities['imputed'], column, method, path)
            written.append(path)

    scored = results.dropna(subset=['RMSE'])
    if not scored.empty:
        path = os.path.join(output_dir, 'rmse_heatmap.png')
        plot_accuracy_heatmap(scored, 'RMSE', path)
        written.append(path)

    logger.info(f"Report written to {output_dir} ({len(written)} files)")
    return written
