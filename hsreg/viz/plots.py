"""Plotting utilities for posterior coefficients."""
from __future__ import annotations

from typing import Mapping, Optional, Sequence, Tuple

import arviz as az
import matplotlib.pyplot as plt
import numpy as np

from hsreg.models.bayes_regression import FittedModel


def _get_fig_ax(ax: Optional[plt.Axes], figsize: Tuple[float, float] = (6.4, 4.8)) -> Tuple[plt.Figure, plt.Axes]:
    """Return a figure/axes pair, creating one if needed."""
    if ax is None:
        fig, new_ax = plt.subplots(figsize=figsize)
        return fig, new_ax
    return ax.figure, ax


def coefficient_intervals(
    fitted: FittedModel,
    *,
    prob: float = 0.95,
    ax: Optional[plt.Axes] = None,
    title: Optional[str] = None,
) -> plt.Axes:
    """Posterior mean with central ``prob`` interval for every coefficient."""
    draws = fitted.coef_samples
    names = list(fitted.coef_names)
    fig, ax = _get_fig_ax(ax, figsize=(6.4, max(3.0, 0.3 * len(names) + 1.0)))

    lo, hi = np.quantile(draws, [(1 - prob) / 2, (1 + prob) / 2], axis=0)
    mean = draws.mean(axis=0)
    y = np.arange(len(names))[::-1]

    ax.hlines(y, lo, hi, color="tab:blue", linewidth=2)
    ax.plot(mean, y, "o", color="black", markersize=4)
    ax.axvline(0.0, color="grey", linestyle="--", linewidth=1)
    ax.set_yticks(y)
    ax.set_yticklabels(names)
    ax.set_xlabel("Coefficient")
    ax.set_title(title or f"{fitted.name}: posterior {prob:.0%} intervals")
    fig.tight_layout()
    return ax


def coefficient_bar(
    models: Mapping[str, FittedModel],
    *,
    coefficients: Optional[Sequence[str]] = None,
    ax: Optional[plt.Axes] = None,
    title: Optional[str] = None,
) -> plt.Axes:
    """Grouped bars of posterior means across models."""
    fitted_list = list(models.values())
    names = list(coefficients or fitted_list[0].coef_names)
    fig, ax = _get_fig_ax(ax, figsize=(max(6.4, 0.5 * len(names)), 4.8))
    width = 0.8 / max(1, len(fitted_list))
    idx = np.arange(len(names))
    for k, (label, fitted) in enumerate(models.items()):
        means = fitted.posterior_mean().reindex(names).to_numpy()
        ax.bar(idx + k * width, means, width=width, label=label)
    ax.axhline(0.0, color="black", linewidth=0.8)
    ax.set_xticks(idx + width * (len(fitted_list) - 1) / 2)
    ax.set_xticklabels(names, rotation=60, ha="right")
    ax.set_ylabel("Posterior mean")
    ax.set_title(title or "Coefficient estimates")
    ax.legend()
    fig.tight_layout()
    return ax


def posterior_density(
    models: Mapping[str, FittedModel],
    coefficient: str,
    *,
    bins: int = 40,
    ax: Optional[plt.Axes] = None,
    title: Optional[str] = None,
) -> plt.Axes:
    """Overlaid posterior histograms of one coefficient."""
    fig, ax = _get_fig_ax(ax)
    for label, fitted in models.items():
        ax.hist(fitted.coefficient(coefficient), bins=bins, density=True, alpha=0.5, label=label)
    ax.axvline(0.0, color="black", linestyle="--", linewidth=1)
    ax.set_xlabel(coefficient)
    ax.set_ylabel("Density")
    ax.set_title(title or f"Posterior of {coefficient}")
    ax.legend()
    fig.tight_layout()
    return ax


def forest_comparison(
    models: Mapping[str, FittedModel],
    *,
    hdi_prob: float = 0.95,
) -> plt.Figure:
    """ArviZ forest plot of ``beta`` for several models on shared axes."""
    idatas = [fitted.to_inference_data() for fitted in models.values()]
    n_coef = len(next(iter(models.values())).coef_names)
    axes = az.plot_forest(
        idatas,
        model_names=list(models.keys()),
        var_names=["beta"],
        combined=True,
        hdi_prob=hdi_prob,
        figsize=(7.0, max(4.0, 0.45 * n_coef)),
    )
    fig = np.ravel(axes)[0].figure
    fig.tight_layout()
    return fig
