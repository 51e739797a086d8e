"""
Experiment orchestration for the shrinkage demonstration.

:func:`run_experiment` is the public entry point invoked by the CLI
(`python -m hsreg.cli.run_experiment`). It expects a fully merged
configuration dictionary and an output directory, and

* simulates the brain-volume table and standardises continuous predictors,
* fits every configured model (with optional posterior cache and wall-clock budget),
* computes PSIS-LOO for each fit and ranks the models,
* writes summaries, diagnostics, plots and the comparison table.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import matplotlib.pyplot as plt

from data.generators import OUTCOME, simulate_brain_volume, simulation_config_from_dict
from data.preprocess import standardize_columns
from hsreg.diagnostics.convergence import ConvergenceError, DiagnosticThresholds
from hsreg.experiments.cache import PosteriorCache
from hsreg.experiments.compare import compare_models, compute_loo
from hsreg.experiments.registry import build_model
from hsreg.models.bayes_regression import FittedModel, SamplerConfig, fit_with_budget
from hsreg.models.formula import additive_formula
from hsreg.utils.io import ensure_dir, save_json
from hsreg.viz import plots
from hsreg.viz.tables import comparison_frame, frame_to_latex, print_comparison, print_summary

logger = logging.getLogger(__name__)


class ExperimentError(RuntimeError):
    """Raised when a configuration-driven experiment cannot be executed."""


def _section(config: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = config.get(key) or {}
    if not isinstance(value, Mapping):
        raise ExperimentError(f"Config section '{key}' must be a mapping, got {type(value).__name__}.")
    return dict(value)


def _resolve_seed(*candidates: Any) -> Optional[int]:
    for candidate in candidates:
        if candidate is None:
            continue
        try:
            return int(candidate)
        except (TypeError, ValueError):
            raise ExperimentError(f"Seed must be an integer, got {candidate!r}.") from None
    return None


def sampler_from_config(config: Mapping[str, Any]) -> SamplerConfig:
    nuts = dict(_section(_section(config, "inference"), "nuts"))
    seed = _resolve_seed(nuts.pop("seed", None), config.get("seed"), 0)
    try:
        return SamplerConfig.from_dict({**nuts, "seed": seed})
    except (TypeError, ValueError) as exc:
        raise ExperimentError(f"Invalid inference.nuts settings: {exc}") from exc


def _fit_one(
    name: str,
    model_cfg: Mapping[str, Any],
    data,
    formula: str,
    sampler: SamplerConfig,
    config: Mapping[str, Any],
    cache: Optional[PosteriorCache],
) -> FittedModel:
    diag_cfg = _section(config, "diagnostics")
    strict = bool(diag_cfg.pop("strict", True))
    thresholds = DiagnosticThresholds.from_dict(diag_cfg)
    model = build_model(name, model_cfg, sampler, thresholds=thresholds, strict=strict)

    budget_cfg = _section(config, "budget")
    budget = budget_cfg.get("seconds")

    def _fit(m, d, f):
        return fit_with_budget(
            m,
            d,
            f,
            budget_seconds=None if budget is None else float(budget),
            max_retries=int(budget_cfg.get("max_retries", 1)),
            reduce_factor=float(budget_cfg.get("reduce_factor", 0.5)),
        )

    if cache is not None:
        return cache.get_or_fit(model, data, formula, fit=_fit)
    return _fit(model, data, formula)


def _save_plots(models: Dict[str, FittedModel], coefficients: List[str], out_dir: Path) -> List[str]:
    written: List[str] = []
    plot_dir = ensure_dir(out_dir / "plots")

    for name, fitted in models.items():
        ax = plots.coefficient_intervals(fitted)
        path = plot_dir / f"intervals_{name}.png"
        ax.figure.savefig(path, dpi=150)
        plt.close(ax.figure)
        written.append(str(path))

    ax = plots.coefficient_bar(models)
    path = plot_dir / "coefficient_comparison.png"
    ax.figure.savefig(path, dpi=150)
    plt.close(ax.figure)
    written.append(str(path))

    fig = plots.forest_comparison(models)
    path = plot_dir / "forest.png"
    fig.savefig(path, dpi=150)
    plt.close(fig)
    written.append(str(path))

    for coef in coefficients:
        ax = plots.posterior_density(models, coef)
        path = plot_dir / f"density_{coef}.png"
        ax.figure.savefig(path, dpi=150)
        plt.close(ax.figure)
        written.append(str(path))
    return written


def run_experiment(config: Mapping[str, Any], out_dir: Path) -> Dict[str, Any]:
    """Run the full simulate/fit/compare pipeline and return summary metrics."""

    out_dir = ensure_dir(Path(out_dir))
    data_cfg = _section(config, "data")
    outputs_cfg = _section(config, "outputs")
    criterion_cfg = _section(config, "criterion")
    models_cfg = _section(config, "models")
    if len(models_cfg) < 2:
        raise ExperimentError("At least two models are required under 'models'.")

    # --- data
    n = int(data_cfg.get("n", 200))
    data_seed = _resolve_seed(data_cfg.get("seed"), config.get("seed"))
    sim_cfg = simulation_config_from_dict(data_cfg.get("simulation") or {})
    dataset = simulate_brain_volume(n, data_seed, config=sim_cfg)
    dataset.frame.to_csv(out_dir / "dataset.csv", index=False)

    std_cfg = _section(config, "standardization")
    columns = std_cfg.get("columns") or dataset.continuous_predictors
    standardized = standardize_columns(dataset.frame, columns=list(columns))
    frame = standardized.frame

    formula = config.get("formula") or additive_formula(OUTCOME, list(sim_cfg.predictors))
    save_json(
        {
            "n": n,
            "seed": data_seed,
            "formula": formula,
            "effects": dataset.effects,
            "null_predictors": dataset.null_predictors,
            "standardization": {"means": standardized.means, "scales": standardized.scales},
        },
        out_dir / "dataset_meta.json",
    )

    # --- fit
    sampler = sampler_from_config(config)
    cache_cfg = _section(config, "cache")
    cache = PosteriorCache(Path(cache_cfg.get("dir", out_dir / "cache"))) if cache_cfg.get("enabled", False) else None

    fitted: Dict[str, FittedModel] = {}
    convergence: Dict[str, Any] = {}
    for name, model_cfg in models_cfg.items():
        if not isinstance(model_cfg, Mapping):
            raise ExperimentError(f"Model section '{name}' must be a mapping.")
        try:
            fitted[name] = _fit_one(name, model_cfg, frame, formula, sampler, config, cache)
        except ConvergenceError as exc:
            convergence[name] = exc.report.to_dict()
            save_json(convergence, out_dir / "convergence.json")
            logger.error("%s", exc)
            raise
        report = fitted[name].diagnostics
        convergence[name] = report.to_dict() if report is not None else {}
        summary = fitted[name].summary()
        summary.to_csv(out_dir / f"posterior_summary_{name}.csv")
        if outputs_cfg.get("print_tables", False):
            print_summary(summary, title=f"Posterior summary: {name}")
    save_json(convergence, out_dir / "convergence.json")

    # --- compare
    threshold = float(criterion_cfg.get("pareto_k_threshold", 0.7))
    loo_strict = bool(criterion_cfg.get("strict", True))
    for fit in fitted.values():
        compute_loo(fit, pareto_k_threshold=threshold, strict=loo_strict)
    comparison = compare_models(fitted)
    comparison.table.to_csv(out_dir / "comparison.csv")
    (out_dir / "comparison.tex").write_text(frame_to_latex(comparison_frame(comparison)), encoding="utf-8")
    if outputs_cfg.get("print_tables", False):
        print_comparison(comparison)
    logger.info("Ranking by LOO: %s", " > ".join(comparison.ranking))

    # --- report
    focus = [c for c in outputs_cfg.get("null_predictors", []) if c in next(iter(fitted.values())).coef_names]
    plot_paths: List[str] = []
    if outputs_cfg.get("plots", True):
        plot_paths = _save_plots(fitted, focus, out_dir)

    model_metrics: Dict[str, Any] = {}
    for name, fit in fitted.items():
        means = fit.posterior_mean()
        model_metrics[name] = {
            "loo": fit.loo.to_dict(),
            "converged": bool(fit.diagnostics.ok) if fit.diagnostics else None,
            "divergences": fit.diagnostics.divergences if fit.diagnostics else None,
            "null_estimates": {c: float(means[c]) for c in focus},
        }

    return {
        "status": "OK",
        "name": config.get("name"),
        "n": n,
        "seed": data_seed,
        "formula": formula,
        "true_effects": dataset.effects,
        "models": model_metrics,
        "comparison": comparison.to_records(),
        "ranking": comparison.ranking,
        "best": comparison.best,
        "plots": plot_paths,
    }
