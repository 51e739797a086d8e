from __future__ import annotations
"""Prior-preset registry and model builders for experiments.

Model sections in a config either name a registered preset
(``prior: naive`` with optional ``params``) or spell out the full prior
structure under ``priors``.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from hsreg.diagnostics.convergence import DiagnosticThresholds
from hsreg.models.bayes_regression import BayesianRegression, SamplerConfig
from hsreg.models.priors import (
    ModelPriors,
    Prior,
    PriorConfigError,
    horseshoe_priors,
    naive_priors,
    priors_from_config,
)

# ------------------------------
# Registry and decorator
# ------------------------------
REGISTRY: Dict[str, Callable[..., ModelPriors]] = {}


def register(name: str) -> Callable[[Callable[..., ModelPriors]], Callable[..., ModelPriors]]:
    """Register a prior preset via @register('preset_name')."""

    def deco(fn: Callable[..., ModelPriors]) -> Callable[..., ModelPriors]:
        key = name.strip().lower()
        if key in REGISTRY:
            raise ValueError(f"Prior preset '{key}' already registered.")
        REGISTRY[key] = fn
        return fn

    return deco


def _intercept(params: Dict[str, Any]) -> Optional[Prior]:
    if "intercept_loc" not in params and "intercept_scale" not in params:
        return None
    return Prior.normal(
        float(params.pop("intercept_loc", 1200.0)),
        float(params.pop("intercept_scale", 250.0)),
    )


@register("naive")
def _build_naive(**params: Any) -> ModelPriors:
    intercept = _intercept(params)
    return naive_priors(intercept=intercept, **params)


@register("horseshoe")
def _build_horseshoe(**params: Any) -> ModelPriors:
    intercept = _intercept(params)
    return horseshoe_priors(intercept=intercept, **params)


def build_priors(model_cfg: Mapping[str, Any], default_preset: Optional[str] = None) -> ModelPriors:
    """Resolve a model section into :class:`ModelPriors`."""
    if "priors" in model_cfg:
        return priors_from_config(model_cfg["priors"])
    preset = str(model_cfg.get("prior", default_preset or "")).strip().lower()
    if preset not in REGISTRY:
        available = ", ".join(sorted(REGISTRY))
        raise PriorConfigError(f"Unknown prior preset '{preset}'. Available: {available}.")
    params = dict(model_cfg.get("params") or {})
    try:
        return REGISTRY[preset](**params)
    except TypeError as exc:
        raise PriorConfigError(f"Invalid parameters for preset '{preset}': {exc}") from exc


def build_model(
    name: str,
    model_cfg: Mapping[str, Any],
    sampler: SamplerConfig,
    thresholds: DiagnosticThresholds | None = None,
    strict: bool = True,
) -> BayesianRegression:
    """Construct an unfitted model; the preset defaults to the model's name."""
    priors = build_priors(model_cfg, default_preset=name)
    return BayesianRegression(
        priors=priors,
        sampler=sampler,
        name=name,
        thresholds=thresholds or DiagnosticThresholds(),
        strict=strict,
    )
