"""Model specification and fitting."""

from .bayes_regression import (
    BayesianRegression,
    FitTimeoutError,
    FittedModel,
    SamplerConfig,
    fit_with_budget,
)
from .formula import Design, FormulaError, additive_formula, build_design
from .priors import (
    Family,
    ModelPriors,
    Prior,
    PriorConfigError,
    PriorKind,
    horseshoe_priors,
    naive_priors,
    priors_from_config,
)
