"""Experiment orchestration: comparison, caching, runs and shrinkage studies."""

from .compare import (
    ComparisonError,
    ComparisonResult,
    CriterionError,
    LooResult,
    compare_models,
    compute_loo,
)
