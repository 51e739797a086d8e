"""Leave-one-out criterion and model ranking (ArviZ PSIS-LOO)."""
from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Union

import arviz as az
import numpy as np
import pandas as pd

from hsreg.models.bayes_regression import FittedModel
from hsreg.utils.logging_utils import Timer

logger = logging.getLogger(__name__)

CRITERION = "loo"


class CriterionError(RuntimeError):
    """Raised when PSIS-LOO cannot be estimated reliably."""


class ComparisonError(ValueError):
    """Raised when models cannot be compared under a single criterion."""


@dataclass(frozen=True)
class LooResult:
    elpd: float
    se: float
    p_loo: float
    pareto_k: np.ndarray
    n_obs: int
    n_samples: int
    elpd_data: Any
    criterion: str = CRITERION
    warning: bool = False

    def high_k(self, threshold: float = 0.7) -> int:
        return int(np.count_nonzero(self.pareto_k > threshold))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion,
            "elpd": self.elpd,
            "se": self.se,
            "p_loo": self.p_loo,
            "n_obs": self.n_obs,
            "n_samples": self.n_samples,
            "pareto_k_max": float(np.max(self.pareto_k)) if self.pareto_k.size else math.nan,
            "warning": self.warning,
        }


def compute_loo(
    fitted: FittedModel,
    pareto_k_threshold: float = 0.7,
    strict: bool = True,
    attach: bool = True,
) -> LooResult:
    """PSIS-LOO for ``fitted``; optionally attach the result to the model.

    Pareto-k diagnostics above ``pareto_k_threshold`` raise
    :class:`CriterionError` in strict mode and are logged otherwise.
    """

    idata = fitted.to_inference_data()
    with Timer(name=f"loo:{fitted.name}", logger=logger):
        with warnings.catch_warnings():
            # high Pareto-k is checked explicitly below
            warnings.simplefilter("ignore", UserWarning)
            elpd = az.loo(idata, pointwise=True)

    pareto_k = np.asarray(elpd["pareto_k"], dtype=float).reshape(-1)
    elpd_value = float(elpd["elpd_loo"])
    if not math.isfinite(elpd_value):
        raise CriterionError(f"LOO for '{fitted.name}' is not finite ({elpd_value}).")

    bad = int(np.count_nonzero(pareto_k > pareto_k_threshold))
    if bad:
        message = (
            f"LOO for '{fitted.name}' is unreliable: {bad}/{pareto_k.size} observations have "
            f"Pareto k > {pareto_k_threshold} (max {pareto_k.max():.2f})."
        )
        if strict:
            raise CriterionError(message)
        logger.warning(message)

    result = LooResult(
        elpd=elpd_value,
        se=float(elpd["se"]),
        p_loo=float(elpd["p_loo"]),
        pareto_k=pareto_k,
        n_obs=int(pareto_k.size),
        n_samples=int(elpd["n_samples"]),
        elpd_data=elpd,
        warning=bool(bad),
    )
    logger.info("LOO '%s': elpd=%.2f (se %.2f), p_loo=%.2f.", fitted.name, result.elpd, result.se, result.p_loo)
    if attach:
        fitted.attach_loo(result)
    return result


@dataclass(frozen=True)
class ComparisonResult:
    """Models ranked by expected log predictive density, best first."""

    table: pd.DataFrame
    criterion: str = CRITERION

    @property
    def ranking(self) -> List[str]:
        return [str(name) for name in self.table.sort_values("rank").index]

    @property
    def best(self) -> str:
        return self.ranking[0]

    def rank_of(self, name: str) -> int:
        if name not in self.table.index:
            raise KeyError(f"Model '{name}' is not part of this comparison.")
        return int(self.table.loc[name, "rank"])

    def ranks_above(self, a: str, b: str) -> bool:
        return self.rank_of(a) < self.rank_of(b)

    def to_records(self) -> List[Dict[str, Any]]:
        records = []
        for name, row in self.table.sort_values("rank").iterrows():
            records.append(
                {
                    "model": str(name),
                    "rank": int(row["rank"]),
                    f"elpd_{self.criterion}": float(row[f"elpd_{self.criterion}"]),
                    "elpd_diff": float(row["elpd_diff"]),
                    "se": float(row["se"]),
                    "dse": float(row["dse"]),
                    "weight": float(row["weight"]),
                }
            )
        return records


def compare_models(models: Union[Sequence[FittedModel], Mapping[str, FittedModel]]) -> ComparisonResult:
    """Rank models that already carry a LOO result."""

    items = list(models.values()) if isinstance(models, Mapping) else list(models)
    if len(items) < 2:
        raise ComparisonError("At least two models are required for a comparison.")

    names = [m.name for m in items]
    if len(set(names)) != len(names):
        raise ComparisonError(f"Model names must be unique, got {names}.")

    missing = [m.name for m in items if m.loo is None]
    if missing:
        raise ComparisonError(f"Models without an attached LOO result: {missing}. Run compute_loo first.")

    criteria = {m.loo.criterion for m in items}
    if len(criteria) != 1:
        raise ComparisonError(f"Cannot mix information criteria: {sorted(criteria)}.")

    n_obs = {m.loo.n_obs for m in items}
    if len(n_obs) != 1:
        raise ComparisonError(f"Models were evaluated on different numbers of observations: {sorted(n_obs)}.")

    table = az.compare({m.name: m.loo.elpd_data for m in items}, ic=CRITERION)
    return ComparisonResult(table=table, criterion=criteria.pop())
