"""Formula handling: ``outcome ~ predictors`` to design matrices via patsy."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd
from patsy import ModelDesc, PatsyError, dmatrices

__all__ = ["FormulaError", "Design", "additive_formula", "build_design"]

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_CALLS = {"C", "I", "Q", "np", "center", "scale", "standardize", "Treatment", "Sum", "Poly", "Diff", "Helmert"}


class FormulaError(ValueError):
    """Raised for malformed formulas or formulas that do not match the data."""


@dataclass
class Design:
    """Outcome vector and intercept-free predictor matrix."""

    formula: str
    outcome: str
    y: np.ndarray
    X: np.ndarray
    columns: List[str]

    @property
    def n_obs(self) -> int:
        return int(self.y.shape[0])

    @property
    def n_coef(self) -> int:
        return int(self.X.shape[1])


def _referenced_names(code: str) -> List[str]:
    """Bare identifiers in a factor expression, excluding patsy/numpy helpers."""
    stripped = re.sub(r"(['\"]).*?\1", "", code)
    names = []
    for match in _IDENT.finditer(stripped):
        start = match.start()
        if start > 0 and stripped[start - 1] == ".":
            continue
        token = match.group(0)
        rest = stripped[match.end():].lstrip()
        if token in _CALLS or (rest.startswith("=") and not rest.startswith("==")):
            continue
        names.append(token)
    return names


def additive_formula(outcome: str, predictors: Sequence[str]) -> str:
    """``outcome ~ a + b + ...`` with every predictor as a main effect."""
    if not predictors:
        raise FormulaError("At least one predictor is required.")
    return f"{outcome} ~ " + " + ".join(predictors)


def build_design(formula: str, data: pd.DataFrame) -> Design:
    """Parse ``formula`` against ``data``.

    The intercept column is dropped from ``X`` because the intercept carries its
    own prior. Categorical columns are treatment coded with the first category
    as reference.
    """

    if not isinstance(formula, str) or "~" not in formula:
        raise FormulaError(f"Formula must look like 'outcome ~ predictors', got {formula!r}.")
    try:
        desc = ModelDesc.from_formula(formula)
    except PatsyError as exc:
        raise FormulaError(f"Malformed formula {formula!r}: {exc}") from exc

    if len(desc.lhs_termlist) != 1 or len(desc.lhs_termlist[0].factors) != 1:
        raise FormulaError(f"Formula {formula!r} must have exactly one outcome term.")
    outcome = desc.lhs_termlist[0].factors[0].code

    for term in desc.lhs_termlist + desc.rhs_termlist:
        for factor in term.factors:
            for name in _referenced_names(factor.code):
                if name not in data.columns:
                    raise FormulaError(f"Formula references unknown field '{name}'.")

    if outcome in data.columns:
        series = data[outcome]
        if isinstance(series.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(series):
            raise FormulaError(f"Outcome field '{outcome}' must be numeric.")

    try:
        y_df, X_df = dmatrices(formula, data, return_type="dataframe", NA_action="raise")
    except PatsyError as exc:
        raise FormulaError(f"Could not build design for {formula!r}: {exc}") from exc

    if y_df.shape[1] != 1:
        raise FormulaError(f"Outcome '{outcome}' expands to {y_df.shape[1]} columns; expected one.")

    X_df = X_df.drop(columns=["Intercept"], errors="ignore")
    if X_df.shape[1] == 0:
        raise FormulaError(f"Formula {formula!r} has no predictors.")

    return Design(
        formula=formula,
        outcome=outcome,
        y=y_df.iloc[:, 0].to_numpy(dtype=float),
        X=X_df.to_numpy(dtype=float),
        columns=[str(c) for c in X_df.columns],
    )
