"""Data preprocessing utilities for the simulated observation table."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

__all__ = [
    "StandardizationError",
    "StandardizationConfig",
    "StandardizeResult",
    "standardize",
    "standardize_columns",
]


class StandardizationError(ValueError):
    """Raised when a column cannot be standardised."""


@dataclass(frozen=True)
class StandardizationConfig:
    """Columns to standardise; ``None`` selects every numeric predictor."""

    columns: Optional[Sequence[str]] = None
    exclude: Sequence[str] = ("brain_volume",)


@dataclass
class StandardizeResult:
    """Standardised copy of a table plus the statistics used."""

    frame: pd.DataFrame
    means: Dict[str, float] = field(default_factory=dict)
    scales: Dict[str, float] = field(default_factory=dict)


def standardize(x: Iterable[float], name: str = "x") -> np.ndarray:
    """Return ``(x - mean(x)) / sd(x)`` using the sample (n - 1) SD.

    Missing values are ignored in the statistics and kept as NaN in the output.
    """

    arr = np.asarray(x, dtype=float).reshape(-1)
    observed = int(np.count_nonzero(~np.isnan(arr)))
    if observed < 2:
        raise StandardizationError(
            f"Column '{name}' needs at least two non-missing values to standardise; got {observed}."
        )
    mean = float(np.nanmean(arr))
    scale = float(np.nanstd(arr, ddof=1))
    if not np.isfinite(scale) or scale <= 0.0:
        raise StandardizationError(f"Column '{name}' has zero variance and cannot be standardised.")
    return (arr - mean) / scale


def standardize_columns(
    frame: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    config: StandardizationConfig | None = None,
) -> StandardizeResult:
    """Standardise each listed column independently, leaving others untouched."""

    cfg = config or StandardizationConfig(columns=columns)
    selected = list(columns if columns is not None else (cfg.columns or []))
    if not selected:
        selected = [
            c for c in frame.columns
            if pd.api.types.is_numeric_dtype(frame[c])
            and not isinstance(frame[c].dtype, pd.CategoricalDtype)
        ]
    selected = [c for c in selected if c not in set(cfg.exclude)]

    out = frame.copy()
    means: Dict[str, float] = {}
    scales: Dict[str, float] = {}
    for col in selected:
        if col not in frame.columns:
            raise StandardizationError(f"Column '{col}' not found in data.")
        series = frame[col]
        if isinstance(series.dtype, pd.CategoricalDtype) or not pd.api.types.is_numeric_dtype(series):
            raise StandardizationError(f"Column '{col}' is not numeric and cannot be standardised.")
        values = series.to_numpy(dtype=float)
        out[col] = standardize(values, name=col)
        means[col] = float(np.nanmean(values))
        scales[col] = float(np.nanstd(values, ddof=1))
    return StandardizeResult(frame=out, means=means, scales=scales)
