from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from data.generators import OUTCOME, simulate_brain_volume
from data.preprocess import (
    StandardizationConfig,
    StandardizationError,
    standardize,
    standardize_columns,
)


def test_standardized_columns_have_zero_mean_unit_sd():
    data = simulate_brain_volume(250, seed=21)
    result = standardize_columns(data.frame, columns=data.continuous_predictors)

    for col in data.continuous_predictors:
        values = result.frame[col].to_numpy()
        assert abs(values.mean()) < 1e-10
        assert np.std(values, ddof=1) == pytest.approx(1.0, abs=1e-10)
        assert result.scales[col] == pytest.approx(data.frame[col].std(ddof=1))

    pd.testing.assert_series_equal(result.frame[OUTCOME], data.frame[OUTCOME])
    pd.testing.assert_series_equal(result.frame["sex"], data.frame["sex"])


def test_standardize_uses_sample_sd():
    out = standardize([1.0, 2.0, 3.0])
    np.testing.assert_allclose(out, [-1.0, 0.0, 1.0])


def test_missing_values_are_ignored_and_kept():
    out = standardize([1.0, np.nan, 3.0, 5.0])
    assert np.isnan(out[1])
    np.testing.assert_allclose(out[[0, 2, 3]], [-1.0, 0.0, 1.0])


def test_single_row_cannot_be_standardized():
    data = simulate_brain_volume(1, seed=9)
    with pytest.raises(StandardizationError, match="at least two"):
        standardize_columns(data.frame, columns=data.continuous_predictors)


def test_zero_variance_rejected():
    with pytest.raises(StandardizationError, match="zero variance"):
        standardize([4.0, 4.0, 4.0], name="flat")


def test_outcome_is_excluded_by_default():
    frame = pd.DataFrame({OUTCOME: [1000.0, 1100.0, 1300.0], "x": [1.0, 2.0, 4.0]})
    result = standardize_columns(frame)
    assert list(result.means) == ["x"]
    pd.testing.assert_series_equal(result.frame[OUTCOME], frame[OUTCOME])


def test_exclusions_follow_config():
    frame = pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [2.0, 4.0, 9.0]})
    result = standardize_columns(frame, config=StandardizationConfig(exclude=("b",)))
    assert set(result.means) == {"a"}
    assert result.frame["b"].tolist() == [2.0, 4.0, 9.0]


def test_bad_columns_rejected():
    frame = pd.DataFrame({"x": [1.0, 2.0], "sex": pd.Categorical(["male", "female"])})
    with pytest.raises(StandardizationError, match="not numeric"):
        standardize_columns(frame, columns=["sex"])
    with pytest.raises(StandardizationError, match="not found"):
        standardize_columns(frame, columns=["missing"])
