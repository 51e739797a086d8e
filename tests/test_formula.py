from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from data.generators import OUTCOME, simulate_brain_volume
from hsreg.models.formula import FormulaError, additive_formula, build_design


@pytest.fixture(scope="module")
def frame() -> pd.DataFrame:
    return simulate_brain_volume(80, seed=5).frame


def test_full_additive_design(frame):
    predictors = [c for c in frame.columns if c != OUTCOME]
    design = build_design(additive_formula(OUTCOME, predictors), frame)

    assert design.outcome == OUTCOME
    assert design.n_obs == 80
    assert "Intercept" not in design.columns
    assert "sex[T.male]" in design.columns
    assert "depression[T.yes]" in design.columns
    assert "employment[T.retired]" in design.columns
    assert "sex[T.female]" not in design.columns
    assert {"age", "pets", "test_score"} <= set(design.columns)
    # 10 numeric plus 1+1+1+3+1+1+3 dummies
    assert design.n_coef == 10 + 11
    np.testing.assert_allclose(design.y, frame[OUTCOME].to_numpy())


def test_dummy_coding_uses_first_level_as_reference(frame):
    design = build_design(f"{OUTCOME} ~ sex", frame)
    assert design.columns == ["sex[T.male]"]
    expected = (frame["sex"] == "male").to_numpy(dtype=float)
    np.testing.assert_array_equal(design.X[:, 0], expected)


def test_unknown_field_is_named(frame):
    with pytest.raises(FormulaError, match="'shoe_size'"):
        build_design(f"{OUTCOME} ~ age + shoe_size", frame)
    with pytest.raises(FormulaError, match="'volume'"):
        build_design("volume ~ age", frame)


def test_transforms_are_allowed(frame):
    design = build_design(f"{OUTCOME} ~ np.log(weight) + C(pets)", frame)
    assert "np.log(weight)" in design.columns
    assert any(c.startswith("C(pets)") for c in design.columns)


@pytest.mark.parametrize("formula", ["brain_volume age", "", f"{OUTCOME} ~ 1", "~ age", f"{OUTCOME} ~ age +"])
def test_malformed_formulas_rejected(frame, formula):
    with pytest.raises(FormulaError):
        build_design(formula, frame)


def test_outcome_must_be_numeric(frame):
    with pytest.raises(FormulaError, match="numeric"):
        build_design("sex ~ age", frame)


def test_missing_values_rejected(frame):
    broken = frame.copy()
    broken.loc[3, "age"] = np.nan
    with pytest.raises(FormulaError):
        build_design(f"{OUTCOME} ~ age", broken)


def test_additive_formula():
    assert additive_formula("y", ["a", "b"]) == "y ~ a + b"
    with pytest.raises(FormulaError):
        additive_formula("y", [])
