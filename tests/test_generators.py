from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pandas as pd
import pytest

from data.generators import (
    CAUSAL_PREDICTORS,
    OUTCOME,
    Categorical,
    DiscreteUniform,
    Gaussian,
    GeneratorError,
    SimulationConfig,
    Uniform,
    simulate_brain_volume,
    simulation_config_from_dict,
)


def test_same_seed_gives_byte_identical_tables():
    first = simulate_brain_volume(200, seed=404).frame
    second = simulate_brain_volume(200, seed=404).frame
    assert first.to_csv(index=False).encode() == second.to_csv(index=False).encode()

    other = simulate_brain_volume(200, seed=405).frame
    assert not first.equals(other)


def test_explicit_generator_matches_seed():
    from_seed = simulate_brain_volume(50, seed=7).frame
    from_rng = simulate_brain_volume(50, rng=np.random.default_rng(7)).frame
    pd.testing.assert_frame_equal(from_seed, from_rng)


def test_columns_and_levels():
    data = simulate_brain_volume(300, seed=1)
    frame = data.frame

    assert frame.shape == (300, 18)
    assert frame.columns[0] == OUTCOME
    assert not frame.isna().any().any()

    assert set(frame["sex"].cat.categories) == {"female", "male"}
    assert list(frame["employment"].cat.categories) == ["employed", "unemployed", "student", "retired"]
    assert frame["children"].cat.ordered
    assert frame["age"].between(18, 90).all()
    assert frame["pets"].between(0, 4).all()
    assert pd.api.types.is_integer_dtype(frame["education_years"])

    assert "pets" in data.continuous_predictors
    assert "sex" in data.categorical_predictors
    assert not set(CAUSAL_PREDICTORS) & set(data.null_predictors)
    assert len(data.null_predictors) == 17 - len(CAUSAL_PREDICTORS)


def test_offsets_are_drawn_once_and_broadcast():
    n, seed = 120, 11
    data = simulate_brain_volume(n, seed=seed)
    frame = data.frame
    cfg = data.config

    # Replay the draw order to recover the per-row baseline.
    rng = np.random.default_rng(seed)
    for distribution in cfg.predictors.values():
        distribution.draw(rng, n)
    baseline = cfg.effects.baseline.draw(rng, n)

    age = frame["age"].to_numpy()
    expected = baseline.copy()
    for bracket in cfg.effects.age_brackets:
        expected += np.where(bracket.mask(age), data.effects[f"age_{bracket.label}"], 0.0)
    expected += np.where(frame["sex"].to_numpy() == "male", data.effects["sex_male"], 0.0)
    expected += np.where(frame["depression"].to_numpy() == "yes", data.effects["depression_yes"], 0.0)
    expected += np.where(frame["sleep_hours"].to_numpy() > 8.0, data.effects["sleep_bonus"], 0.0)

    npt.assert_allclose(frame[OUTCOME].to_numpy(), expected)
    assert data.effects["depression_yes"] <= 0.0
    assert data.effects["sleep_bonus"] >= 0.0


@pytest.mark.parametrize("n", [0, -3, 2.5, True])
def test_invalid_row_count_rejected(n):
    with pytest.raises(GeneratorError):
        simulate_brain_volume(n, seed=1)


def test_single_row_is_simulated():
    frame = simulate_brain_volume(1, seed=3).frame
    assert frame.shape[0] == 1


def test_distribution_validation():
    with pytest.raises(GeneratorError, match="sum to one"):
        Categorical(("a", "b"), (0.5, 0.6))
    with pytest.raises(GeneratorError):
        Categorical(("a", "b", "c"), (0.5, 0.5))
    with pytest.raises(GeneratorError):
        Categorical(("a", "b"), (-0.5, 1.5))
    with pytest.raises(GeneratorError):
        Gaussian(0.0, 0.0)
    with pytest.raises(GeneratorError):
        Uniform(5.0, 1.0)
    with pytest.raises(GeneratorError):
        DiscreteUniform(3, 1)


def test_config_requires_causal_predictors():
    predictors = dict(SimulationConfig().predictors)
    predictors.pop("depression")
    with pytest.raises(GeneratorError, match="depression"):
        SimulationConfig(predictors=predictors)


def test_config_from_dict_overrides():
    cfg = simulation_config_from_dict(
        {
            "predictors": {
                "age": {"low": 20.0, "high": 40.0},
                "pets": {"kind": "gaussian", "mean": 1.0, "sd": 0.5},
                "vegetarian": {"probs": [0.5, 0.5]},
            },
            "effects": {"male_offset": {"mean": 5.0}, "sleep_threshold": 7.5},
        }
    )
    assert cfg.predictors["age"] == Uniform(20.0, 40.0)
    assert cfg.predictors["pets"] == Gaussian(1.0, 0.5)
    assert cfg.predictors["vegetarian"].probs == (0.5, 0.5)
    assert cfg.effects.male_offset == Gaussian(5.0, 10.0)
    assert cfg.effects.sleep_threshold == 7.5

    frame = simulate_brain_volume(40, seed=2, config=cfg).frame
    assert frame["age"].between(20, 40).all()


def test_config_from_dict_rejects_bad_input():
    with pytest.raises(GeneratorError):
        simulation_config_from_dict({"unknown": {}})
    with pytest.raises(GeneratorError):
        simulation_config_from_dict({"predictors": {"sex": {"probs": [0.3, 0.3]}}})
    with pytest.raises(GeneratorError):
        simulation_config_from_dict({"predictors": {"new_col": {"mean": 1.0, "sd": 1.0}}})
    with pytest.raises(GeneratorError):
        simulation_config_from_dict({"effects": {"male_offset": {"median": 1.0}}})
