"""Full-size demonstration scenarios; run with ``pytest -m slow``."""
from __future__ import annotations

import math
from pathlib import Path

import numpy as np
import pytest

from hsreg.cli.run_experiment import _load_and_merge_configs
from hsreg.experiments.runner import run_experiment
from hsreg.experiments.shrinkage import run_shrinkage_study
from hsreg.models.bayes_regression import SamplerConfig

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"
NULL_PREDICTORS = ["pets", "test_score"]

pytestmark = pytest.mark.slow


def test_default_config_converges_in_strict_mode(tmp_path):
    config = _load_and_merge_configs([CONFIG_DIR / "brain_volume.yaml"])
    assert config["diagnostics"]["strict"] is True
    assert config["diagnostics"]["max_divergences"] == 0
    assert config["criterion"]["strict"] is True
    config["cache"] = {"enabled": False}
    config["outputs"].update(plots=False, print_tables=False)

    metrics = run_experiment(config, tmp_path / "run")

    assert metrics["status"] == "OK"
    assert sorted(metrics["ranking"]) == ["horseshoe", "naive"]
    for name in ("naive", "horseshoe"):
        assert metrics["models"][name]["converged"] is True
        assert math.isfinite(metrics["models"][name]["loo"]["elpd"])

    naive = metrics["models"]["naive"]["null_estimates"]
    horseshoe = metrics["models"]["horseshoe"]["null_estimates"]
    assert all(abs(horseshoe[c]) < 3.0 for c in NULL_PREDICTORS)
    assert sum(abs(horseshoe[c]) for c in NULL_PREDICTORS) < sum(abs(naive[c]) for c in NULL_PREDICTORS)


def test_shrinkage_holds_across_seeds():
    study = run_shrinkage_study(
        range(10, 16),
        n=100,
        sampler=SamplerConfig(chains=1, iter=400, warmup=200),
    )
    # eight causally inert continuous predictors per seed
    assert len(study.estimates) == 6 * 8
    assert set(study.estimates["seed"]) == set(range(10, 16))
    assert study.closer_fraction > 0.5
    assert study.significant
    assert np.isfinite(study.statistic)
