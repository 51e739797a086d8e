"""Smoke test for the simulate/fit/compare experiment runner."""
from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hsreg.diagnostics.convergence import ConvergenceError
from hsreg.experiments.runner import ExperimentError, run_experiment, sampler_from_config


def _config(tmp_path: Path) -> dict:
    return {
        "seed": 17,
        "name": "smoke",
        "data": {"n": 80, "seed": 17},
        "models": {
            "naive": {"prior": "naive"},
            "horseshoe": {"prior": "horseshoe", "params": {"par_ratio": 0.25}},
        },
        "inference": {"nuts": {"chains": 2, "iter": 300, "warmup": 150, "target_accept_prob": 0.9}},
        "diagnostics": {"strict": False},
        "criterion": {"strict": False},
        "cache": {"enabled": True, "dir": str(tmp_path / "cache")},
        "outputs": {"plots": True, "print_tables": False, "null_predictors": ["pets", "test_score"]},
    }


def test_run_experiment_creates_artifacts(tmp_path):
    config = _config(tmp_path)
    out_dir = tmp_path / "run"
    metrics = run_experiment(config, out_dir)

    assert metrics["status"] == "OK"
    assert sorted(metrics["ranking"]) == ["horseshoe", "naive"]
    assert metrics["best"] in {"naive", "horseshoe"}
    for name in ("naive", "horseshoe"):
        model = metrics["models"][name]
        assert set(model["null_estimates"]) == {"pets", "test_score"}
        assert model["loo"]["criterion"] == "loo"
        assert model["loo"]["n_obs"] == 80
        assert (out_dir / f"posterior_summary_{name}.csv").exists()

    for artifact in ("dataset.csv", "dataset_meta.json", "convergence.json", "comparison.csv", "comparison.tex"):
        assert (out_dir / artifact).exists(), artifact
    assert (out_dir / "plots" / "forest.png").exists()
    assert (out_dir / "plots" / "density_pets.png").exists()

    meta = json.loads((out_dir / "dataset_meta.json").read_text(encoding="utf-8"))
    assert meta["n"] == 80
    assert "pets" in meta["standardization"]["means"]
    assert "brain_volume" not in meta["standardization"]["means"]

    # second run is served from the posterior cache
    cached_files = sorted((tmp_path / "cache").glob("*.npz"))
    assert len(cached_files) == 2
    again = run_experiment(config, tmp_path / "run2")
    for name in ("naive", "horseshoe"):
        assert again["models"][name]["loo"]["elpd"] == pytest.approx(metrics["models"][name]["loo"]["elpd"])
    assert sorted((tmp_path / "cache").glob("*.npz")) == cached_files


def test_convergence_failure_is_persisted(tmp_path):
    config = _config(tmp_path)
    config["cache"] = {"enabled": False}
    config["inference"]["nuts"] = {"chains": 1, "iter": 60, "warmup": 30}
    config["diagnostics"] = {"ess_min": 1e9, "strict": True}

    with pytest.raises(ConvergenceError):
        run_experiment(config, tmp_path / "run")

    report = json.loads((tmp_path / "run" / "convergence.json").read_text(encoding="utf-8"))
    assert report["naive"]["ok"] is False


def test_invalid_configs_rejected(tmp_path):
    config = _config(tmp_path)
    config["models"] = {"naive": {"prior": "naive"}}
    with pytest.raises(ExperimentError, match="two models"):
        run_experiment(config, tmp_path / "one")

    with pytest.raises(ExperimentError, match="inference.nuts"):
        sampler_from_config({"inference": {"nuts": {"chains": 2, "draws": 10}}})
    assert sampler_from_config({"seed": 5}).seed == 5
