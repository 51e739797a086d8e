from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest
import yaml

from hsreg.cli.run_experiment import _deep_update, _load_and_merge_configs, _parse_overrides
from hsreg.experiments.runner import sampler_from_config
from hsreg.experiments.registry import build_model

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"


def test_parse_overrides_casts_values():
    parsed = _parse_overrides(
        ["seed=42", "inference.nuts.chains=2", "budget.seconds=null", "cache.enabled=false", "criterion.pareto_k_threshold=0.5", "name=run_a"]
    )
    assert parsed == {
        "seed": 42,
        "inference": {"nuts": {"chains": 2}},
        "budget": {"seconds": None},
        "cache": {"enabled": False},
        "criterion": {"pareto_k_threshold": 0.5},
        "name": "run_a",
    }
    with pytest.raises(ValueError):
        _parse_overrides(["seed"])


def test_deep_update_merges_nested_sections():
    base = {"inference": {"nuts": {"chains": 4, "iter": 1000}}, "seed": 1}
    merged = _deep_update(base, {"inference": {"nuts": {"chains": 2}}})
    assert merged == {"inference": {"nuts": {"chains": 2, "iter": 1000}}, "seed": 1}


def test_defaults_are_inherited(tmp_path):
    (tmp_path / "base.yaml").write_text(yaml.safe_dump({"seed": 1, "data": {"n": 200, "seed": 1}}), encoding="utf-8")
    (tmp_path / "child.yaml").write_text(
        yaml.safe_dump({"defaults": "base.yaml", "data": {"n": 50}}), encoding="utf-8"
    )
    cfg = _load_and_merge_configs([tmp_path / "child.yaml"])
    assert cfg == {"seed": 1, "data": {"n": 50, "seed": 1}}


def test_defaults_cycle_detected(tmp_path):
    (tmp_path / "a.yaml").write_text("defaults: b.yaml\n", encoding="utf-8")
    (tmp_path / "b.yaml").write_text("defaults: a.yaml\n", encoding="utf-8")
    with pytest.raises(ValueError, match="cycle"):
        _load_and_merge_configs([tmp_path / "a.yaml"])


def test_shipped_configs_resolve():
    full = _load_and_merge_configs([CONFIG_DIR / "brain_volume.yaml"])
    quick = _load_and_merge_configs([CONFIG_DIR / "quick.yaml"])

    assert full["data"] == {"n": 200, "seed": 404, "simulation": {}}
    assert set(full["models"]) == {"naive", "horseshoe"}
    assert full["inference"]["nuts"]["chains"] == 4
    assert full["outputs"]["null_predictors"] == ["pets", "test_score"]

    assert quick["name"] == "quick"
    assert quick["inference"]["nuts"] == {**full["inference"]["nuts"], "chains": 2, "iter": 400, "warmup": 200}
    assert quick["diagnostics"]["strict"] is False
    assert quick["models"] == full["models"]


def test_default_config_sampler_and_slab():
    full = _load_and_merge_configs([CONFIG_DIR / "brain_volume.yaml"])
    sampler = sampler_from_config(full)
    assert sampler.init_strategy == "median"
    assert sampler.max_tree_depth == 12
    assert sampler.target_accept_prob == pytest.approx(0.99)

    priors = build_model("horseshoe", full["models"]["horseshoe"], sampler).priors
    assert priors.coefficients.params["scale_slab"] == pytest.approx(100.0)
    assert priors.coefficients.params["df_slab"] == pytest.approx(4.0)


def test_plot_module_leaves_backend_to_caller():
    code = (
        "import matplotlib\n"
        "import hsreg.viz.plots\n"
        "print(matplotlib.get_backend())\n"
    )
    env = {**os.environ, "MPLBACKEND": "svg", "PYTHONPATH": str(CONFIG_DIR.parent)}
    out = subprocess.run([sys.executable, "-c", code], env=env, capture_output=True, text=True, check=True)
    assert out.stdout.strip().lower() == "svg"
