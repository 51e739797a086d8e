from __future__ import annotations

import pickle

import numpy as np
import pytest

from hsreg.diagnostics.convergence import (
    ConvergenceError,
    ConvergenceReport,
    DiagnosticThresholds,
    assess_convergence,
    bulk_ess,
    split_rhat,
    summarize_convergence,
)


def _mixed_samples(seed: int = 0, chains: int = 4, draws: int = 500) -> dict:
    rng = np.random.default_rng(seed)
    return {
        "Intercept": rng.normal(1200.0, 5.0, size=(chains, draws)),
        "beta": rng.normal(size=(chains, draws, 3)),
        "sigma": np.abs(rng.normal(50.0, 2.0, size=(chains, draws))),
    }


def test_well_mixed_chains_pass():
    samples = _mixed_samples()
    report = assess_convergence(samples, divergences=0)

    assert report.ok
    assert report.problems == []
    assert set(report.parameters) == {"Intercept", "beta", "sigma"}
    assert report.parameters["beta"]["rhat_max"] < 1.05
    assert report.parameters["beta"]["ess_min"] > 500


def test_shifted_chain_flags_rhat():
    samples = _mixed_samples(seed=1)
    samples["beta"][0] += 5.0
    report = assess_convergence(samples)

    assert not report.ok
    assert any(p.startswith("beta: R-hat") for p in report.problems)


def test_divergences_and_low_ess_reported():
    rng = np.random.default_rng(2)
    walk = np.cumsum(rng.normal(size=(2, 200)), axis=1)
    report = assess_convergence({"Intercept": walk}, divergences=3, thresholds=DiagnosticThresholds(max_divergences=1))

    assert any("3 divergent transitions" in p for p in report.problems)
    assert any(p.startswith("Intercept: ESS") for p in report.problems)

    err = ConvergenceError(report)
    assert "did not converge" in str(err)
    assert err.report is report


def test_too_few_draws_is_a_problem_not_a_crash():
    report = assess_convergence({"sigma": np.ones((2, 3))})
    assert not report.ok
    assert "at least 4 draws" in report.problems[0]


def test_constant_site_does_not_fail_rhat():
    samples = {"tau": np.full((2, 50), 0.3)}
    summary = summarize_convergence(samples)
    assert summary["tau"]["rhat_max"] == 1.0


def test_single_chain_shapes():
    draws = np.random.default_rng(3).normal(size=(1, 400, 2))
    assert split_rhat(draws).shape == (2,)
    assert bulk_ess(draws).shape == (2,)
    with pytest.raises(ValueError):
        split_rhat(np.ones(10))


def test_report_round_trip_and_thresholds():
    report = assess_convergence(_mixed_samples(seed=4), divergences=0)
    rebuilt = ConvergenceReport.from_dict(report.to_dict())
    assert rebuilt.ok == report.ok
    assert rebuilt.thresholds == report.thresholds

    limits = DiagnosticThresholds.from_dict({"rhat_max": 1.01, "ess_min": 400})
    assert limits.rhat_max == 1.01 and limits.max_divergences == 0
    with pytest.raises(ValueError):
        DiagnosticThresholds(rhat_max=0.9)


def test_convergence_error_survives_pickling():
    report = assess_convergence(_mixed_samples(), divergences=4)
    err = ConvergenceError(report, fitted={"name": "horseshoe"})

    restored = pickle.loads(pickle.dumps(err))
    assert isinstance(restored, ConvergenceError)
    assert str(restored) == str(err)
    assert restored.report.divergences == 4
    assert restored.report.problems == report.problems
    assert restored.fitted == {"name": "horseshoe"}
