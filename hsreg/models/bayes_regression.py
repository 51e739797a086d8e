"""Bayesian Gaussian linear regression with naive or horseshoe priors (NumPyro NUTS)."""
from __future__ import annotations

import logging
import math
import multiprocessing as mp
import queue
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

import arviz as az
import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
import pandas as pd
from jax import random
from numpyro.infer import MCMC, NUTS, init_to_median, init_to_sample, init_to_uniform
from numpyro.infer.util import log_likelihood

from hsreg.diagnostics.convergence import (
    ConvergenceError,
    ConvergenceReport,
    DiagnosticThresholds,
    assess_convergence,
    bulk_ess,
    split_rhat,
)
from hsreg.models.formula import Design, build_design
from hsreg.models.priors import ModelPriors
from hsreg.utils.logging_utils import Timer

logger = logging.getLogger(__name__)

REPORTED_SITES = ("Intercept", "beta", "sigma", "tau", "lambda")
_CHAIN_METHODS = {"sequential", "parallel", "vectorized"}
# chain initialisation by config name
_INIT_STRATEGIES = {"median": init_to_median, "sample": init_to_sample, "uniform": init_to_uniform}


class FitTimeoutError(RuntimeError):
    """Raised when a fit keeps exceeding its wall-clock budget."""


@dataclass(frozen=True)
class SamplerConfig:
    """NUTS settings; ``iter`` counts warmup plus retained draws per chain."""

    chains: int = 4
    iter: int = 1000
    warmup: int = 500
    seed: int = 0
    target_accept_prob: float = 0.95
    chain_method: str = "sequential"
    dense_mass: bool = False
    max_tree_depth: int = 10
    init_strategy: str = "median"
    progress_bar: bool = False

    def __post_init__(self) -> None:
        if self.chains <= 0:
            raise ValueError("chains must be a positive integer.")
        if self.warmup <= 0:
            raise ValueError("warmup must be a positive integer.")
        if self.iter <= self.warmup:
            raise ValueError(f"iter ({self.iter}) must exceed warmup ({self.warmup}).")
        if not 0.0 < self.target_accept_prob < 1.0:
            raise ValueError("target_accept_prob must lie in (0, 1).")
        if self.chain_method not in _CHAIN_METHODS:
            raise ValueError(f"chain_method must be one of {sorted(_CHAIN_METHODS)}.")
        if self.max_tree_depth <= 0:
            raise ValueError("max_tree_depth must be a positive integer.")
        if self.init_strategy not in _INIT_STRATEGIES:
            raise ValueError(f"init_strategy must be one of {sorted(_INIT_STRATEGIES)}.")

    @property
    def num_samples(self) -> int:
        return int(self.iter - self.warmup)

    def scaled(self, factor: float) -> "SamplerConfig":
        """Shrink iteration counts by ``factor`` keeping at least a few draws."""
        if not 0.0 < factor < 1.0:
            raise ValueError("factor must lie in (0, 1).")
        warmup = max(1, int(self.warmup * factor))
        draws = max(4, int(self.num_samples * factor))
        return replace(self, warmup=warmup, iter=warmup + draws)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, cfg: Mapping[str, Any]) -> "SamplerConfig":
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(cfg) - known
        if unknown:
            raise ValueError(f"Unknown sampler settings: {sorted(unknown)}.")
        return cls(**dict(cfg))


@dataclass
class FittedModel:
    """Posterior draws (grouped by chain) plus everything needed to reuse them.

    Immutable after construction except for the single :meth:`attach_loo` call.
    """

    name: str
    formula: str
    outcome: str
    coef_names: List[str]
    priors: ModelPriors
    sampler: SamplerConfig
    samples: Dict[str, np.ndarray]
    log_likelihood: np.ndarray
    observed: np.ndarray
    diagnostics: Optional[ConvergenceReport] = None
    loo: Any = field(default=None, init=False)

    def __post_init__(self) -> None:
        if "beta" not in self.samples:
            raise ValueError("Fitted model requires 'beta' samples.")
        beta = self.samples["beta"]
        if beta.ndim != 3 or beta.shape[2] != len(self.coef_names):
            raise ValueError(
                f"beta samples shape {beta.shape} does not match {len(self.coef_names)} coefficients."
            )
        if self.log_likelihood.shape[:2] != beta.shape[:2]:
            raise ValueError("log_likelihood must share (chains, draws) with the posterior.")

    @property
    def n_obs(self) -> int:
        return int(self.observed.shape[0])

    @property
    def chains(self) -> int:
        return int(self.samples["beta"].shape[0])

    @property
    def draws(self) -> int:
        return int(self.samples["beta"].shape[1])

    @property
    def coef_samples(self) -> np.ndarray:
        beta = self.samples["beta"]
        return beta.reshape(-1, beta.shape[-1])

    def coefficient(self, name: str) -> np.ndarray:
        """Flattened draws for one named coefficient."""
        try:
            idx = self.coef_names.index(name)
        except ValueError:
            raise KeyError(f"Model '{self.name}' has no coefficient '{name}'.") from None
        return self.coef_samples[:, idx]

    def posterior_mean(self) -> pd.Series:
        return pd.Series(self.coef_samples.mean(axis=0), index=self.coef_names, name=self.name)

    def attach_loo(self, result: Any) -> None:
        if self.loo is not None:
            raise RuntimeError(f"Model '{self.name}' already has a criterion attached.")
        self.loo = result

    def to_inference_data(self) -> az.InferenceData:
        posterior = {k: v for k, v in self.samples.items()}
        dims = {"beta": ["coef"], "y": ["obs"]}
        if "lambda" in posterior:
            dims["lambda"] = ["coef"]
        return az.from_dict(
            posterior=posterior,
            log_likelihood={"y": self.log_likelihood},
            observed_data={"y": self.observed},
            coords={"coef": list(self.coef_names), "obs": np.arange(self.n_obs)},
            dims=dims,
        )

    def summary(self, prob: float = 0.95) -> pd.DataFrame:
        """Posterior summary table: mean, median, sd, central interval, R-hat and ESS."""
        if not 0.0 < prob < 1.0:
            raise ValueError("prob must lie in (0, 1).")
        lo_q, hi_q = (1.0 - prob) / 2.0, (1.0 + prob) / 2.0
        rows = []
        for label, draws in self._scalar_parameters():
            flat = draws.reshape(-1)
            rows.append(
                {
                    "parameter": label,
                    "mean": float(flat.mean()),
                    "median": float(np.median(flat)),
                    "sd": float(flat.std(ddof=1)),
                    f"q{lo_q * 100:g}": float(np.quantile(flat, lo_q)),
                    f"q{hi_q * 100:g}": float(np.quantile(flat, hi_q)),
                    "r_hat": float(split_rhat(draws)) if self.draws >= 4 else math.nan,
                    "ess_bulk": float(bulk_ess(draws)) if self.draws >= 4 else math.nan,
                }
            )
        return pd.DataFrame(rows).set_index("parameter")

    def _scalar_parameters(self):
        yield "Intercept", self.samples["Intercept"]
        beta = self.samples["beta"]
        for j, label in enumerate(self.coef_names):
            yield label, beta[:, :, j]
        yield "sigma", self.samples["sigma"]
        if "tau" in self.samples:
            yield "tau", self.samples["tau"]


@dataclass
class BayesianRegression:
    """Gaussian linear regression fitted with NUTS.

    The coefficient prior is either a Gaussian (naive) or a non-centred
    horseshoe, optionally regularised with a slab.
    """

    priors: ModelPriors
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    name: str = "model"
    thresholds: DiagnosticThresholds = field(default_factory=DiagnosticThresholds)
    strict: bool = True

    def _numpyro_model(self, X: jnp.ndarray, y: Optional[jnp.ndarray], global_scale: float) -> None:
        pr = self.priors
        sigma = numpyro.sample("sigma", dist.Exponential(pr.sigma["rate"]))
        intercept = numpyro.sample("Intercept", dist.Normal(pr.intercept["loc"], pr.intercept["scale"]))

        p = X.shape[1]
        if pr.is_horseshoe:
            beta = self._horseshoe_coefficients(p, sigma, global_scale)
        else:
            coef = pr.coefficients
            beta = numpyro.sample(
                "beta",
                dist.Normal(coef["loc"], coef["scale"]).expand((p,)).to_event(1),
            )

        mean = intercept + X @ beta
        with numpyro.plate("obs", X.shape[0]):
            numpyro.sample("y", dist.Normal(mean, sigma), obs=y)

    def _horseshoe_coefficients(self, p: int, sigma: jnp.ndarray, global_scale: float) -> jnp.ndarray:
        hs = self.priors.coefficients
        df_global = float(hs["df_global"])
        df_local = float(hs["df"])

        r1_global = numpyro.sample("r1_global", dist.HalfNormal(global_scale * sigma))
        r2_global = numpyro.sample("r2_global", dist.InverseGamma(0.5 * df_global, 0.5 * df_global))
        tau = numpyro.deterministic("tau", r1_global * jnp.sqrt(r2_global))

        r1_local = numpyro.sample("r1_local", dist.HalfNormal(jnp.ones((p,))).to_event(1))
        r2_local = numpyro.sample(
            "r2_local",
            dist.InverseGamma(0.5 * df_local, 0.5 * df_local).expand((p,)).to_event(1),
        )
        lambda_raw = r1_local * jnp.sqrt(r2_local)
        lam = numpyro.deterministic("lambda", self._regularize_lambda(lambda_raw, tau))

        z = numpyro.sample("z", dist.Normal(jnp.zeros((p,)), 1.0).to_event(1))
        return numpyro.deterministic("beta", z * lam * tau)

    def _regularize_lambda(self, lambda_raw: jnp.ndarray, tau: jnp.ndarray) -> jnp.ndarray:
        hs = self.priors.coefficients
        scale_slab = hs["scale_slab"]
        if scale_slab is None:
            return lambda_raw
        c2 = float(scale_slab) ** 2
        df_slab = hs["df_slab"]
        if df_slab is not None:
            caux = numpyro.sample("caux", dist.InverseGamma(0.5 * df_slab, 0.5 * df_slab))
            c2 = c2 * caux
        lam2 = lambda_raw ** 2
        denom = c2 + tau ** 2 * lam2 + 1e-18
        return jnp.sqrt(c2 * lam2 / denom)

    def with_sampler(self, sampler: SamplerConfig) -> "BayesianRegression":
        return replace(self, sampler=sampler)

    def fit(self, data: pd.DataFrame, formula: str) -> FittedModel:
        return self.fit_design(build_design(formula, data))

    def fit_design(self, design: Design) -> FittedModel:
        cfg = self.sampler
        X = jnp.asarray(design.X)
        y = jnp.asarray(design.y)
        global_scale = (
            self.priors.coefficients.global_scale(design.n_obs) if self.priors.is_horseshoe else 1.0
        )

        kernel = NUTS(
            self._numpyro_model,
            target_accept_prob=cfg.target_accept_prob,
            dense_mass=cfg.dense_mass,
            max_tree_depth=cfg.max_tree_depth,
            init_strategy=_INIT_STRATEGIES[cfg.init_strategy],
        )
        mcmc = MCMC(
            kernel,
            num_warmup=cfg.warmup,
            num_samples=cfg.num_samples,
            num_chains=cfg.chains,
            chain_method=cfg.chain_method,
            progress_bar=cfg.progress_bar,
        )
        logger.info(
            "Fitting '%s': %d chains x %d iterations (%d warmup), %d coefficients.",
            self.name, cfg.chains, cfg.iter, cfg.warmup, design.n_coef,
        )
        with Timer(name=f"fit:{self.name}", logger=logger):
            mcmc.run(random.PRNGKey(int(cfg.seed)), X, y, global_scale, extra_fields=("diverging",))

        grouped = mcmc.get_samples(group_by_chain=True)
        samples = {
            name: np.asarray(grouped[name], dtype=np.float64)
            for name in REPORTED_SITES
            if name in grouped
        }
        loglik = log_likelihood(self._numpyro_model, mcmc.get_samples(), X, y, global_scale)["y"]
        loglik = np.asarray(loglik, dtype=np.float64).reshape(cfg.chains, cfg.num_samples, design.n_obs)
        divergences = int(np.asarray(mcmc.get_extra_fields()["diverging"]).sum())

        report = assess_convergence(
            {k: v for k, v in samples.items() if k in {"Intercept", "beta", "sigma", "tau"}},
            divergences=divergences,
            thresholds=self.thresholds,
        )
        fitted = FittedModel(
            name=self.name,
            formula=design.formula,
            outcome=design.outcome,
            coef_names=list(design.columns),
            priors=self.priors,
            sampler=cfg,
            samples=samples,
            log_likelihood=loglik,
            observed=np.asarray(design.y, dtype=np.float64),
            diagnostics=report,
        )
        if not report.ok:
            if self.strict:
                raise ConvergenceError(report, fitted)
            logger.warning("Model '%s' failed convergence checks: %s", self.name, "; ".join(report.problems))
        return fitted


_TIMED_OUT = object()


def _fit_worker(model: BayesianRegression, design: Design, results) -> None:
    """Child-process entry point: sends ``("ok", fitted)`` or ``("error", exc)``."""
    try:
        results.put(("ok", model.fit_design(design)))
    except Exception as exc:
        results.put(("error", exc))


def _run_attempt(model: BayesianRegression, design: Design, budget_seconds: float, ctx) -> Any:
    """Fit in a child process; terminate it once ``budget_seconds`` have passed."""
    results = ctx.Queue(maxsize=1)
    worker = ctx.Process(
        target=_fit_worker,
        args=(model, design, results),
        name=f"fit-{model.name}",
        daemon=True,
    )
    worker.start()
    try:
        try:
            status, payload = results.get(timeout=budget_seconds)
        except queue.Empty:
            if worker.is_alive():
                return _TIMED_OUT
            raise RuntimeError(
                f"Fit worker for '{model.name}' exited with code {worker.exitcode} without a result."
            ) from None
    finally:
        if worker.is_alive():
            worker.terminate()
        worker.join()
        results.close()
    if status == "error":
        raise payload
    return payload


def fit_with_budget(
    model: BayesianRegression,
    data: pd.DataFrame,
    formula: str,
    budget_seconds: Optional[float] = None,
    max_retries: int = 1,
    reduce_factor: float = 0.5,
) -> FittedModel:
    """Fit under a wall-clock budget, retrying with fewer iterations on timeout.

    Each attempt runs in a spawned child process that is terminated on
    timeout before the next attempt starts. The budget includes the child's
    start-up and import time.
    """

    if budget_seconds is None:
        return model.fit(data, formula)
    if budget_seconds <= 0:
        raise ValueError("budget_seconds must be positive.")
    if max_retries < 0:
        raise ValueError("max_retries must be non-negative.")

    design = build_design(formula, data)
    ctx = mp.get_context("spawn")
    attempt = model
    for attempt_no in range(max_retries + 1):
        result = _run_attempt(attempt, design, budget_seconds, ctx)
        if result is not _TIMED_OUT:
            return result
        logger.warning(
            "Fit of '%s' exceeded %.1fs budget (attempt %d/%d, iter=%d).",
            model.name, budget_seconds, attempt_no + 1, max_retries + 1, attempt.sampler.iter,
        )
        if attempt_no < max_retries:
            attempt = attempt.with_sampler(attempt.sampler.scaled(reduce_factor))
    raise FitTimeoutError(
        f"Fit of '{model.name}' exceeded {budget_seconds}s budget after {max_retries + 1} attempts."
    )
