"""Content-addressed on-disk cache of fitted posteriors."""
from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import pandas as pd

from hsreg.diagnostics.convergence import ConvergenceError, assess_convergence
from hsreg.models.bayes_regression import BayesianRegression, FittedModel, SamplerConfig
from hsreg.models.priors import priors_from_config
from hsreg.utils.io import ensure_dir, load_json, save_json

logger = logging.getLogger(__name__)

_POSTERIOR_PREFIX = "posterior__"


def data_fingerprint(data: pd.DataFrame) -> bytes:
    hashed = pd.util.hash_pandas_object(data, index=True).to_numpy()
    columns = "|".join(map(str, data.columns)).encode("utf-8")
    return columns + hashed.tobytes()


def cache_digest(model: BayesianRegression, formula: str, data: pd.DataFrame) -> str:
    """SHA-1 over model name, formula, priors, sampler settings and data."""
    payload = json.dumps(
        {
            "name": model.name,
            "formula": formula,
            "priors": model.priors.to_dict(),
            "sampler": model.sampler.to_dict(),
        },
        sort_keys=True,
    )
    h = hashlib.sha1()
    h.update(payload.encode("utf-8"))
    h.update(data_fingerprint(data))
    return h.hexdigest()


class PosteriorCache:
    """Stores ``<model_id>-<digest>.npz`` arrays with a JSON sidecar."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _paths(self, model_id: str, digest: str) -> tuple[Path, Path]:
        stem = f"{model_id}-{digest[:16]}"
        return self.directory / f"{stem}.npz", self.directory / f"{stem}.json"

    def save(self, fitted: FittedModel, digest: str) -> Path:
        ensure_dir(self.directory)
        npz_path, meta_path = self._paths(fitted.name, digest)
        arrays = {f"{_POSTERIOR_PREFIX}{k}": v for k, v in fitted.samples.items()}
        arrays["log_likelihood"] = fitted.log_likelihood
        arrays["observed"] = fitted.observed
        np.savez_compressed(npz_path, **arrays)
        save_json(
            {
                "digest": digest,
                "name": fitted.name,
                "formula": fitted.formula,
                "outcome": fitted.outcome,
                "coef_names": fitted.coef_names,
                "priors": fitted.priors.to_dict(),
                "sampler": fitted.sampler.to_dict(),
                "divergences": fitted.diagnostics.divergences if fitted.diagnostics else 0,
            },
            meta_path,
        )
        logger.debug("Cached '%s' at %s.", fitted.name, npz_path)
        return npz_path

    def load(self, model: BayesianRegression, digest: str) -> Optional[FittedModel]:
        npz_path, meta_path = self._paths(model.name, digest)
        if not (npz_path.exists() and meta_path.exists()):
            return None
        meta = load_json(meta_path)
        if meta.get("digest") != digest:
            logger.warning("Ignoring cache entry %s with mismatched digest.", npz_path)
            return None
        sampler = SamplerConfig.from_dict(meta["sampler"])
        if sampler != model.sampler:
            logger.warning("Ignoring cache entry %s fitted with different sampler settings.", npz_path)
            return None
        with np.load(npz_path) as payload:
            samples = {
                key[len(_POSTERIOR_PREFIX):]: np.asarray(payload[key])
                for key in payload.files
                if key.startswith(_POSTERIOR_PREFIX)
            }
            loglik = np.asarray(payload["log_likelihood"])
            observed = np.asarray(payload["observed"])

        report = assess_convergence(
            {k: v for k, v in samples.items() if k in {"Intercept", "beta", "sigma", "tau"}},
            divergences=int(meta.get("divergences", 0)),
            thresholds=model.thresholds,
        )
        fitted = FittedModel(
            name=meta["name"],
            formula=meta["formula"],
            outcome=meta["outcome"],
            coef_names=list(meta["coef_names"]),
            priors=priors_from_config(meta["priors"]),
            sampler=sampler,
            samples=samples,
            log_likelihood=loglik,
            observed=observed,
            diagnostics=report,
        )
        if not report.ok and model.strict:
            raise ConvergenceError(report, fitted)
        logger.info("Loaded '%s' from cache (%s).", fitted.name, npz_path.name)
        return fitted

    def get_or_fit(
        self,
        model: BayesianRegression,
        data: pd.DataFrame,
        formula: str,
        fit: Optional[Callable[[BayesianRegression, pd.DataFrame, str], FittedModel]] = None,
    ) -> FittedModel:
        digest = cache_digest(model, formula, data)
        cached = self.load(model, digest)
        if cached is not None:
            return cached
        fitter = fit or (lambda m, d, f: m.fit(d, f))
        fitted = fitter(model, data, formula)
        # reduced budget retries are never cached under the requested digest
        if fitted.sampler != model.sampler:
            logger.warning(
                "Not caching '%s': fitted with iter=%d instead of the requested iter=%d.",
                fitted.name, fitted.sampler.iter, model.sampler.iter,
            )
            return fitted
        self.save(fitted, digest)
        return fitted
