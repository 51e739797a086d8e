"""Posterior convergence diagnostics (R-hat, ESS, divergences)."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
from numpyro.diagnostics import effective_sample_size, split_gelman_rubin

Array = np.ndarray


class ConvergenceError(RuntimeError):
    """Raised when sampler diagnostics fail the configured thresholds.

    The report and the (non-converged) fitted model travel with the exception
    so callers can inspect or persist them.
    """

    def __init__(self, report: "ConvergenceReport", fitted: Any = None) -> None:
        self.report = report
        self.fitted = fitted
        name = getattr(fitted, "name", None)
        prefix = f"Model '{name}' did not converge" if name else "Sampler did not converge"
        super().__init__(f"{prefix}: " + "; ".join(report.problems))

    def __reduce__(self):
        # rebuilt from report and fit when sent back from a worker process
        return type(self), (self.report, self.fitted)


@dataclass(frozen=True)
class DiagnosticThresholds:
    rhat_max: float = 1.05
    ess_min: float = 100.0
    max_divergences: int = 0

    def __post_init__(self) -> None:
        if self.rhat_max <= 1.0:
            raise ValueError("rhat_max must exceed 1.0.")
        if self.ess_min < 0:
            raise ValueError("ess_min must be non-negative.")
        if self.max_divergences < 0:
            raise ValueError("max_divergences must be non-negative.")

    @classmethod
    def from_dict(cls, cfg: Optional[Mapping[str, Any]]) -> "DiagnosticThresholds":
        cfg = dict(cfg or {})
        return cls(
            rhat_max=float(cfg.get("rhat_max", cls.rhat_max)),
            ess_min=float(cfg.get("ess_min", cls.ess_min)),
            max_divergences=int(cfg.get("max_divergences", cls.max_divergences)),
        )


@dataclass
class ConvergenceReport:
    parameters: Dict[str, Dict[str, float]]
    divergences: int
    thresholds: DiagnosticThresholds
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "divergences": int(self.divergences),
            "thresholds": asdict(self.thresholds),
            "problems": list(self.problems),
            "parameters": self.parameters,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConvergenceReport":
        return cls(
            parameters={k: dict(v) for k, v in data.get("parameters", {}).items()},
            divergences=int(data.get("divergences", 0)),
            thresholds=DiagnosticThresholds(**data.get("thresholds", {})),
            problems=list(data.get("problems", [])),
        )


def _as_chains(samples: Array) -> Array:
    arr = np.asarray(samples, dtype=float)
    if arr.ndim < 2:
        raise ValueError("samples must be grouped by chain: (chains, draws, ...)")
    if arr.shape[1] < 4:
        raise ValueError("need at least 4 draws per chain for convergence diagnostics")
    return arr


def split_rhat(samples: Array) -> Array:
    return np.asarray(split_gelman_rubin(_as_chains(samples)))


def bulk_ess(samples: Array) -> Array:
    return np.asarray(effective_sample_size(_as_chains(samples)))


def summarize_convergence(samples: Mapping[str, Array]) -> Dict[str, Dict[str, float]]:
    """Per-site R-hat/ESS summary for chain-grouped samples."""
    summary: Dict[str, Dict[str, float]] = {}
    for name, arr in samples.items():
        try:
            flat_rhat = split_rhat(arr).ravel()
            flat_ess = bulk_ess(arr).ravel()
        except ValueError as exc:
            summary[name] = {"error": str(exc)}
            continue
        # constant draws (e.g. zero-width deterministic sites) give NaN R-hat
        flat_rhat = np.where(np.isfinite(flat_rhat), flat_rhat, 1.0)
        summary[name] = {
            "rhat_max": float(np.max(flat_rhat)),
            "rhat_median": float(np.median(flat_rhat)),
            "ess_min": float(np.min(flat_ess)),
            "ess_median": float(np.median(flat_ess)),
        }
    return summary


def assess_convergence(
    samples: Mapping[str, Array],
    divergences: int = 0,
    thresholds: DiagnosticThresholds | None = None,
) -> ConvergenceReport:
    """Compare diagnostics against ``thresholds`` and list every violation."""
    limits = thresholds or DiagnosticThresholds()
    summary = summarize_convergence(samples)
    problems: List[str] = []
    for name, stats in summary.items():
        if "error" in stats:
            problems.append(f"{name}: {stats['error']}")
            continue
        if stats["rhat_max"] > limits.rhat_max:
            problems.append(f"{name}: R-hat {stats['rhat_max']:.3f} > {limits.rhat_max}")
        if stats["ess_min"] < limits.ess_min:
            problems.append(f"{name}: ESS {stats['ess_min']:.0f} < {limits.ess_min:.0f}")
    if divergences > limits.max_divergences:
        problems.append(f"{divergences} divergent transitions (allowed {limits.max_divergences})")
    return ConvergenceReport(
        parameters=summary,  # type: ignore[arg-type]
        divergences=int(divergences),
        thresholds=limits,
        problems=problems,
    )
