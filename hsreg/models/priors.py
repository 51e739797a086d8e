"""Structured prior specifications for the Gaussian regression models."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "PriorConfigError",
    "Family",
    "PriorKind",
    "Prior",
    "ModelPriors",
    "naive_priors",
    "horseshoe_priors",
    "prior_from_dict",
    "priors_from_config",
]


class PriorConfigError(ValueError):
    """Raised when a prior or family specification is invalid."""


class Family(str, Enum):
    GAUSSIAN = "gaussian"


class PriorKind(str, Enum):
    NORMAL = "normal"
    EXPONENTIAL = "exponential"
    HORSESHOE = "horseshoe"


_REQUIRED: Dict[PriorKind, Dict[str, Optional[float]]] = {
    PriorKind.NORMAL: {"loc": 0.0, "scale": None},
    PriorKind.EXPONENTIAL: {"rate": None},
    PriorKind.HORSESHOE: {
        "df": 1.0,
        "df_global": 1.0,
        "scale_global": 1.0,
        "par_ratio": None,
        "scale_slab": None,
        "df_slab": None,
    },
}

_POSITIVE = {"scale", "rate", "df", "df_global", "scale_global", "par_ratio", "scale_slab", "df_slab"}


def _coerce_kind(kind: Any) -> PriorKind:
    if isinstance(kind, PriorKind):
        return kind
    try:
        return PriorKind(str(kind).strip().lower())
    except ValueError:
        options = ", ".join(k.value for k in PriorKind)
        raise PriorConfigError(f"Unknown prior kind '{kind}'. Expected one of: {options}.") from None


def _coerce_family(family: Any) -> Family:
    if isinstance(family, Family):
        return family
    try:
        return Family(str(family).strip().lower())
    except ValueError:
        options = ", ".join(f.value for f in Family)
        raise PriorConfigError(f"Unknown family '{family}'. Expected one of: {options}.") from None


@dataclass(frozen=True)
class Prior:
    """A single prior with explicit numeric parameters.

    ``params`` is completed with defaults and validated at construction, so a
    misconfigured prior never reaches the sampler.
    """

    kind: PriorKind
    params: Mapping[str, Optional[float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        kind = _coerce_kind(self.kind)
        object.__setattr__(self, "kind", kind)
        allowed = _REQUIRED[kind]
        unknown = set(self.params) - set(allowed)
        if unknown:
            raise PriorConfigError(f"Unknown parameters for {kind.value} prior: {sorted(unknown)}.")

        resolved: Dict[str, Optional[float]] = {}
        for name, default in allowed.items():
            value = self.params.get(name, default)
            if value is None:
                if name in {"scale", "rate"}:
                    raise PriorConfigError(f"{kind.value} prior requires '{name}'.")
                resolved[name] = None
                continue
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise PriorConfigError(f"{kind.value} prior parameter '{name}' must be numeric, got {value!r}.") from None
            if not math.isfinite(value):
                raise PriorConfigError(f"{kind.value} prior parameter '{name}' must be finite.")
            if name in _POSITIVE and value <= 0:
                raise PriorConfigError(f"{kind.value} prior parameter '{name}' must be positive, got {value}.")
            resolved[name] = value
        if resolved.get("df_slab") is not None and resolved.get("scale_slab") is None:
            raise PriorConfigError("horseshoe 'df_slab' requires 'scale_slab'.")
        object.__setattr__(self, "params", resolved)

    @classmethod
    def normal(cls, loc: float = 0.0, scale: float = 1.0) -> "Prior":
        return cls(PriorKind.NORMAL, {"loc": loc, "scale": scale})

    @classmethod
    def exponential(cls, rate: float = 1.0) -> "Prior":
        return cls(PriorKind.EXPONENTIAL, {"rate": rate})

    @classmethod
    def horseshoe(cls, **params: Optional[float]) -> "Prior":
        return cls(PriorKind.HORSESHOE, params)

    def __getitem__(self, name: str) -> Optional[float]:
        return self.params[name]

    def global_scale(self, n_obs: int) -> float:
        """Horseshoe global scale, derived from ``par_ratio`` when given."""
        if self.kind is not PriorKind.HORSESHOE:
            raise PriorConfigError("global_scale is only defined for horseshoe priors.")
        par_ratio = self.params.get("par_ratio")
        if par_ratio is not None:
            if n_obs <= 0:
                raise PriorConfigError("par_ratio requires a positive number of observations.")
            return float(par_ratio) / math.sqrt(n_obs)
        return float(self.params["scale_global"])  # type: ignore[arg-type]

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, **{k: v for k, v in self.params.items() if v is not None}}


@dataclass(frozen=True)
class ModelPriors:
    """Intercept, coefficient and residual-scale priors for one model."""

    intercept: Prior
    coefficients: Prior
    sigma: Prior
    family: Family = Family.GAUSSIAN

    def __post_init__(self) -> None:
        object.__setattr__(self, "family", _coerce_family(self.family))
        if self.intercept.kind is not PriorKind.NORMAL:
            raise PriorConfigError("Intercept prior must be normal.")
        if self.sigma.kind is not PriorKind.EXPONENTIAL:
            raise PriorConfigError("Residual scale prior must be exponential.")
        if self.coefficients.kind not in {PriorKind.NORMAL, PriorKind.HORSESHOE}:
            raise PriorConfigError("Coefficient prior must be normal or horseshoe.")

    @property
    def is_horseshoe(self) -> bool:
        return self.coefficients.kind is PriorKind.HORSESHOE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family": self.family.value,
            "intercept": self.intercept.to_dict(),
            "coefficients": self.coefficients.to_dict(),
            "sigma": self.sigma.to_dict(),
        }


def naive_priors(
    intercept: Prior | None = None,
    coef_scale: float = 100.0,
    sigma_rate: float = 0.02,
) -> ModelPriors:
    """Weakly informative Gaussian prior on every coefficient."""
    return ModelPriors(
        intercept=intercept or Prior.normal(1200.0, 250.0),
        coefficients=Prior.normal(0.0, coef_scale),
        sigma=Prior.exponential(sigma_rate),
    )


def horseshoe_priors(
    intercept: Prior | None = None,
    sigma_rate: float = 0.02,
    **horseshoe: Optional[float],
) -> ModelPriors:
    """Same intercept and residual priors as :func:`naive_priors`, horseshoe coefficients."""
    return ModelPriors(
        intercept=intercept or Prior.normal(1200.0, 250.0),
        coefficients=Prior.horseshoe(**horseshoe),
        sigma=Prior.exponential(sigma_rate),
    )


def prior_from_dict(spec: Mapping[str, Any]) -> Prior:
    if not isinstance(spec, Mapping) or "kind" not in spec:
        raise PriorConfigError(f"Prior specification needs a 'kind', got {spec!r}.")
    params = {k: v for k, v in spec.items() if k != "kind"}
    return Prior(_coerce_kind(spec["kind"]), params)


def priors_from_config(spec: Mapping[str, Any]) -> ModelPriors:
    """Build :class:`ModelPriors` from ``{intercept, coefficients, sigma, family}``."""
    missing = [k for k in ("intercept", "coefficients", "sigma") if k not in spec]
    if missing:
        raise PriorConfigError(f"Prior configuration missing sections: {missing}.")
    unknown = set(spec) - {"intercept", "coefficients", "sigma", "family"}
    if unknown:
        raise PriorConfigError(f"Unknown prior configuration keys: {sorted(unknown)}.")
    return ModelPriors(
        intercept=prior_from_dict(spec["intercept"]),
        coefficients=prior_from_dict(spec["coefficients"]),
        sigma=prior_from_dict(spec["sigma"]),
        family=spec.get("family", Family.GAUSSIAN),
    )
